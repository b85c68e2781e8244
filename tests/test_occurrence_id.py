import datetime as dt
import uuid

import pytest

from shiftops.domain.scheduling.errors import MalformedOccurrenceIdError
from shiftops.domain.scheduling.occurrence_id import (
    decode_occurrence_id,
    encode_occurrence_id,
    extract_master_id,
    is_occurrence_id,
    occurrence_public_id,
)


def test_round_trip():
    master_id = str(uuid.uuid4())
    encoded = encode_occurrence_id(master_id, dt.date(2024, 1, 15))

    assert encoded == f"{master_id}_2024-01-15"
    parsed = decode_occurrence_id(encoded)
    assert parsed.master_id == master_id
    assert parsed.occurrence_date == dt.date(2024, 1, 15)


def test_bare_id_is_a_master_reference():
    parsed = decode_occurrence_id("abc123")

    assert parsed.master_id == "abc123"
    assert parsed.occurrence_date is None
    assert not is_occurrence_id("abc123")
    assert is_occurrence_id("abc123_2024-01-15")
    assert extract_master_id("abc123_2024-01-15") == "abc123"


@pytest.mark.parametrize(
    "value",
    [
        "",
        "abc_",
        "_2024-01-15",
        "abc_2024-1-15",
        "abc_20240115",
        "abc_2024-02-30",
        "abc_2024-01-15_extra",
    ],
)
def test_malformed_ids(value):
    with pytest.raises(MalformedOccurrenceIdError):
        decode_occurrence_id(value)


def test_master_ids_with_separator_cannot_be_encoded():
    with pytest.raises(MalformedOccurrenceIdError):
        encode_occurrence_id("bad_id", dt.date(2024, 1, 1))


def test_public_id_uses_bare_master_id_for_the_anchor():
    assert occurrence_public_id("m1", dt.date(2024, 1, 1), True) == "m1"
    assert occurrence_public_id("m1", dt.date(2024, 1, 8), False) == "m1_2024-01-08"
