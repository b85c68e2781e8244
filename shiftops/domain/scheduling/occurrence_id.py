"""
Occurrence identifiers

Format:
- "<masterId>"               -> the master shift (whole series / its anchor)
- "<masterId>_<YYYY-MM-DD>"  -> one occurrence of the series (UTC date)

Consumers decode these ids without touching the database.
"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .calendar_math import ISO_DATE_PATTERN, DateLike, format_iso_date
from .errors import MalformedOccurrenceIdError

SEPARATOR = "_"


class ParsedOccurrenceId(BaseModel):
    model_config = ConfigDict(frozen=True)

    master_id: str
    occurrence_date: Optional[dt.date] = None


def encode_occurrence_id(master_id: str, occurrence_date: DateLike) -> str:
    if not master_id or SEPARATOR in master_id:
        raise MalformedOccurrenceIdError(f"Master ID cannot be encoded: {master_id!r}")
    return f"{master_id}{SEPARATOR}{format_iso_date(occurrence_date)}"


def decode_occurrence_id(occurrence_id: str) -> ParsedOccurrenceId:
    """
    Parse a master shift ID or an occurrence ID.

    Raises:
        MalformedOccurrenceIdError: Empty id, wrong number of separators,
            bad date format or impossible calendar date
    """
    if not occurrence_id:
        raise MalformedOccurrenceIdError("ID cannot be empty")

    parts = occurrence_id.split(SEPARATOR)

    if len(parts) == 1:
        return ParsedOccurrenceId(master_id=parts[0])

    if len(parts) == 2:
        master_id, date_str = parts
        if not master_id or not date_str:
            raise MalformedOccurrenceIdError(f"Malformed occurrence ID: {occurrence_id}")

        if not ISO_DATE_PATTERN.match(date_str):
            raise MalformedOccurrenceIdError(f"Invalid date format in occurrence ID: {date_str}")

        try:
            occurrence_date = dt.date.fromisoformat(date_str)
        except ValueError as e:
            raise MalformedOccurrenceIdError(f"Invalid date in occurrence ID: {date_str}") from e

        return ParsedOccurrenceId(master_id=master_id, occurrence_date=occurrence_date)

    raise MalformedOccurrenceIdError(f"Invalid ID format: {occurrence_id}")


def is_occurrence_id(value: str) -> bool:
    return SEPARATOR in value


def extract_master_id(value: str) -> str:
    return decode_occurrence_id(value).master_id


def occurrence_public_id(master_id: str, occurrence_date: dt.date, is_original: bool) -> str:
    """Anchor occurrences are addressed by the bare master id"""
    return master_id if is_original else encode_occurrence_id(master_id, occurrence_date)
