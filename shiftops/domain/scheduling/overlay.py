"""
Exception overlay - per-date overrides applied on raw occurrences

An exception either cancels one occurrence or modifies it (title, notes,
moved date). The override types form a tagged union so a cancellation can
never carry override fields.
"""

import datetime as dt
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .calendar_math import DateLike, normalize_date
from .recurrence import RawOccurrence, RecurrenceRule, generate_raw_occurrences, is_valid_occurrence

CANCELLED = "CANCELLED"
MODIFIED = "MODIFIED"


class CancelledOverride(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["CANCELLED"] = CANCELLED
    date: dt.date


class ModifiedOverride(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["MODIFIED"] = MODIFIED
    date: dt.date
    new_title: Optional[str] = None
    new_notes: Optional[str] = None
    new_date: Optional[dt.date] = None


ExceptionOverride = Annotated[Union[CancelledOverride, ModifiedOverride], Field(discriminator="type")]


class Occurrence(BaseModel):
    """One calendar instance of a shift after the overlay (never persisted)"""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    is_original: bool = False
    is_exception: bool = False
    exception_type: Optional[str] = None
    effective_title: str
    effective_notes: Optional[str] = None
    effective_date: dt.date

    @property
    def is_moved(self) -> bool:
        return self.effective_date != self.date


class OccurrenceWindow(BaseModel):
    occurrences: list[Occurrence] = []
    truncated: bool = False


def override_from_model(row) -> Union[CancelledOverride, ModifiedOverride]:
    """Convert a ShiftException row into its override value"""
    if row.exception_type == CANCELLED:
        return CancelledOverride(date=normalize_date(row.date))
    return ModifiedOverride(
        date=normalize_date(row.date),
        new_title=row.new_title,
        new_notes=row.new_notes,
        new_date=normalize_date(row.new_date) if row.new_date else None,
    )


def build_exception_lookup(exceptions: Iterable) -> dict[dt.date, Union[CancelledOverride, ModifiedOverride]]:
    return {normalize_date(e.date): e for e in exceptions}


def find_exception(exceptions: Iterable, target_date: DateLike):
    return build_exception_lookup(exceptions).get(normalize_date(target_date))


def is_cancelled(exceptions: Iterable, target_date: DateLike) -> bool:
    """True when a CANCELLED exception exists for the nominal date"""
    exception = find_exception(exceptions, target_date)
    return exception is not None and exception.type == CANCELLED


def apply_exceptions(
    raw_occurrences: Iterable,
    exceptions: Iterable,
    master_title: str,
    master_notes: Optional[str] = None,
) -> list[Occurrence]:
    """
    Overlay exceptions on raw occurrences.

    CANCELLED dates are dropped. MODIFIED dates keep their calendar slot and
    get the override title/notes; a moved date is exposed as effective_date.
    """
    lookup = build_exception_lookup(exceptions)
    result = []

    for raw in raw_occurrences:
        exception = lookup.get(raw.date)

        if exception is None:
            result.append(
                Occurrence(
                    date=raw.date,
                    is_original=raw.is_original,
                    effective_title=master_title,
                    effective_notes=master_notes,
                    effective_date=raw.date,
                )
            )
            continue

        if exception.type == CANCELLED:
            continue

        result.append(
            Occurrence(
                date=raw.date,
                is_original=raw.is_original,
                is_exception=True,
                exception_type=MODIFIED,
                effective_title=exception.new_title if exception.new_title is not None else master_title,
                effective_notes=exception.new_notes if exception.new_notes is not None else master_notes,
                effective_date=exception.new_date or raw.date,
            )
        )

    return result


def is_valid_occurrence_with_exceptions(
    target_date: DateLike,
    anchor_date: DateLike,
    rule: RecurrenceRule,
    exceptions: Iterable,
) -> bool:
    return is_valid_occurrence(target_date, anchor_date, rule) and not is_cancelled(exceptions, target_date)


def generate_occurrences(
    anchor_date: DateLike,
    rule: Optional[RecurrenceRule],
    range_start: DateLike,
    range_end: DateLike,
    exceptions: Iterable = (),
    master_title: str = "",
    master_notes: Optional[str] = None,
) -> OccurrenceWindow:
    """Expand a master shift over a window and overlay its exceptions"""
    if rule is None:
        anchor = normalize_date(anchor_date)
        raw = []
        if normalize_date(range_start) <= anchor <= normalize_date(range_end):
            raw = [RawOccurrence(date=anchor, is_original=True)]
        return OccurrenceWindow(occurrences=apply_exceptions(raw, exceptions, master_title, master_notes))

    expansion = generate_raw_occurrences(anchor_date, rule, range_start, range_end)
    return OccurrenceWindow(
        occurrences=apply_exceptions(expansion.occurrences, exceptions, master_title, master_notes),
        truncated=expansion.truncated,
    )
