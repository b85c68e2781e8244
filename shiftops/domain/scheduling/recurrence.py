"""
Recurrence engine - lazy generation of shift occurrences

Only the occurrences falling inside the requested window are produced.
Supported rules: DAILY every N days, WEEKLY every N weeks, bounded by an end
date, by a number of steps, or open-ended.
"""

import datetime as dt
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from ...config import NEXT_OCCURRENCE_SCAN_LIMIT, RECURRENCE_MAX_ITERATIONS
from .calendar_math import DateLike, add_days, days_between, normalize_date, step_days
from .errors import RecurrenceValidationError

logger = logging.getLogger(__name__)


class RecurrenceRule(BaseModel):
    """Frequency, interval and end bound of a recurring master shift"""

    model_config = ConfigDict(frozen=True)

    frequency: Literal["DAILY", "WEEKLY"]
    interval: int = 1
    start_date: dt.date
    end_date: Optional[dt.date] = None
    count: Optional[int] = None

    @property
    def step(self) -> int:
        return step_days(self.frequency, self.interval)

    @classmethod
    def from_model(cls, recurrence) -> Optional["RecurrenceRule"]:
        """Build a rule from a ShiftRecurrence row (None for non-recurring shifts)"""
        if recurrence is None:
            return None
        return cls(
            frequency=recurrence.frequency,
            interval=recurrence.interval,
            start_date=normalize_date(recurrence.start_date),
            end_date=normalize_date(recurrence.end_date) if recurrence.end_date else None,
            count=recurrence.count,
        )


class RuleViolation(BaseModel):
    constraint: str
    message: str


class RawOccurrence(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    is_original: bool = False


class RecurrenceExpansion(BaseModel):
    """Raw occurrences of one window; truncated is set when the iteration cap was hit"""

    occurrences: list[RawOccurrence] = []
    truncated: bool = False

    @property
    def dates(self) -> list[dt.date]:
        return [o.date for o in self.occurrences]


def validate_recurrence(rule: RecurrenceRule) -> list[RuleViolation]:
    """Return every constraint the rule breaks (empty list when valid)"""
    violations = []

    if rule.interval < 1:
        violations.append(RuleViolation(constraint="interval_min", message="interval must be at least 1"))

    if rule.end_date is not None and rule.count is not None:
        violations.append(
            RuleViolation(constraint="end_and_count", message="end_date and count are mutually exclusive")
        )

    if rule.end_date is not None and rule.end_date <= rule.start_date:
        violations.append(
            RuleViolation(constraint="end_after_start", message="end_date must be after start_date")
        )

    if rule.count is not None and rule.count < 1:
        violations.append(RuleViolation(constraint="count_min", message="count must be at least 1"))

    return violations


def ensure_valid_recurrence(rule: RecurrenceRule) -> RecurrenceRule:
    violations = validate_recurrence(rule)
    if violations:
        raise RecurrenceValidationError(violations)
    return rule


# A this_and_future truncation may store an end_date equal to start_date
_EXPANSION_CONSTRAINTS = {"interval_min", "count_min", "end_and_count"}


def _ensure_expandable(rule: RecurrenceRule) -> None:
    violations = [v for v in validate_recurrence(rule) if v.constraint in _EXPANSION_CONSTRAINTS]
    if violations:
        raise RecurrenceValidationError(violations)


def generate_raw_occurrences(
    anchor_date: DateLike,
    rule: RecurrenceRule,
    range_start: DateLike,
    range_end: DateLike,
    max_iterations: Optional[int] = None,
) -> RecurrenceExpansion:
    """
    Generate the candidate occurrence dates of a rule inside [range_start, range_end].

    The anchor date is always an occurrence when it lies in the window, even if
    it is not aligned to the rule's step. Stepped dates are counted from the
    rule's start date; count bounds the number of steps, not the emitted dates.
    Stepping resumes at the window start, so the iteration cap only bounds
    the steps walked inside the window.

    Args:
        anchor_date: Date the master shift was created for
        rule: Recurrence rule
        range_start: First day of the window (inclusive)
        range_end: Last day of the window (inclusive)
        max_iterations: Step cap, defaults to RECURRENCE_MAX_ITERATIONS

    Returns:
        RecurrenceExpansion sorted ascending without duplicates
    """
    _ensure_expandable(rule)
    anchor = normalize_date(anchor_date)
    window_start = normalize_date(range_start)
    window_end = normalize_date(range_end)
    limit = RECURRENCE_MAX_ITERATIONS if max_iterations is None else max_iterations
    step = rule.step

    found: dict[dt.date, RawOccurrence] = {}
    if window_start <= anchor <= window_end:
        found[anchor] = RawOccurrence(date=anchor, is_original=True)

    # Jump to the first step on or after the window; skipped steps still count
    steps = steps_before(rule, window_start)
    current = add_days(rule.start_date, steps * step)
    walked = 0
    truncated = False
    while True:
        if rule.end_date is not None and current > rule.end_date:
            break
        if rule.count is not None and steps >= rule.count:
            break
        if current > window_end:
            break
        if walked >= limit:
            truncated = True
            logger.warning(
                f"⚠️ Recurrence expansion stopped after {limit} steps "
                f"(window {window_start.isoformat()}..{window_end.isoformat()}); result is truncated"
            )
            break

        if window_start <= current <= window_end and current != anchor:
            found[current] = RawOccurrence(date=current)

        current = add_days(current, step)
        steps += 1
        walked += 1

    occurrences = [found[d] for d in sorted(found)]
    return RecurrenceExpansion(occurrences=occurrences, truncated=truncated)


def is_valid_occurrence(target_date: DateLike, anchor_date: DateLike, rule: RecurrenceRule) -> bool:
    """
    Check whether a date belongs to the series.

    Note: count is not taken into account here; count bounding only happens
    during generation, so a date past the last counted step still tests True.
    """
    _ensure_expandable(rule)
    target = normalize_date(target_date)
    if target == normalize_date(anchor_date):
        return True

    if target < rule.start_date:
        return False
    if rule.end_date is not None and target > rule.end_date:
        return False

    diff_days = days_between(rule.start_date, target)
    return diff_days >= 0 and diff_days % rule.step == 0


def last_counted_date(rule: RecurrenceRule) -> Optional[dt.date]:
    """Date of the final step of a count-bounded rule"""
    if rule.count is None:
        return None
    return add_days(rule.start_date, (rule.count - 1) * rule.step)


def steps_before(rule: RecurrenceRule, pivot: dt.date) -> int:
    """Number of stepped dates strictly before pivot"""
    diff = days_between(rule.start_date, pivot)
    if diff <= 0:
        return 0
    return -(-diff // rule.step)


def get_next_occurrence(
    after_date: DateLike,
    anchor_date: DateLike,
    rule: RecurrenceRule,
    scan_limit: Optional[int] = None,
) -> Optional[dt.date]:
    """Find the first occurrence strictly after after_date, scanning day by day"""
    _ensure_expandable(rule)
    after = normalize_date(after_date)
    limit = NEXT_OCCURRENCE_SCAN_LIMIT if scan_limit is None else scan_limit
    last_date = last_counted_date(rule)

    current = add_days(max(after, rule.start_date), 1)
    for _ in range(limit):
        if rule.end_date is not None and current > rule.end_date:
            break
        if last_date is not None and current > last_date:
            break
        if is_valid_occurrence(current, anchor_date, rule):
            return current
        current = add_days(current, 1)

    return None
