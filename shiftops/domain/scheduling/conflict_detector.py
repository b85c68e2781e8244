"""Conflict detector - operators booked on more than one shift in a date range

Advisory only: the scan reads and reports. A concurrent writer can still
commit between this check and the caller's mutation.
"""

import datetime as dt
import logging
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...config import CONFLICT_SCAN_PADDING_DAYS
from ...models import Shift
from .calendar_math import DateLike, add_days, normalize_date
from .overlay import generate_occurrences, override_from_model
from .recurrence import RecurrenceRule
from .repository import ShiftRepository

logger = logging.getLogger(__name__)


class ConflictingShift(BaseModel):
    id: str
    title: str
    date: dt.date


class Conflict(BaseModel):
    operator_id: str
    operator_name: Optional[str] = None
    conflicting_shift: ConflictingShift
    conflict_date: dt.date


def scan_effective_dates(
    shift: Shift,
    range_start: dt.date,
    range_end: dt.date,
    padding_days: int = CONFLICT_SCAN_PADDING_DAYS,
) -> tuple[list[dt.date], bool]:
    """
    Effective dates of a shift's occurrences that land in [range_start, range_end],
    paired with the truncated flag of the underlying expansion.

    Recurring shifts are expanded over a padded window so that an occurrence
    moved into the range by a MODIFIED exception is found even when its
    nominal date lies outside.
    """
    rule = RecurrenceRule.from_model(shift.recurrence)
    exceptions = [override_from_model(e) for e in shift.exceptions]

    if rule is None:
        scan_start, scan_end = range_start, range_end
    else:
        scan_start = add_days(range_start, -padding_days)
        scan_end = add_days(range_end, padding_days)

    window = generate_occurrences(
        shift.date, rule, scan_start, scan_end, exceptions, shift.title, shift.notes
    )
    if window.truncated:
        logger.warning(f"⚠️ Conflict scan for shift {shift.id} used a truncated expansion")

    dates = sorted(
        {o.effective_date for o in window.occurrences if range_start <= o.effective_date <= range_end}
    )
    return dates, window.truncated


def effective_dates_in_range(shift: Shift, range_start: dt.date, range_end: dt.date) -> list[dt.date]:
    return scan_effective_dates(shift, range_start, range_end)[0]


class ConflictDetector:
    """Read-only scan of a tenant's shifts for operator double-booking"""

    def __init__(self, db: Session, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id
        self.repo = ShiftRepository()
        # Set by each find_conflicts call when an expansion hit the iteration cap
        self.truncated = False

    def find_conflicts(
        self,
        operator_ids: Iterable[str],
        range_start: DateLike,
        range_end: DateLike,
        exclude_master_id: Optional[str] = None,
    ) -> list[Conflict]:
        """
        Report operators already assigned to another shift in the range.

        One record is emitted per (operator, shift) pair, dated at the first
        effective occurrence in range; an operator on several shifts gets one
        record for each of them.

        When an expansion was cut short the result may be incomplete and
        self.truncated is set.
        """
        self.truncated = False
        operator_ids = list(dict.fromkeys(operator_ids))
        if not operator_ids:
            return []

        start = normalize_date(range_start)
        end = normalize_date(range_end)
        if end < start:
            start, end = end, start

        candidates = self.repo.find_conflict_candidates(
            self.db, self.tenant_id, operator_ids, start, end, exclude_master_id
        )

        conflicts = []
        for shift in candidates:
            dates, truncated = scan_effective_dates(shift, start, end)
            self.truncated = self.truncated or truncated
            if not dates:
                continue

            assigned = {so.user_id: so.user for so in shift.shift_operators}
            for operator_id in operator_ids:
                if operator_id not in assigned:
                    continue
                user = assigned[operator_id]
                conflicts.append(
                    Conflict(
                        operator_id=operator_id,
                        operator_name=user.full_name if user else None,
                        conflicting_shift=ConflictingShift(id=shift.id, title=shift.title, date=shift.date),
                        conflict_date=dates[0],
                    )
                )

        if conflicts:
            logger.info(
                f"⚠️ Found {len(conflicts)} operator conflicts between {start.isoformat()} and {end.isoformat()}"
            )
        return conflicts
