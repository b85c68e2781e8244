"""Shift service - Business logic for shift operations"""

import datetime as dt
import logging
import math
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...auth import AuthContext
from ...config import SHIFTS_PAGE_LIMIT_DEFAULT, SHIFTS_PAGE_LIMIT_MAX
from ...database import transaction
from ...models import Shift
from .calendar_math import default_week_range, normalize_date
from .conflict_detector import Conflict, ConflictDetector
from .errors import InvalidOccurrenceError, OccurrenceCancelledError, ShiftNotFoundError
from .occurrence_id import decode_occurrence_id, occurrence_public_id
from .overlay import (
    Occurrence,
    generate_occurrences,
    is_cancelled,
    override_from_model,
)
from .recurrence import RecurrenceRule, ensure_valid_recurrence, is_valid_occurrence
from .repository import ShiftRepository
from .schemas import (
    ClientSummary,
    ConflictingShiftResponse,
    OperatorConflictResponse,
    OperatorSummary,
    Pagination,
    RecurrenceResponse,
    ShiftCreate,
    ShiftListResponse,
    ShiftResponse,
    ShiftUpdate,
    ShiftWriteResponse,
    SiteSummary,
    Warnings,
)
from .series_mutator import RecurrenceChanges, SeriesMutator, ShiftChanges

logger = logging.getLogger(__name__)

RECURRENCE_FIELD_MAP = {
    "frequency": "frequency",
    "interval": "interval",
    "startDate": "start_date",
    "endDate": "end_date",
    "count": "count",
}


def _conflict_response(conflict: Conflict) -> OperatorConflictResponse:
    return OperatorConflictResponse(
        operatorId=conflict.operator_id,
        operatorName=conflict.operator_name,
        conflictingShift=ConflictingShiftResponse(
            id=conflict.conflicting_shift.id,
            title=conflict.conflicting_shift.title,
            date=conflict.conflicting_shift.date,
        ),
        conflictDate=conflict.conflict_date,
    )


def _warnings(conflicts: list[Conflict], truncated: bool = False) -> Optional[Warnings]:
    if not conflicts and not truncated:
        return None
    return Warnings(operatorConflicts=[_conflict_response(c) for c in conflicts], truncated=truncated)


def shift_to_response(shift: Shift, occurrence: Optional[Occurrence] = None) -> ShiftResponse:
    """Format a master shift, or one of its occurrences, for the API"""
    recurrence = None
    if shift.recurrence:
        recurrence = RecurrenceResponse(
            id=shift.recurrence.id,
            frequency=shift.recurrence.frequency.lower(),
            interval=shift.recurrence.interval,
            startDate=shift.recurrence.start_date,
            endDate=shift.recurrence.end_date,
            count=shift.recurrence.count,
        )

    sites = [
        SiteSummary(
            id=ss.site.id,
            name=ss.site.name,
            address=ss.site.address,
            client=ClientSummary(id=ss.site.client.id, name=ss.site.client.name) if ss.site.client else None,
        )
        for ss in shift.shift_sites
    ]
    operators = [
        OperatorSummary(
            id=so.user.id,
            firstName=so.user.first_name,
            lastName=so.user.last_name,
            isManager=bool(so.user.is_manager),
        )
        for so in shift.shift_operators
    ]

    if occurrence is None:
        return ShiftResponse(
            id=shift.id,
            masterId=shift.id,
            title=shift.title,
            date=shift.date,
            effectiveDate=shift.date,
            notes=shift.notes,
            tenantId=shift.tenant_id,
            createdAt=shift.created_at,
            updatedAt=shift.updated_at,
            sites=sites,
            operators=operators,
            recurrence=recurrence,
            isRecurring=recurrence is not None,
        )

    return ShiftResponse(
        id=occurrence_public_id(shift.id, occurrence.date, occurrence.is_original),
        masterId=shift.id,
        title=occurrence.effective_title,
        date=occurrence.date,
        effectiveDate=occurrence.effective_date,
        notes=occurrence.effective_notes,
        tenantId=shift.tenant_id,
        createdAt=shift.created_at,
        updatedAt=shift.updated_at,
        sites=sites,
        operators=operators,
        recurrence=recurrence,
        isRecurring=recurrence is not None,
        isOriginal=occurrence.is_original,
        isException=occurrence.is_exception,
        exceptionType=occurrence.exception_type,
    )


class ShiftService:
    """Service layer for shift business logic"""

    def __init__(self, db: Session, auth: AuthContext):
        self.db = db
        self.auth = auth
        self.repo = ShiftRepository()
        self.mutator = SeriesMutator(db, auth.tenant_id)
        self.detector = ConflictDetector(db, auth.tenant_id)

    def _get_master(self, master_id: str) -> Shift:
        shift = self.repo.get_shift(self.db, master_id, self.auth.tenant_id)
        if not shift:
            raise ShiftNotFoundError(master_id)
        return shift

    def _resolve_occurrence(self, shift: Shift, occurrence_date: dt.date) -> Occurrence:
        """Occurrence of a master at a nominal date; raises when invalid or cancelled"""
        rule = RecurrenceRule.from_model(shift.recurrence)
        exceptions = [override_from_model(e) for e in shift.exceptions]

        if rule is None:
            valid = occurrence_date == shift.date
        else:
            valid = is_valid_occurrence(occurrence_date, shift.date, rule)
        if not valid:
            raise InvalidOccurrenceError(
                f"{occurrence_date.isoformat()} is not a valid occurrence of shift {shift.id}"
            )

        if is_cancelled(exceptions, occurrence_date):
            raise OccurrenceCancelledError(
                f"Occurrence {occurrence_date.isoformat()} of shift {shift.id} is cancelled"
            )

        window = generate_occurrences(
            shift.date, rule, occurrence_date, occurrence_date, exceptions, shift.title, shift.notes
        )
        if not window.occurrences:
            # Past the last counted step of the rule
            raise InvalidOccurrenceError(
                f"{occurrence_date.isoformat()} is not a valid occurrence of shift {shift.id}"
            )
        return window.occurrences[0]

    def _validate_references(self, site_ids: list[str], operator_ids: list[str]) -> None:
        tenant_id = self.auth.tenant_id
        if site_ids and self.repo.count_tenant_sites(self.db, tenant_id, site_ids) != len(set(site_ids)):
            raise HTTPException(status_code=400, detail="One or more sites were not found")
        if operator_ids and self.repo.count_tenant_users(self.db, tenant_id, operator_ids) != len(
            set(operator_ids)
        ):
            raise HTTPException(status_code=400, detail="One or more operators were not found")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_shifts(
        self,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
        search: Optional[str] = None,
        site_id: Optional[str] = None,
        operator_id: Optional[str] = None,
        page: int = 1,
        limit: int = SHIFTS_PAGE_LIMIT_DEFAULT,
    ) -> ShiftListResponse:
        """Expand every master shift of the tenant over the window and paginate"""
        week_start, week_end = default_week_range(dt.datetime.now(dt.timezone.utc).date())
        range_start = normalize_date(date_from) if date_from else week_start
        range_end = normalize_date(date_to) if date_to else week_end

        masters = self.repo.list_shifts(self.db, self.auth.tenant_id, search, site_id, operator_id)

        items = []
        truncated = False
        for shift in masters:
            window = generate_occurrences(
                shift.date,
                RecurrenceRule.from_model(shift.recurrence),
                range_start,
                range_end,
                [override_from_model(e) for e in shift.exceptions],
                shift.title,
                shift.notes,
            )
            truncated = truncated or window.truncated
            items.extend(shift_to_response(shift, o) for o in window.occurrences)

        items.sort(key=lambda r: (r.date, r.title))

        page_num = max(1, page)
        limit_num = min(SHIFTS_PAGE_LIMIT_MAX, max(1, limit))
        start_index = (page_num - 1) * limit_num

        return ShiftListResponse(
            data=items[start_index : start_index + limit_num],
            pagination=Pagination(
                page=page_num,
                limit=limit_num,
                total=len(items),
                totalPages=math.ceil(len(items) / limit_num),
            ),
            truncated=truncated,
        )

    def get_shift(self, shift_id: str) -> ShiftResponse:
        """Get a master shift or a single occurrence by its occurrence ID"""
        parsed = decode_occurrence_id(shift_id)
        shift = self._get_master(parsed.master_id)
        if parsed.occurrence_date is None:
            return shift_to_response(shift)
        occurrence = self._resolve_occurrence(shift, parsed.occurrence_date)
        return shift_to_response(shift, occurrence)

    def find_conflicts(
        self,
        operator_ids: list[str],
        date_from: dt.date,
        date_to: dt.date,
        exclude_id: Optional[str] = None,
    ) -> list[OperatorConflictResponse]:
        exclude_master = decode_occurrence_id(exclude_id).master_id if exclude_id else None
        conflicts = self.detector.find_conflicts(operator_ids, date_from, date_to, exclude_master)
        return [_conflict_response(c) for c in conflicts]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_shift(self, data: ShiftCreate) -> ShiftWriteResponse:
        """Create a single or recurring shift with its assignments"""
        logger.info(f"📥 Creating shift for tenant {self.auth.tenant_id}")

        rule = None
        if data.recurrence:
            rule = ensure_valid_recurrence(
                RecurrenceRule(
                    frequency=data.recurrence.frequency,
                    interval=data.recurrence.interval,
                    start_date=data.recurrence.startDate or data.date,
                    end_date=data.recurrence.endDate,
                    count=data.recurrence.count,
                )
            )

        self._validate_references(data.siteIds, data.operatorIds)
        conflicts = self.detector.find_conflicts(data.operatorIds, data.date, data.date)

        with transaction(self.db):
            shift = self.repo.create_shift(self.db, self.auth.tenant_id, data.title, data.date, data.notes)
            if rule:
                self.repo.create_recurrence(
                    self.db,
                    shift.id,
                    rule.frequency,
                    rule.interval,
                    rule.start_date,
                    end_date=rule.end_date,
                    count=rule.count,
                )
            self.repo.replace_sites(self.db, shift.id, data.siteIds)
            self.repo.replace_operators(self.db, shift.id, data.operatorIds)
            shift_id = shift.id

        logger.info(f"✅ Shift {shift_id} created (recurring={rule is not None})")
        return ShiftWriteResponse(
            shift=shift_to_response(self._get_master(shift_id)),
            affectedIds=[shift_id],
            createdId=shift_id,
            warnings=_warnings(conflicts, self.detector.truncated),
        )

    def _changes_from_request(self, data: ShiftUpdate, scope: str) -> ShiftChanges:
        values = {}
        for name in ("title", "notes", "date"):
            if name in data.model_fields_set:
                values[name] = getattr(data, name)

        if data.override is not None and scope == "single":
            for name in data.override.model_fields_set:
                values[name] = getattr(data.override, name)

        if isinstance(values.get("title"), str):
            values["title"] = values["title"].strip() or None
        if isinstance(values.get("notes"), str):
            values["notes"] = values["notes"].strip() or None

        if data.recurrence is not None:
            values["recurrence"] = RecurrenceChanges(
                **{
                    RECURRENCE_FIELD_MAP[name]: getattr(data.recurrence, name)
                    for name in data.recurrence.model_fields_set
                }
            )
        return ShiftChanges(**values)

    def update_shift(self, shift_id: str, data: ShiftUpdate) -> ShiftWriteResponse:
        """Scoped update: one occurrence, this and future occurrences, or the whole series"""
        parsed = decode_occurrence_id(shift_id)
        shift = self._get_master(parsed.master_id)
        scope = data.scope
        pivot = parsed.occurrence_date or data.occurrenceDate
        changes = self._changes_from_request(data, scope)

        conflicts = []
        scan_truncated = False
        operator_ids = [so.user_id for so in shift.shift_operators]
        if changes.date is not None and operator_ids:
            conflicts = self.detector.find_conflicts(
                operator_ids, changes.date, changes.date, exclude_master_id=shift.id
            )
            scan_truncated = self.detector.truncated

        result = self.mutator.apply_scoped_edit(scope, shift.id, pivot, changes)

        if result.created_master_id:
            response_shift = shift_to_response(self._get_master(result.created_master_id))
        else:
            updated = self._get_master(shift.id)
            if scope == "single" and updated.recurrence is not None:
                occurrence_date = normalize_date(pivot) if pivot else updated.date
                response_shift = shift_to_response(updated, self._resolve_occurrence(updated, occurrence_date))
            else:
                response_shift = shift_to_response(updated)

        return ShiftWriteResponse(
            shift=response_shift,
            affectedIds=result.affected_master_ids,
            createdId=result.created_master_id,
            deletedIds=result.deleted_master_ids,
            warnings=_warnings(conflicts, scan_truncated),
        )

    def delete_shift(self, shift_id: str, scope: str = "single") -> ShiftWriteResponse:
        parsed = decode_occurrence_id(shift_id)
        shift = self._get_master(parsed.master_id)
        result = self.mutator.apply_scoped_delete(scope, shift.id, parsed.occurrence_date)
        return ShiftWriteResponse(
            affectedIds=result.affected_master_ids,
            deletedIds=result.deleted_master_ids,
        )

    def assign_sites(self, shift_id: str, site_ids: list[str]) -> ShiftWriteResponse:
        """Replace the sites of a master shift"""
        shift = self._get_master(decode_occurrence_id(shift_id).master_id)
        self._validate_references(site_ids, [])

        with transaction(self.db):
            self.repo.replace_sites(self.db, shift.id, site_ids)

        return ShiftWriteResponse(shift=shift_to_response(self._get_master(shift.id)), affectedIds=[shift.id])

    def assign_operators(self, shift_id: str, operator_ids: list[str]) -> ShiftWriteResponse:
        """Replace the operators of a master shift and report double-bookings"""
        shift = self._get_master(decode_occurrence_id(shift_id).master_id)
        self._validate_references([], operator_ids)

        conflicts = self.detector.find_conflicts(operator_ids, shift.date, shift.date, exclude_master_id=shift.id)

        with transaction(self.db):
            self.repo.replace_operators(self.db, shift.id, operator_ids)

        return ShiftWriteResponse(
            shift=shift_to_response(self._get_master(shift.id)),
            affectedIds=[shift.id],
            warnings=_warnings(conflicts, self.detector.truncated),
        )
