"""
Series mutator - scoped edits and deletes of recurring shifts

Scopes:
- single:           upsert an exception on one occurrence date
- this_and_future:  split (edit) or truncate (delete) the series at a pivot date
- series:           change the master and its rule in place, or delete everything

Each request is planned first (a list of store operations computed from a
snapshot of the master) and then applied inside one transaction, so a
split is never left half done.
"""

import datetime as dt
import logging
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ...database import transaction
from ...models import Shift, generate_id
from .calendar_math import DateLike, add_days, normalize_date
from .errors import (
    InvalidOccurrenceError,
    OccurrenceCancelledError,
    SeriesMutationError,
    ShiftNotFoundError,
)
from .overlay import (
    CancelledOverride,
    ModifiedOverride,
    is_cancelled,
    override_from_model,
)
from .recurrence import (
    RecurrenceRule,
    ensure_valid_recurrence,
    is_valid_occurrence,
    last_counted_date,
    steps_before,
)
from .repository import ShiftRepository

logger = logging.getLogger(__name__)

EditScope = Literal["single", "this_and_future", "series"]
SCOPES = ("single", "this_and_future", "series")


class RecurrenceChanges(BaseModel):
    """Partial rule update; explicitly sending null for end_date/count clears it"""

    frequency: Optional[Literal["DAILY", "WEEKLY"]] = None
    interval: Optional[int] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    count: Optional[int] = None


class ShiftChanges(BaseModel):
    title: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[dt.date] = None
    recurrence: Optional[RecurrenceChanges] = None

    def master_values(self) -> dict:
        values = {}
        if self.title is not None:
            values["title"] = self.title
        if "notes" in self.model_fields_set:
            values["notes"] = self.notes
        if self.date is not None:
            values["date"] = self.date
        return values


class ShiftSnapshot(BaseModel):
    """Everything the planner needs to know about one master shift"""

    id: str
    tenant_id: str
    title: str
    date: dt.date
    notes: Optional[str] = None
    rule: Optional[RecurrenceRule] = None
    exceptions: list[Union[CancelledOverride, ModifiedOverride]] = []
    site_ids: list[str] = []
    operator_ids: list[str] = []

    @classmethod
    def from_model(cls, shift: Shift) -> "ShiftSnapshot":
        return cls(
            id=shift.id,
            tenant_id=shift.tenant_id,
            title=shift.title,
            date=normalize_date(shift.date),
            notes=shift.notes,
            rule=RecurrenceRule.from_model(shift.recurrence),
            exceptions=[override_from_model(e) for e in shift.exceptions],
            site_ids=[ss.site_id for ss in shift.shift_sites],
            operator_ids=[so.user_id for so in shift.shift_operators],
        )


# ----------------------------------------------------------------------
# Store operations
# ----------------------------------------------------------------------


class UpsertException(BaseModel):
    shift_id: str
    override: Union[CancelledOverride, ModifiedOverride]

    def apply(self, db: Session) -> None:
        o = self.override
        ShiftRepository.upsert_exception(
            db,
            self.shift_id,
            o.date,
            o.type,
            new_title=getattr(o, "new_title", None),
            new_notes=getattr(o, "new_notes", None),
            new_date=getattr(o, "new_date", None),
        )


class UpdateShift(BaseModel):
    shift_id: str
    values: dict

    def apply(self, db: Session) -> None:
        ShiftRepository.update_shift(db, self.shift_id, **self.values)


class UpdateRecurrence(BaseModel):
    shift_id: str
    values: dict

    def apply(self, db: Session) -> None:
        ShiftRepository.update_recurrence(db, self.shift_id, **self.values)


class CreateShift(BaseModel):
    shift_id: str
    tenant_id: str
    title: str
    date: dt.date
    notes: Optional[str] = None
    rule: RecurrenceRule
    site_ids: list[str] = []
    operator_ids: list[str] = []

    def apply(self, db: Session) -> None:
        ShiftRepository.create_shift(
            db, self.tenant_id, self.title, self.date, self.notes, shift_id=self.shift_id
        )
        ShiftRepository.create_recurrence(
            db,
            self.shift_id,
            self.rule.frequency,
            self.rule.interval,
            self.rule.start_date,
            end_date=self.rule.end_date,
            count=self.rule.count,
        )
        ShiftRepository.replace_sites(db, self.shift_id, self.site_ids)
        ShiftRepository.replace_operators(db, self.shift_id, self.operator_ids)


class MoveExceptions(BaseModel):
    from_shift_id: str
    to_shift_id: str
    on_or_after: dt.date

    def apply(self, db: Session) -> None:
        ShiftRepository.move_exceptions(db, self.from_shift_id, self.to_shift_id, self.on_or_after)


class DeleteExceptions(BaseModel):
    shift_id: str
    on_or_after: dt.date

    def apply(self, db: Session) -> None:
        ShiftRepository.delete_exceptions(db, self.shift_id, self.on_or_after)


class DeleteShift(BaseModel):
    shift_id: str

    def apply(self, db: Session) -> None:
        ShiftRepository.delete_shift(db, self.shift_id)


Operation = Union[
    UpsertException, UpdateShift, UpdateRecurrence, CreateShift, MoveExceptions, DeleteExceptions, DeleteShift
]


class MutationResult(BaseModel):
    affected_master_ids: list[str] = []
    created_master_id: Optional[str] = None
    deleted_master_ids: list[str] = []


class MutationPlan(BaseModel):
    operations: list[Operation] = []
    result: MutationResult = Field(default_factory=MutationResult)


# ----------------------------------------------------------------------
# Planning (pure)
# ----------------------------------------------------------------------


def _require_scope(scope: str) -> None:
    if scope not in SCOPES:
        raise SeriesMutationError(f"Unknown scope: {scope}. Expected one of {', '.join(SCOPES)}")


def _check_pivot(snapshot: ShiftSnapshot, pivot: dt.date, reject_cancelled: bool) -> None:
    rule = snapshot.rule
    valid = is_valid_occurrence(pivot, snapshot.date, rule)
    last_date = last_counted_date(rule)
    if valid and pivot != snapshot.date and last_date is not None and pivot > last_date:
        valid = False
    if not valid:
        raise InvalidOccurrenceError(f"{pivot.isoformat()} is not a valid occurrence of shift {snapshot.id}")

    if reject_cancelled:
        if is_cancelled(snapshot.exceptions, pivot):
            raise OccurrenceCancelledError(f"Occurrence {pivot.isoformat()} of shift {snapshot.id} is cancelled")


def merge_rule(rule: RecurrenceRule, changes: Optional[RecurrenceChanges]) -> RecurrenceRule:
    """Apply a partial rule update; setting one end condition clears the other"""
    if changes is None:
        return rule

    values = rule.model_dump()
    fields = changes.model_fields_set
    for name in ("frequency", "interval", "start_date"):
        if name in fields and getattr(changes, name) is not None:
            values[name] = getattr(changes, name)

    if "end_date" in fields:
        values["end_date"] = changes.end_date
        if changes.end_date is not None and "count" not in fields:
            values["count"] = None
    if "count" in fields:
        values["count"] = changes.count
        if changes.count is not None and "end_date" not in fields:
            values["end_date"] = None

    return RecurrenceRule(**values)


def successor_rule(rule: RecurrenceRule, pivot: dt.date, changes: Optional[RecurrenceChanges]) -> RecurrenceRule:
    """Rule of the series created by a this_and_future split at pivot"""
    if changes is not None and changes.start_date is not None:
        raise SeriesMutationError("start_date cannot be changed by a this_and_future edit")

    remaining = rule.model_copy(
        update={
            "start_date": pivot,
            "count": rule.count - steps_before(rule, pivot) if rule.count is not None else None,
        }
    )
    return merge_rule(remaining, changes)


def _truncate_operations(snapshot: ShiftSnapshot, pivot: dt.date) -> tuple[list, bool]:
    """Operations ending the old series the day before pivot; flag tells if it gets deleted"""
    rule = snapshot.rule
    new_end = add_days(pivot, -1)

    if new_end < rule.start_date:
        return [DeleteShift(shift_id=snapshot.id)], True

    operations = [UpdateRecurrence(shift_id=snapshot.id, values={"end_date": new_end, "count": None})]
    if snapshot.date >= pivot:
        # The anchor always generates; keep it inside the shortened series
        operations.append(UpdateShift(shift_id=snapshot.id, values={"date": rule.start_date}))
    return operations, False


def plan_edit(
    snapshot: ShiftSnapshot,
    scope: str,
    pivot_date: Optional[DateLike],
    changes: ShiftChanges,
    new_shift_id: Optional[str] = None,
) -> MutationPlan:
    _require_scope(scope)

    if snapshot.rule is None:
        if changes.recurrence is not None:
            raise SeriesMutationError("Recurrence changes require a recurring shift")
        values = changes.master_values()
        if not values:
            raise SeriesMutationError("No fields to update")
        return MutationPlan(
            operations=[UpdateShift(shift_id=snapshot.id, values=values)],
            result=MutationResult(affected_master_ids=[snapshot.id]),
        )

    pivot = normalize_date(pivot_date) if pivot_date is not None else snapshot.date

    if scope == "single":
        if changes.recurrence is not None:
            raise SeriesMutationError("Recurrence changes are not allowed for a single occurrence")
        if changes.title is None and changes.notes is None and changes.date is None:
            raise SeriesMutationError("No fields to update")
        _check_pivot(snapshot, pivot, reject_cancelled=True)
        override = ModifiedOverride(
            date=pivot, new_title=changes.title, new_notes=changes.notes, new_date=changes.date
        )
        return MutationPlan(
            operations=[UpsertException(shift_id=snapshot.id, override=override)],
            result=MutationResult(affected_master_ids=[snapshot.id]),
        )

    if scope == "series":
        operations = []
        values = changes.master_values()
        if values:
            operations.append(UpdateShift(shift_id=snapshot.id, values=values))
        if changes.recurrence is not None:
            merged = ensure_valid_recurrence(merge_rule(snapshot.rule, changes.recurrence))
            rule_values = {
                k: v for k, v in merged.model_dump().items() if getattr(snapshot.rule, k) != v
            }
            if rule_values:
                operations.append(UpdateRecurrence(shift_id=snapshot.id, values=rule_values))
        if not operations:
            raise SeriesMutationError("No fields to update")
        return MutationPlan(operations=operations, result=MutationResult(affected_master_ids=[snapshot.id]))

    # this_and_future
    if changes.date is not None:
        raise SeriesMutationError("date can only be changed for a single occurrence or the whole series")
    _check_pivot(snapshot, pivot, reject_cancelled=False)

    rule = ensure_valid_recurrence(successor_rule(snapshot.rule, pivot, changes.recurrence))
    new_id = new_shift_id or generate_id()
    operations = [
        CreateShift(
            shift_id=new_id,
            tenant_id=snapshot.tenant_id,
            title=changes.title if changes.title is not None else snapshot.title,
            date=pivot,
            notes=changes.notes if "notes" in changes.model_fields_set else snapshot.notes,
            rule=rule,
            site_ids=snapshot.site_ids,
            operator_ids=snapshot.operator_ids,
        ),
        MoveExceptions(from_shift_id=snapshot.id, to_shift_id=new_id, on_or_after=pivot),
    ]
    truncate, deleted = _truncate_operations(snapshot, pivot)
    operations.extend(truncate)

    result = MutationResult(
        affected_master_ids=[new_id] if deleted else [snapshot.id, new_id],
        created_master_id=new_id,
        deleted_master_ids=[snapshot.id] if deleted else [],
    )
    return MutationPlan(operations=operations, result=result)


def plan_delete(snapshot: ShiftSnapshot, scope: str, pivot_date: Optional[DateLike]) -> MutationPlan:
    _require_scope(scope)

    if snapshot.rule is None or scope == "series":
        return MutationPlan(
            operations=[DeleteShift(shift_id=snapshot.id)],
            result=MutationResult(affected_master_ids=[snapshot.id], deleted_master_ids=[snapshot.id]),
        )

    pivot = normalize_date(pivot_date) if pivot_date is not None else snapshot.date

    if scope == "single":
        _check_pivot(snapshot, pivot, reject_cancelled=True)
        return MutationPlan(
            operations=[UpsertException(shift_id=snapshot.id, override=CancelledOverride(date=pivot))],
            result=MutationResult(affected_master_ids=[snapshot.id]),
        )

    # this_and_future
    _check_pivot(snapshot, pivot, reject_cancelled=False)
    operations = [DeleteExceptions(shift_id=snapshot.id, on_or_after=pivot)]
    truncate, deleted = _truncate_operations(snapshot, pivot)
    operations.extend(truncate)
    return MutationPlan(
        operations=operations,
        result=MutationResult(
            affected_master_ids=[snapshot.id],
            deleted_master_ids=[snapshot.id] if deleted else [],
        ),
    )


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------


class SeriesMutator:
    """Loads a tenant's master, plans the scoped change and applies it atomically"""

    def __init__(self, db: Session, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id
        self.repo = ShiftRepository()

    def _snapshot(self, master_id: str) -> ShiftSnapshot:
        shift = self.repo.get_shift(self.db, master_id, self.tenant_id)
        if not shift:
            raise ShiftNotFoundError(master_id)
        return ShiftSnapshot.from_model(shift)

    def apply(self, plan: MutationPlan) -> MutationResult:
        with transaction(self.db):
            for operation in plan.operations:
                operation.apply(self.db)
        logger.info(
            f"✅ Applied {len(plan.operations)} shift operations "
            f"(affected={plan.result.affected_master_ids}, created={plan.result.created_master_id}, "
            f"deleted={plan.result.deleted_master_ids})"
        )
        return plan.result

    def apply_scoped_edit(
        self,
        scope: str,
        master_id: str,
        pivot_date: Optional[DateLike],
        changes: ShiftChanges,
    ) -> MutationResult:
        snapshot = self._snapshot(master_id)
        plan = plan_edit(snapshot, scope, pivot_date, changes)
        logger.info(f"📝 Editing shift {master_id} with scope={scope}")
        return self.apply(plan)

    def apply_scoped_delete(self, scope: str, master_id: str, pivot_date: Optional[DateLike]) -> MutationResult:
        snapshot = self._snapshot(master_id)
        plan = plan_delete(snapshot, scope, pivot_date)
        logger.info(f"🗑️ Deleting shift {master_id} with scope={scope}")
        return self.apply(plan)
