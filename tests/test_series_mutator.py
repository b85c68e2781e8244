import datetime as dt

import pytest
from sqlalchemy.exc import IntegrityError

from shiftops.domain.scheduling import series_mutator
from shiftops.domain.scheduling.errors import (
    InvalidOccurrenceError,
    OccurrenceCancelledError,
    RecurrenceValidationError,
    SeriesMutationError,
    ShiftNotFoundError,
)
from shiftops.domain.scheduling.overlay import CancelledOverride, ModifiedOverride
from shiftops.domain.scheduling.recurrence import RecurrenceRule
from shiftops.domain.scheduling.repository import ShiftRepository
from shiftops.domain.scheduling.series_mutator import (
    CreateShift,
    DeleteShift,
    MoveExceptions,
    MutationPlan,
    RecurrenceChanges,
    SeriesMutator,
    ShiftChanges,
    ShiftSnapshot,
    UpdateRecurrence,
    UpdateShift,
    UpsertException,
    merge_rule,
    plan_delete,
    plan_edit,
)
from shiftops.models import Shift, ShiftException

JAN_1 = dt.date(2024, 1, 1)
DAILY = {"frequency": "DAILY"}


@pytest.fixture
def mutator(db, tenant):
    return SeriesMutator(db, tenant.id)


def load(db, tenant, shift_id):
    return ShiftRepository.get_shift(db, shift_id, tenant.id)


class TestPlanning:
    """Plans are computed from a snapshot without touching the database"""

    def snapshot(self, **kwargs):
        values = {
            "id": "m1",
            "tenant_id": "t1",
            "title": "Cleaning",
            "date": JAN_1,
            "rule": RecurrenceRule(frequency="DAILY", start_date=JAN_1),
        }
        values.update(kwargs)
        return ShiftSnapshot(**values)

    def test_split_plan(self):
        plan = plan_edit(
            self.snapshot(), "this_and_future", dt.date(2024, 1, 10), ShiftChanges(title="Evening"), new_shift_id="m2"
        )

        create, move, truncate = plan.operations
        assert isinstance(create, CreateShift)
        assert create.date == dt.date(2024, 1, 10)
        assert create.rule.start_date == dt.date(2024, 1, 10)
        assert create.title == "Evening"
        assert isinstance(move, MoveExceptions)
        assert move.on_or_after == dt.date(2024, 1, 10)
        assert isinstance(truncate, UpdateRecurrence)
        assert truncate.values == {"end_date": dt.date(2024, 1, 9), "count": None}
        assert plan.result.created_master_id == "m2"
        assert plan.result.affected_master_ids == ["m1", "m2"]

    def test_truncation_before_start_deletes_the_series(self):
        plan = plan_delete(self.snapshot(), "this_and_future", JAN_1)

        assert isinstance(plan.operations[-1], DeleteShift)
        assert plan.result.deleted_master_ids == ["m1"]

    def test_single_edit_plans_one_upsert(self):
        plan = plan_edit(self.snapshot(), "single", dt.date(2024, 1, 3), ShiftChanges(notes="Side door"))

        [operation] = plan.operations
        assert isinstance(operation, UpsertException)
        assert isinstance(operation.override, ModifiedOverride)
        assert operation.override.date == dt.date(2024, 1, 3)
        assert operation.override.new_notes == "Side door"
        assert operation.override.new_title is None

    def test_unknown_scope(self):
        with pytest.raises(SeriesMutationError):
            plan_delete(self.snapshot(), "everything", JAN_1)

    def test_split_cannot_move_dates(self):
        with pytest.raises(SeriesMutationError):
            plan_edit(self.snapshot(), "this_and_future", dt.date(2024, 1, 5), ShiftChanges(date=dt.date(2024, 2, 1)))

    def test_empty_changes_are_rejected(self):
        with pytest.raises(SeriesMutationError):
            plan_edit(self.snapshot(), "single", JAN_1, ShiftChanges())

    def test_merge_rule_switches_end_condition(self):
        rule = RecurrenceRule(frequency="DAILY", start_date=JAN_1, count=5)

        merged = merge_rule(rule, RecurrenceChanges(end_date=dt.date(2024, 2, 1)))
        assert merged.end_date == dt.date(2024, 2, 1)
        assert merged.count is None

        cleared = merge_rule(rule, RecurrenceChanges(count=None))
        assert cleared.count is None
        assert merge_rule(rule, RecurrenceChanges(interval=2)).count == 5


class TestSingleScope:
    def test_single_edit_is_idempotent(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(recurrence=DAILY)
        changes = ShiftChanges(title="Deep clean")

        mutator.apply_scoped_edit("single", shift_id, dt.date(2024, 1, 3), changes)
        mutator.apply_scoped_edit("single", shift_id, dt.date(2024, 1, 3), changes)

        rows = db.query(ShiftException).filter(ShiftException.shift_id == shift_id).all()
        assert len(rows) == 1
        assert rows[0].exception_type == "MODIFIED"
        assert rows[0].new_title == "Deep clean"
        assert load(db, tenant, shift_id).title == "Morning cleaning"

    def test_single_delete_cancels_the_occurrence(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(recurrence=DAILY)

        result = mutator.apply_scoped_delete("single", shift_id, dt.date(2024, 1, 4))

        assert result.affected_master_ids == [shift_id]
        [row] = load(db, tenant, shift_id).exceptions
        assert row.date == dt.date(2024, 1, 4)
        assert row.exception_type == "CANCELLED"

    def test_row_written_after_planning_is_replaced(self, db, tenant, make_shift, mutator, monkeypatch):
        # Another writer stores the same date between planning and applying
        shift_id = make_shift(recurrence=DAILY)
        original_plan = series_mutator.plan_delete

        def plan_then_concurrent_write(*args, **kwargs):
            plan = original_plan(*args, **kwargs)
            db.execute(
                ShiftException.__table__.insert().values(
                    id="concurrent-row",
                    shift_id=shift_id,
                    date=dt.date(2024, 1, 4),
                    exception_type="MODIFIED",
                    new_title="Other writer",
                )
            )
            db.commit()
            return plan

        monkeypatch.setattr(series_mutator, "plan_delete", plan_then_concurrent_write)

        mutator.apply_scoped_delete("single", shift_id, dt.date(2024, 1, 4))

        [row] = db.query(ShiftException).filter(ShiftException.shift_id == shift_id).all()
        assert row.id == "concurrent-row"
        assert row.exception_type == "CANCELLED"
        assert row.new_title is None

    def test_pivot_must_be_an_occurrence(self, make_shift, mutator):
        shift_id = make_shift(recurrence={"frequency": "DAILY", "interval": 2})

        with pytest.raises(InvalidOccurrenceError):
            mutator.apply_scoped_edit("single", shift_id, dt.date(2024, 1, 2), ShiftChanges(title="X"))

    def test_pivot_past_the_last_counted_step(self, make_shift, mutator):
        shift_id = make_shift(recurrence={"frequency": "DAILY", "count": 3})

        with pytest.raises(InvalidOccurrenceError):
            mutator.apply_scoped_delete("single", shift_id, dt.date(2024, 1, 5))

    def test_cancelled_pivot_is_reported(self, make_shift, mutator):
        shift_id = make_shift(
            recurrence=DAILY,
            exceptions=[{"date": dt.date(2024, 1, 3), "exception_type": "CANCELLED"}],
        )

        with pytest.raises(OccurrenceCancelledError):
            mutator.apply_scoped_edit("single", shift_id, dt.date(2024, 1, 3), ShiftChanges(title="X"))

    def test_unknown_master(self, mutator):
        with pytest.raises(ShiftNotFoundError):
            mutator.apply_scoped_delete("series", "missing", None)


class TestThisAndFuture:
    def test_split_moves_future_exceptions(self, db, tenant, alice, make_shift, mutator):
        shift_id = make_shift(
            recurrence=DAILY,
            operator_ids=[alice.id],
            exceptions=[
                {"date": dt.date(2024, 1, 5), "exception_type": "CANCELLED"},
                {"date": dt.date(2024, 1, 12), "exception_type": "MODIFIED", "new_title": "Windows"},
            ],
        )

        result = mutator.apply_scoped_edit(
            "this_and_future", shift_id, dt.date(2024, 1, 10), ShiftChanges(title="Evening cleaning")
        )

        old = load(db, tenant, shift_id)
        new = load(db, tenant, result.created_master_id)
        assert old.recurrence.end_date == dt.date(2024, 1, 9)
        assert old.recurrence.count is None
        assert [e.date for e in old.exceptions] == [dt.date(2024, 1, 5)]

        assert new.date == dt.date(2024, 1, 10)
        assert new.title == "Evening cleaning"
        assert new.recurrence.start_date == dt.date(2024, 1, 10)
        assert [e.date for e in new.exceptions] == [dt.date(2024, 1, 12)]
        assert [so.user_id for so in new.shift_operators] == [alice.id]
        assert result.deleted_master_ids == []

    def test_split_passes_on_the_remaining_count(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(recurrence={"frequency": "DAILY", "count": 10})

        result = mutator.apply_scoped_edit("this_and_future", shift_id, dt.date(2024, 1, 4), ShiftChanges(notes="New"))

        new = load(db, tenant, result.created_master_id)
        assert new.recurrence.count == 7
        assert new.notes == "New"
        assert load(db, tenant, shift_id).recurrence.end_date == dt.date(2024, 1, 3)

    def test_split_at_the_start_replaces_the_series(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(recurrence=DAILY)

        result = mutator.apply_scoped_edit("this_and_future", shift_id, JAN_1, ShiftChanges(title="Renamed"))

        assert result.deleted_master_ids == [shift_id]
        assert load(db, tenant, shift_id) is None
        assert load(db, tenant, result.created_master_id).title == "Renamed"

    def test_truncate_delete_purges_future_exceptions(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(
            recurrence=DAILY,
            exceptions=[
                {"date": dt.date(2024, 1, 2), "exception_type": "CANCELLED"},
                {"date": dt.date(2024, 1, 8), "exception_type": "CANCELLED"},
            ],
        )

        result = mutator.apply_scoped_delete("this_and_future", shift_id, dt.date(2024, 1, 6))

        old = load(db, tenant, shift_id)
        assert result.deleted_master_ids == []
        assert old.recurrence.end_date == dt.date(2024, 1, 5)
        assert [e.date for e in old.exceptions] == [dt.date(2024, 1, 2)]

    def test_truncate_at_or_before_start_deletes_everything(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(
            recurrence=DAILY,
            exceptions=[{"date": dt.date(2024, 1, 3), "exception_type": "CANCELLED"}],
        )

        result = mutator.apply_scoped_delete("this_and_future", shift_id, JAN_1)

        assert result.deleted_master_ids == [shift_id]
        assert load(db, tenant, shift_id) is None
        assert db.query(ShiftException).count() == 0


class TestSeriesScope:
    def test_series_edit_updates_master_and_rule(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(
            recurrence={"frequency": "DAILY", "count": 5},
            exceptions=[{"date": dt.date(2024, 1, 3), "exception_type": "CANCELLED"}],
        )

        changes = ShiftChanges(
            title="Weekly cleaning",
            recurrence=RecurrenceChanges(frequency="WEEKLY", end_date=dt.date(2024, 3, 1)),
        )
        mutator.apply_scoped_edit("series", shift_id, None, changes)

        shift = load(db, tenant, shift_id)
        assert shift.title == "Weekly cleaning"
        assert shift.recurrence.frequency == "WEEKLY"
        assert shift.recurrence.end_date == dt.date(2024, 3, 1)
        assert shift.recurrence.count is None
        assert len(shift.exceptions) == 1

    def test_series_rule_is_validated(self, make_shift, mutator):
        shift_id = make_shift(recurrence=DAILY)

        with pytest.raises(RecurrenceValidationError):
            mutator.apply_scoped_edit(
                "series", shift_id, None, ShiftChanges(recurrence=RecurrenceChanges(interval=0))
            )

    def test_series_delete(self, db, tenant, alice, make_shift, mutator):
        shift_id = make_shift(
            recurrence=DAILY,
            operator_ids=[alice.id],
            exceptions=[{"date": dt.date(2024, 1, 3), "exception_type": "CANCELLED"}],
        )

        mutator.apply_scoped_delete("series", shift_id, None)

        assert db.query(Shift).count() == 0
        assert db.query(ShiftException).count() == 0


class TestNonRecurring:
    def test_every_edit_scope_updates_the_master(self, db, tenant, make_shift, mutator):
        shift_id = make_shift(date=dt.date(2024, 1, 3))

        mutator.apply_scoped_edit("single", shift_id, None, ShiftChanges(date=dt.date(2024, 1, 4)))

        shift = load(db, tenant, shift_id)
        assert shift.date == dt.date(2024, 1, 4)
        assert shift.exceptions == []

    def test_every_delete_scope_deletes(self, db, tenant, make_shift, mutator):
        shift_id = make_shift()

        result = mutator.apply_scoped_delete("single", shift_id, None)

        assert result.deleted_master_ids == [shift_id]
        assert load(db, tenant, shift_id) is None


def test_failed_plan_is_rolled_back(db, tenant, make_shift, mutator):
    shift_id = make_shift(recurrence=DAILY)
    plan = MutationPlan(
        operations=[
            UpdateShift(shift_id=shift_id, values={"title": "Half applied"}),
            UpsertException(shift_id="missing-master", override=CancelledOverride(date=JAN_1)),
        ]
    )

    with pytest.raises(IntegrityError):
        mutator.apply(plan)

    assert load(db, tenant, shift_id).title == "Morning cleaning"
    assert db.query(ShiftException).count() == 0
