"""Shift repository - Database operations for shifts, rules and exceptions

Every read is filtered by tenant. Write helpers never commit; callers group
them inside database.transaction().
"""

import datetime as dt
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, selectinload

from ...models import Shift, ShiftException, ShiftOperator, ShiftRecurrence, ShiftSite, Site, User, generate_id


# Dialects with INSERT .. ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {"postgresql": postgresql_insert, "sqlite": sqlite_insert}


def _with_relations(query):
    return query.options(
        selectinload(Shift.recurrence),
        selectinload(Shift.exceptions),
        selectinload(Shift.shift_sites).selectinload(ShiftSite.site).selectinload(Site.client),
        selectinload(Shift.shift_operators).selectinload(ShiftOperator.user),
    )


class ShiftRepository:
    """Repository for shift database operations"""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_shift(db: Session, shift_id: str, tenant_id: str) -> Optional[Shift]:
        return (
            _with_relations(db.query(Shift))
            .filter(Shift.id == shift_id, Shift.tenant_id == tenant_id)
            .first()
        )

    @staticmethod
    def list_shifts(
        db: Session,
        tenant_id: str,
        search: Optional[str] = None,
        site_id: Optional[str] = None,
        operator_id: Optional[str] = None,
    ) -> list[Shift]:
        """All master shifts of a tenant with optional title/site/operator filters"""
        query = _with_relations(db.query(Shift)).filter(Shift.tenant_id == tenant_id)

        if search:
            query = query.filter(Shift.title.ilike(f"%{search}%"))
        if site_id:
            query = query.filter(Shift.shift_sites.any(ShiftSite.site_id == site_id))
        if operator_id:
            query = query.filter(Shift.shift_operators.any(ShiftOperator.user_id == operator_id))

        return query.order_by(Shift.date.asc()).all()

    @staticmethod
    def find_conflict_candidates(
        db: Session,
        tenant_id: str,
        operator_ids: Iterable[str],
        range_start: dt.date,
        range_end: dt.date,
        exclude_shift_id: Optional[str] = None,
    ) -> list[Shift]:
        """
        Shifts staffed by any of the operators that can produce an occurrence
        in the range: single shifts dated in range, recurring shifts started
        on or before range_end.
        """
        operator_ids = list(operator_ids)
        query = (
            _with_relations(db.query(Shift))
            .outerjoin(ShiftRecurrence, ShiftRecurrence.shift_id == Shift.id)
            .filter(
                Shift.tenant_id == tenant_id,
                Shift.shift_operators.any(ShiftOperator.user_id.in_(operator_ids)),
                or_(
                    and_(
                        ShiftRecurrence.id.is_(None),
                        Shift.date >= range_start,
                        Shift.date <= range_end,
                    ),
                    and_(
                        ShiftRecurrence.id.isnot(None),
                        ShiftRecurrence.start_date <= range_end,
                    ),
                ),
            )
        )
        if exclude_shift_id:
            query = query.filter(Shift.id != exclude_shift_id)
        return query.order_by(Shift.date.asc()).all()

    @staticmethod
    def list_exceptions(db: Session, shift_id: str) -> list[ShiftException]:
        return (
            db.query(ShiftException)
            .filter(ShiftException.shift_id == shift_id)
            .order_by(ShiftException.date.asc())
            .all()
        )

    @staticmethod
    def count_tenant_users(db: Session, tenant_id: str, user_ids: Iterable[str]) -> int:
        user_ids = set(user_ids)
        if not user_ids:
            return 0
        return db.query(User).filter(User.tenant_id == tenant_id, User.id.in_(user_ids)).count()

    @staticmethod
    def count_tenant_sites(db: Session, tenant_id: str, site_ids: Iterable[str]) -> int:
        site_ids = set(site_ids)
        if not site_ids:
            return 0
        return db.query(Site).filter(Site.tenant_id == tenant_id, Site.id.in_(site_ids)).count()

    @staticmethod
    def get_user(db: Session, user_id: str, tenant_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id, User.tenant_id == tenant_id).first()

    # ------------------------------------------------------------------
    # Writes (no commit)
    # ------------------------------------------------------------------

    @staticmethod
    def create_shift(
        db: Session,
        tenant_id: str,
        title: str,
        date: dt.date,
        notes: Optional[str] = None,
        shift_id: Optional[str] = None,
    ) -> Shift:
        shift = Shift(tenant_id=tenant_id, title=title, date=date, notes=notes)
        if shift_id:
            shift.id = shift_id
        db.add(shift)
        db.flush()
        return shift

    @staticmethod
    def update_shift(db: Session, shift_id: str, **updates) -> None:
        if updates:
            db.query(Shift).filter(Shift.id == shift_id).update(updates, synchronize_session="fetch")

    @staticmethod
    def delete_shift(db: Session, shift_id: str) -> None:
        """Delete a master with its rule, exceptions and association rows"""
        # Explicit deletes: loaded relationship collections may be stale after exception moves
        for model in (ShiftException, ShiftRecurrence, ShiftSite, ShiftOperator):
            db.query(model).filter(model.shift_id == shift_id).delete(synchronize_session="fetch")
        db.query(Shift).filter(Shift.id == shift_id).delete(synchronize_session="fetch")

    @staticmethod
    def create_recurrence(
        db: Session,
        shift_id: str,
        frequency: str,
        interval: int,
        start_date: dt.date,
        end_date: Optional[dt.date] = None,
        count: Optional[int] = None,
    ) -> ShiftRecurrence:
        recurrence = ShiftRecurrence(
            shift_id=shift_id,
            frequency=frequency,
            interval=interval,
            start_date=start_date,
            end_date=end_date,
            count=count,
        )
        db.add(recurrence)
        db.flush()
        return recurrence

    @staticmethod
    def update_recurrence(db: Session, shift_id: str, **updates) -> None:
        if updates:
            db.query(ShiftRecurrence).filter(ShiftRecurrence.shift_id == shift_id).update(
                updates, synchronize_session="fetch"
            )

    @staticmethod
    def upsert_exception(
        db: Session,
        shift_id: str,
        date: dt.date,
        exception_type: str,
        new_title: Optional[str] = None,
        new_notes: Optional[str] = None,
        new_date: Optional[dt.date] = None,
    ) -> ShiftException:
        """
        Create or fully replace the exception keyed by (shift_id, date).

        Runs as a single INSERT .. ON CONFLICT DO UPDATE on the unique key, so two
        writers racing on the same date leave exactly one row.
        """
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Exception upsert is not supported on {dialect}")

        fields = {
            "exception_type": exception_type,
            "new_title": new_title,
            "new_notes": new_notes,
            "new_date": new_date,
        }
        db.flush()
        statement = (
            insert(ShiftException)
            .values(id=generate_id(), shift_id=shift_id, date=date, **fields)
            .on_conflict_do_update(
                index_elements=[ShiftException.shift_id, ShiftException.date],
                set_={**fields, "updated_at": func.now()},
            )
        )
        db.execute(statement)

        return (
            db.query(ShiftException)
            .populate_existing()
            .filter(ShiftException.shift_id == shift_id, ShiftException.date == date)
            .one()
        )

    @staticmethod
    def move_exceptions(db: Session, from_shift_id: str, to_shift_id: str, on_or_after: dt.date) -> int:
        """Re-point exceptions dated on or after a pivot to another master"""
        return (
            db.query(ShiftException)
            .filter(ShiftException.shift_id == from_shift_id, ShiftException.date >= on_or_after)
            .update({ShiftException.shift_id: to_shift_id}, synchronize_session="fetch")
        )

    @staticmethod
    def delete_exceptions(db: Session, shift_id: str, on_or_after: dt.date) -> int:
        return (
            db.query(ShiftException)
            .filter(ShiftException.shift_id == shift_id, ShiftException.date >= on_or_after)
            .delete(synchronize_session="fetch")
        )

    @staticmethod
    def replace_sites(db: Session, shift_id: str, site_ids: Iterable[str]) -> None:
        db.query(ShiftSite).filter(ShiftSite.shift_id == shift_id).delete(synchronize_session="fetch")
        for site_id in dict.fromkeys(site_ids):
            db.add(ShiftSite(shift_id=shift_id, site_id=site_id))
        db.flush()

    @staticmethod
    def replace_operators(db: Session, shift_id: str, operator_ids: Iterable[str]) -> None:
        db.query(ShiftOperator).filter(ShiftOperator.shift_id == shift_id).delete(
            synchronize_session="fetch"
        )
        for user_id in dict.fromkeys(operator_ids):
            db.add(ShiftOperator(shift_id=shift_id, user_id=user_id))
        db.flush()
