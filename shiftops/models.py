import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a string primary key (never contains the occurrence id separator)"""
    return str(uuid.uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class User(Base):
    """Tenant user; operators are users assigned to shifts"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    role = Column(String(20), default="OPERATOR", nullable=False)  # ADMIN, MANAGER, OPERATOR
    is_manager = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    sites = relationship("Site", back_populates="client", cascade="all, delete-orphan")


class Site(Base):
    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    client = relationship("Client", back_populates="sites")


class Shift(Base):
    """Master shift: a single assignment or the anchor of a recurring series"""

    __tablename__ = "shifts"

    id = Column(String(36), primary_key=True, default=generate_id)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    date = Column(Date, nullable=False, index=True)  # Anchor date the shift was created for
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    recurrence = relationship(
        "ShiftRecurrence",
        back_populates="shift",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    exceptions = relationship(
        "ShiftException",
        back_populates="shift",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ShiftException.date",
    )
    shift_sites = relationship(
        "ShiftSite", back_populates="shift", cascade="all, delete-orphan", passive_deletes=True
    )
    shift_operators = relationship(
        "ShiftOperator", back_populates="shift", cascade="all, delete-orphan", passive_deletes=True
    )


class ShiftRecurrence(Base):
    """Recurrence rule (1:1, optional) - DAILY or WEEKLY with interval"""

    __tablename__ = "shift_recurrences"
    __table_args__ = (
        CheckConstraint("interval >= 1", name="ck_shift_recurrences_interval"),
        CheckConstraint(
            "end_date IS NULL OR count IS NULL", name="ck_shift_recurrences_end_xor_count"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    shift_id = Column(
        String(36), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    frequency = Column(String(10), nullable=False)  # DAILY, WEEKLY
    interval = Column(Integer, default=1, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    count = Column(Integer, nullable=True)

    shift = relationship("Shift", back_populates="recurrence")


class ShiftException(Base):
    """Per-date override of a recurring series (cancel or modify)"""

    __tablename__ = "shift_exceptions"
    __table_args__ = (UniqueConstraint("shift_id", "date", name="uq_shift_exceptions_shift_date"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    shift_id = Column(String(36), ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)  # Nominal occurrence date
    exception_type = Column(String(20), nullable=False)  # CANCELLED, MODIFIED
    new_title = Column(String(255), nullable=True)
    new_notes = Column(Text, nullable=True)
    new_date = Column(Date, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    shift = relationship("Shift", back_populates="exceptions")


class ShiftSite(Base):
    __tablename__ = "shift_sites"

    shift_id = Column(String(36), ForeignKey("shifts.id", ondelete="CASCADE"), primary_key=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), primary_key=True)

    shift = relationship("Shift", back_populates="shift_sites")
    site = relationship("Site")


class ShiftOperator(Base):
    __tablename__ = "shift_operators"

    shift_id = Column(String(36), ForeignKey("shifts.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    shift = relationship("Shift", back_populates="shift_operators")
    user = relationship("User")
