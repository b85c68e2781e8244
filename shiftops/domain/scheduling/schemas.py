"""Scheduling domain schemas - Pydantic models for validation"""

import datetime as dt
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, BeforeValidator, field_validator

from .calendar_math import normalize_date

ApplyTo = Literal["single", "this_and_future", "series"]


def _to_date(v):
    if v is None or v == "":
        return None
    return normalize_date(v)


def _to_frequency(v):
    if v is None:
        return v
    return str(v).upper()


FlexibleDate = Annotated[dt.date, BeforeValidator(_to_date)]
Frequency = Annotated[Literal["DAILY", "WEEKLY"], BeforeValidator(_to_frequency)]


class RecurrenceIn(BaseModel):
    """Recurrence block of a create request"""

    frequency: Frequency
    interval: int = 1
    startDate: Optional[FlexibleDate] = None  # Defaults to the shift date
    endDate: Optional[FlexibleDate] = None
    count: Optional[int] = None


class RecurrenceUpdate(BaseModel):
    frequency: Optional[Frequency] = None
    interval: Optional[int] = None
    startDate: Optional[FlexibleDate] = None
    endDate: Optional[FlexibleDate] = None
    count: Optional[int] = None


class ShiftCreate(BaseModel):
    """Schema for creating a single or recurring shift"""

    title: str
    date: FlexibleDate
    notes: Optional[str] = None
    siteIds: list[str] = []
    operatorIds: list[str] = []
    recurrence: Optional[RecurrenceIn] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v):
        if v is None:
            return v
        return v.strip() or None


class OccurrenceOverride(BaseModel):
    """Override fields for a single occurrence"""

    title: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[FlexibleDate] = None


class ShiftUpdate(BaseModel):
    """Schema for a scoped shift update"""

    title: Optional[str] = None
    date: Optional[FlexibleDate] = None
    notes: Optional[str] = None
    applyTo: Optional[ApplyTo] = None
    updateType: Optional[ApplyTo] = None  # Deprecated alias of applyTo
    occurrenceDate: Optional[FlexibleDate] = None
    override: Optional[OccurrenceOverride] = None
    recurrence: Optional[RecurrenceUpdate] = None

    @property
    def scope(self) -> str:
        return self.applyTo or self.updateType or "single"


class AssignSitesRequest(BaseModel):
    siteIds: list[str]


class AssignOperatorsRequest(BaseModel):
    operatorIds: list[str]


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


class ClientSummary(BaseModel):
    id: str
    name: str


class SiteSummary(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    client: Optional[ClientSummary] = None


class OperatorSummary(BaseModel):
    id: str
    firstName: str
    lastName: str
    isManager: bool


class RecurrenceResponse(BaseModel):
    id: str
    frequency: str
    interval: int
    startDate: dt.date
    endDate: Optional[dt.date] = None
    count: Optional[int] = None


class ShiftResponse(BaseModel):
    """One occurrence (or the master itself) as returned to clients"""

    id: str
    masterId: str
    title: str
    date: dt.date
    effectiveDate: dt.date
    notes: Optional[str] = None
    tenantId: str
    createdAt: Optional[dt.datetime] = None
    updatedAt: Optional[dt.datetime] = None
    sites: list[SiteSummary] = []
    operators: list[OperatorSummary] = []
    recurrence: Optional[RecurrenceResponse] = None
    isRecurring: bool
    isOriginal: bool = True
    isException: bool = False
    exceptionType: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class ShiftListResponse(BaseModel):
    data: list[ShiftResponse]
    pagination: Pagination
    truncated: bool = False


class ConflictingShiftResponse(BaseModel):
    id: str
    title: str
    date: dt.date


class OperatorConflictResponse(BaseModel):
    operatorId: str
    operatorName: Optional[str] = None
    conflictingShift: ConflictingShiftResponse
    conflictDate: dt.date


class Warnings(BaseModel):
    operatorConflicts: list[OperatorConflictResponse]
    # The conflict scan hit the recurrence iteration cap and may be incomplete
    truncated: bool = False


class ShiftWriteResponse(BaseModel):
    shift: Optional[ShiftResponse] = None
    affectedIds: list[str] = []
    createdId: Optional[str] = None
    deletedIds: list[str] = []
    warnings: Optional[Warnings] = None
