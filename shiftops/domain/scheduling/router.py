"""Shift router - FastAPI endpoints for shift operations"""

import datetime as dt
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...auth import AuthContext, get_current_user, require_admin_or_manager
from ...config import SHIFTS_PAGE_LIMIT_DEFAULT
from ...database import get_db
from .schemas import (
    AssignOperatorsRequest,
    AssignSitesRequest,
    OperatorConflictResponse,
    ShiftCreate,
    ShiftListResponse,
    ShiftResponse,
    ShiftUpdate,
    ShiftWriteResponse,
)
from .service import ShiftService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shifts", tags=["Shifts"])


def get_shift_service(
    current_user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ShiftService:
    """Dependency injection for ShiftService"""
    return ShiftService(db, current_user)


# ============================================================================
# QUERIES
# ============================================================================


@router.get("", response_model=ShiftListResponse)
async def list_shifts(
    date_from: Optional[dt.date] = Query(None, alias="from"),
    date_to: Optional[dt.date] = Query(None, alias="to"),
    q: Optional[str] = None,
    site_id: Optional[str] = None,
    operator_id: Optional[str] = None,
    page: int = 1,
    limit: int = SHIFTS_PAGE_LIMIT_DEFAULT,
    service: ShiftService = Depends(get_shift_service),
):
    """List shift occurrences in a window (defaults to the current week)"""
    return service.list_shifts(date_from, date_to, q, site_id, operator_id, page, limit)


@router.get("/conflicts", response_model=list[OperatorConflictResponse])
async def get_conflicts(
    response: Response,
    operator_ids: list[str] = Query(...),
    date_from: dt.date = Query(..., alias="from"),
    date_to: dt.date = Query(..., alias="to"),
    exclude: Optional[str] = None,
    service: ShiftService = Depends(get_shift_service),
):
    """Operators already booked on other shifts in the window"""
    conflicts = service.find_conflicts(operator_ids, date_from, date_to, exclude)
    if service.detector.truncated:
        response.headers["X-Conflicts-Truncated"] = "true"
    return conflicts


@router.get("/{shift_id}", response_model=ShiftResponse)
async def get_shift(shift_id: str, service: ShiftService = Depends(get_shift_service)):
    return service.get_shift(shift_id)


# ============================================================================
# COMMANDS (admins and managers)
# ============================================================================


@router.post("", response_model=ShiftWriteResponse, status_code=201)
async def create_shift(
    data: ShiftCreate,
    current_user: AuthContext = Depends(require_admin_or_manager),
    service: ShiftService = Depends(get_shift_service),
):
    return service.create_shift(data)


@router.patch("/{shift_id}", response_model=ShiftWriteResponse)
async def update_shift(
    shift_id: str,
    data: ShiftUpdate,
    current_user: AuthContext = Depends(require_admin_or_manager),
    service: ShiftService = Depends(get_shift_service),
):
    """Update one occurrence, this and future occurrences, or the whole series"""
    logger.info(f"📝 User {current_user.user_id} updating shift {shift_id} ({data.scope})")
    return service.update_shift(shift_id, data)


@router.delete("/{shift_id}", status_code=204)
async def delete_shift(
    shift_id: str,
    deleteType: Literal["single", "this_and_future", "series"] = "single",
    current_user: AuthContext = Depends(require_admin_or_manager),
    service: ShiftService = Depends(get_shift_service),
):
    logger.info(f"🗑️ User {current_user.user_id} deleting shift {shift_id} ({deleteType})")
    service.delete_shift(shift_id, deleteType)
    return Response(status_code=204)


@router.post("/{shift_id}/sites", response_model=ShiftWriteResponse)
async def assign_sites(
    shift_id: str,
    data: AssignSitesRequest,
    current_user: AuthContext = Depends(require_admin_or_manager),
    service: ShiftService = Depends(get_shift_service),
):
    return service.assign_sites(shift_id, data.siteIds)


@router.post("/{shift_id}/operators", response_model=ShiftWriteResponse)
async def assign_operators(
    shift_id: str,
    data: AssignOperatorsRequest,
    current_user: AuthContext = Depends(require_admin_or_manager),
    service: ShiftService = Depends(get_shift_service),
):
    return service.assign_operators(shift_id, data.operatorIds)
