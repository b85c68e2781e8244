import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .database import get_db
from .models import User
from .security_utils import verify_jwt_token

logger = logging.getLogger(__name__)

security = HTTPBearer()

KNOWN_ROLES = ("admin", "manager", "operator")


class AuthContext(BaseModel):
    """Authenticated caller; every query in the request is scoped to tenant_id"""

    user_id: str
    tenant_id: str
    role: str
    email: Optional[str] = None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthContext:
    """Decode the bearer token into the caller's user and tenant"""
    payload = verify_jwt_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenantId")
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if not tenant_id:
        logger.warning(f"⚠️ Token for user {user_id} has no tenant")
        raise HTTPException(status_code=401, detail="Tenant ID missing")

    return AuthContext(
        user_id=user_id,
        tenant_id=tenant_id,
        role=str(payload.get("role", "operator")).lower(),
        email=payload.get("email"),
    )


def is_admin_or_manager(db: Session, user_id: str, tenant_id: str) -> bool:
    """Admins always may write; managers and operators flagged as managers too"""
    user = db.query(User).filter(User.id == user_id, User.tenant_id == tenant_id).first()
    if not user:
        return False
    if user.role == "ADMIN":
        return True
    return user.role == "MANAGER" or bool(user.is_manager)


async def require_admin_or_manager(
    current_user: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthContext:
    if current_user.role not in KNOWN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied. Only admins and managers can modify data.")

    if not is_admin_or_manager(db, current_user.user_id, current_user.tenant_id):
        logger.warning(f"⚠️ User {current_user.user_id} attempted a write without manager rights")
        raise HTTPException(status_code=403, detail="Only admins and managers can modify shifts")
    return current_user
