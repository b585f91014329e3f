"""
Admin unlock and administration procedures.

Unlocking is a second factor on top of the admin role: the admin submits
the shared unlock password and receives a short-lived admin session.
Administration procedures then require role + live unlock + an entitled
account (AdminUnlockedProcedure).

SECURITY:
- The password is compared in constant time
- Failed unlock attempts are logged with the user id, never the password
- Admins cannot suspend themselves
"""

import hmac
import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from equiprofile.api.dependencies.procedures import AdminUnlockedProcedure, ProtectedProcedure
from equiprofile.database.session import get_db_session
from equiprofile.entitlements.admin_sessions import AdminSessionStore
from equiprofile.platform.errors import (
    NOT_ADMIN_ERR_MSG,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from equiprofile.services.account_service import (
    AccountService,
    SelfOperationError,
    UserNotFoundError,
    serialize_admin_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trpc", tags=["admin"])

INVALID_ADMIN_PASSWORD_MSG = "Invalid admin password"


class SubmitPasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class SuspendUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class UnsuspendUserRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


def _passwords_match(submitted: str, expected: str) -> bool:
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


# =============================================================================
# Admin unlock
# =============================================================================

@router.post("/adminUnlock.submitPassword")
def submit_password(
    body: SubmitPasswordRequest,
    request: Request,
    ctx: ProtectedProcedure,
    db: Session = Depends(get_db_session),
):
    """Start (or restart) the caller's admin session."""
    if not ctx.snapshot.is_admin:
        raise PermissionDeniedError(NOT_ADMIN_ERR_MSG)

    settings = request.app.state.settings
    if not _passwords_match(body.password, settings.admin_unlock_password):
        logger.warning("Admin unlock failed", extra={"user_id": ctx.user_id})
        raise PermissionDeniedError(INVALID_ADMIN_PASSWORD_MSG)

    store = AdminSessionStore(db, ttl=timedelta(minutes=settings.admin_session_ttl_minutes))
    session = store.issue(ctx.user_id, now=ctx.now)
    return {"success": True, "expires_at": session.expires_at.isoformat()}


@router.get("/adminUnlock.getStatus")
def get_unlock_status(ctx: ProtectedProcedure, db: Session = Depends(get_db_session)):
    if not ctx.snapshot.is_admin:
        return {"is_unlocked": False, "expires_at": None}

    session = AdminSessionStore(db).get(ctx.user_id)
    if not AdminSessionStore.is_valid(session, ctx.now):
        return {"is_unlocked": False, "expires_at": None}
    return {"is_unlocked": True, "expires_at": session.expires_at.isoformat()}


# =============================================================================
# Administration
# =============================================================================

@router.get("/admin.getUsers")
def get_users(
    ctx: AdminUnlockedProcedure,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db_session),
):
    users = AccountService(db, actor_user_id=ctx.user_id).list_users(limit=limit, offset=offset)
    return {"users": [serialize_admin_user(user) for user in users]}


@router.post("/admin.suspendUser")
def suspend_user(
    body: SuspendUserRequest,
    ctx: AdminUnlockedProcedure,
    db: Session = Depends(get_db_session),
):
    service = AccountService(db, actor_user_id=ctx.user_id)
    try:
        user = service.suspend_user(body.user_id, reason=body.reason)
    except SelfOperationError as e:
        raise ValidationError(str(e))
    except UserNotFoundError:
        raise NotFoundError("User", body.user_id)
    return serialize_admin_user(user)


@router.post("/admin.unsuspendUser")
def unsuspend_user(
    body: UnsuspendUserRequest,
    ctx: AdminUnlockedProcedure,
    db: Session = Depends(get_db_session),
):
    service = AccountService(db, actor_user_id=ctx.user_id)
    try:
        user = service.unsuspend_user(body.user_id)
    except UserNotFoundError:
        raise NotFoundError("User", body.user_id)
    return serialize_admin_user(user)
