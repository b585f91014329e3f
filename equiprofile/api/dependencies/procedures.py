"""
Procedure guard chain.

Typed procedures under /trpc declare one of these dependencies. Each guard
depends on the one before it, so FastAPI runs them in order and stops at
the first failure:

    require_user -> require_active_account -> require_admin_session

The chain re-checks what the gateway middleware already checked. Both use
the same evaluate() on the same snapshot: when the gateway has already
loaded the caller's snapshot for this request it is reused, together with
its evaluation instant, so the two layers cannot disagree.

Unlike the gateway, every guard here fails closed: a storage error becomes
a 503 (identity/entitlement) or a FORBIDDEN (admin session), never a pass.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Callable

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from equiprofile.database.session import get_db_session
from equiprofile.entitlements.admin_sessions import AdminSessionStore
from equiprofile.entitlements.audit import (
    SURFACE_PROCEDURE,
    log_entitlement_check_failed,
    log_entitlement_denied,
)
from equiprofile.entitlements.errors import (
    AdminSessionRequiredError,
    EntitlementDeniedError,
    EntitlementEvaluationError,
)
from equiprofile.entitlements.middleware import EVALUATED_AT_STATE_KEY, SNAPSHOT_STATE_KEY
from equiprofile.entitlements.models import AccountSnapshot
from equiprofile.entitlements.policy import evaluate
from equiprofile.entitlements.snapshot import AccountSnapshotReader
from equiprofile.platform.auth import resolve_user_id
from equiprofile.platform.errors import (
    AuthenticationError,
    NOT_ADMIN_ERR_MSG,
    PermissionDeniedError,
)
from equiprofile.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcedureContext:
    """Resolved caller for one procedure call."""
    user_id: str
    snapshot: AccountSnapshot
    now: datetime


def get_clock(request: Request) -> Callable[[], datetime]:
    """Application clock (overridable in tests via app.state.clock)."""
    return getattr(request.app.state, "clock", None) or utcnow


def _gateway_snapshot(request: Request, user_id: str):
    snapshot = getattr(request.state, SNAPSHOT_STATE_KEY, None)
    evaluated_at = getattr(request.state, EVALUATED_AT_STATE_KEY, None)
    if snapshot is not None and evaluated_at is not None and snapshot.user_id == user_id:
        return snapshot, evaluated_at
    return None, None


def require_user(
    request: Request,
    db: Session = Depends(get_db_session),
) -> ProcedureContext:
    """
    Identity guard: the caller must hold a valid session for an existing user.

    Raises:
        AuthenticationError: no session, bad token, or unknown user
        EntitlementEvaluationError: the account could not be read
    """
    settings = request.app.state.settings
    user_id = resolve_user_id(request, settings.jwt_secret)
    if user_id is None:
        raise AuthenticationError()

    snapshot, now = _gateway_snapshot(request, user_id)
    if snapshot is None:
        try:
            snapshot = AccountSnapshotReader(db).load(user_id)
        except SQLAlchemyError as e:
            log_entitlement_check_failed(SURFACE_PROCEDURE, user_id, e, path=request.url.path)
            raise EntitlementEvaluationError(user_id) from e
        now = get_clock(request)()

    if snapshot is None:
        raise AuthenticationError()

    return ProcedureContext(user_id=user_id, snapshot=snapshot, now=now)


def require_active_account(
    request: Request,
    ctx: ProcedureContext = Depends(require_user),
) -> ProcedureContext:
    """
    Entitlement guard: same evaluator, same snapshot as the gateway.

    Raises:
        EntitlementDeniedError: PAYMENT_REQUIRED or FORBIDDEN with the policy code
    """
    decision = evaluate(ctx.snapshot, ctx.now)
    if not decision.is_entitled:
        log_entitlement_denied(
            SURFACE_PROCEDURE,
            ctx.user_id,
            decision,
            path=request.url.path,
            correlation_id=getattr(request.state, "correlation_id", None),
        )
        raise EntitlementDeniedError(decision)
    return ctx


def require_admin_session(
    request: Request,
    ctx: ProcedureContext = Depends(require_active_account),
    db: Session = Depends(get_db_session),
) -> ProcedureContext:
    """
    Admin-session guard: admin role plus an unexpired admin unlock.

    Raises:
        PermissionDeniedError: caller is not an admin
        AdminSessionRequiredError: no unlock, expired unlock, or unreadable store
    """
    if not ctx.snapshot.is_admin:
        raise PermissionDeniedError(NOT_ADMIN_ERR_MSG)

    try:
        session = AdminSessionStore(db).get(ctx.user_id)
    except SQLAlchemyError as e:
        log_entitlement_check_failed(SURFACE_PROCEDURE, ctx.user_id, e, path=request.url.path)
        raise AdminSessionRequiredError() from e

    if not AdminSessionStore.is_valid(session, ctx.now):
        logger.info(
            "Admin session missing or expired",
            extra={"user_id": ctx.user_id, "path": request.url.path},
        )
        raise AdminSessionRequiredError()

    return ctx


# Procedure tiers
ProtectedProcedure = Annotated[ProcedureContext, Depends(require_user)]
ActiveUserProcedure = Annotated[ProcedureContext, Depends(require_active_account)]
AdminUnlockedProcedure = Annotated[ProcedureContext, Depends(require_admin_session)]
