"""
Trial lock middleware - gateway entitlement enforcement.

Runs once per HTTP request, before routing, so every non-exempt route is
covered, including routes added later without any guard.

- Exempt paths (auth, billing, health, build, billing procedures, profile
  read) skip the check entirely.
- No valid session: forward. Authentication is not adjudicated here; the
  procedure identity guard rejects unauthenticated calls.
- Denied: respond with the decision's status and
  {error, message, code, ...extra}; the downstream handler never runs.
- Check failed (storage error etc.): log and forward. This layer fails
  open for infrastructure errors only; the procedure guards fail closed.

On allow, the snapshot and evaluation instant are stored on request.state
so the procedure chain evaluates the same snapshot instead of re-reading.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from equiprofile.entitlements.audit import (
    SURFACE_GATEWAY,
    log_entitlement_check_failed,
    log_entitlement_denied,
)
from equiprofile.entitlements.exemptions import is_exempt_path
from equiprofile.entitlements.policy import EntitlementDecision, evaluate
from equiprofile.entitlements.snapshot import AccountSnapshotReader
from equiprofile.platform.auth import resolve_user_id
from equiprofile.utils.clock import utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_STATE_KEY = "account_snapshot"
EVALUATED_AT_STATE_KEY = "entitlement_evaluated_at"


class TrialLockMiddleware(BaseHTTPMiddleware):
    """
    Starlette middleware enforcing account entitlement on every request.

    Args:
        app: ASGI application
        session_factory: Callable returning a new SQLAlchemy session
        jwt_secret: Secret used to verify session tokens
        clock: Returns the current aware UTC time (injectable for tests)
    """

    def __init__(
        self,
        app,
        session_factory: Callable,
        jwt_secret: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(app)
        self.session_factory = session_factory
        self.jwt_secret = jwt_secret
        self.clock = clock

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if is_exempt_path(path):
            return await call_next(request)

        user_id = resolve_user_id(request, self.jwt_secret)
        if user_id is None:
            return await call_next(request)

        try:
            decision = await run_in_threadpool(self._check, request, user_id)
        except Exception as e:
            log_entitlement_check_failed(SURFACE_GATEWAY, user_id, e, path=path, fail_open=True)
            return await call_next(request)

        if decision is not None and not decision.is_entitled:
            log_entitlement_denied(
                SURFACE_GATEWAY,
                user_id,
                decision,
                path=path,
                correlation_id=getattr(request.state, "correlation_id", None),
            )
            return JSONResponse(
                status_code=decision.http_status,
                content=decision.to_response_body(),
            )

        return await call_next(request)

    def _check(self, request: Request, user_id: str) -> Optional[EntitlementDecision]:
        """
        Load the caller's snapshot and evaluate it.

        Returns:
            The decision, or None when the session's user no longer exists
        """
        with self.session_factory() as db:
            snapshot = AccountSnapshotReader(db).load(user_id)

        if snapshot is None:
            return None

        now = self.clock()
        decision = evaluate(snapshot, now)
        if decision.is_entitled:
            setattr(request.state, SNAPSHOT_STATE_KEY, snapshot)
            setattr(request.state, EVALUATED_AT_STATE_KEY, now)
        return decision
