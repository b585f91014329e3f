"""
Session introspection.

GET /api/auth/session is exempt from the gateway check so a client can
always find out whether it is logged in, even when its account is locked.
Login itself (OAuth) lives outside this service; it calls
issue_session_token() and sets the session cookie.
"""

from fastapi import APIRouter, Request

from equiprofile.platform.auth import resolve_user_id

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/session")
def get_session(request: Request):
    """Report whether the request carries a valid session token."""
    user_id = resolve_user_id(request, request.app.state.settings.jwt_secret)
    return {
        "authenticated": user_id is not None,
        "user_id": user_id,
    }
