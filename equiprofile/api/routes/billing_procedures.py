"""
Billing procedures.

Everything under /trpc/billing. is exempt from the gateway check: the
billing page has to work for exactly the accounts that are locked out.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from equiprofile.api.dependencies.procedures import ProtectedProcedure
from equiprofile.database.session import get_db_session
from equiprofile.platform.errors import NotFoundError
from equiprofile.services.account_service import (
    AccountService,
    UserNotFoundError,
    serialize_billing_status,
)

router = APIRouter(prefix="/trpc", tags=["billing"])


@router.get("/billing.getStatus")
def get_status(ctx: ProtectedProcedure, db: Session = Depends(get_db_session)):
    """Subscription summary plus the current entitlement verdict."""
    try:
        user = AccountService(db).get_user(ctx.user_id)
    except UserNotFoundError:
        raise NotFoundError("User", ctx.user_id)
    return serialize_billing_status(user, ctx.now)
