"""
User procedures.

user.getProfile is exempt from the gateway check and needs identity only,
so a locked-out user can still see who they are. user.updateProfile is
ordinary gated functionality.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from equiprofile.api.dependencies.procedures import ActiveUserProcedure, ProtectedProcedure
from equiprofile.database.session import get_db_session
from equiprofile.platform.errors import NotFoundError
from equiprofile.services.account_service import (
    AccountService,
    UserNotFoundError,
    serialize_profile,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trpc", tags=["user"])


class UpdateProfileRequest(BaseModel):
    """Profile fields a user may change; omitted fields are left as is."""
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    location: Optional[str] = Field(None, max_length=255)


@router.get("/user.getProfile")
def get_profile(ctx: ProtectedProcedure, db: Session = Depends(get_db_session)):
    service = AccountService(db, actor_user_id=ctx.user_id)
    try:
        user = service.get_user(ctx.user_id)
    except UserNotFoundError:
        raise NotFoundError("User", ctx.user_id)
    return serialize_profile(user)


@router.post("/user.updateProfile")
def update_profile(
    body: UpdateProfileRequest,
    ctx: ActiveUserProcedure,
    db: Session = Depends(get_db_session),
):
    service = AccountService(db, actor_user_id=ctx.user_id)
    try:
        user = service.update_profile(ctx.user_id, body.model_dump(exclude_unset=True))
    except UserNotFoundError:
        raise NotFoundError("User", ctx.user_id)

    logger.info("Profile updated", extra={"user_id": ctx.user_id})
    return serialize_profile(user)
