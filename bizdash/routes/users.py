import logging
import math
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..audit import log_security
from ..auth import Identity, get_identity, require_role
from ..database import get_db
from ..errors import ForbiddenError, NotFoundError, UnexpectedError, ValidationError
from .auth import identity_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["users"])


def require_admin(identity: Identity = Depends(require_role("admin"))) -> Identity:
    # The demo identity carries the admin role but may not see stored accounts.
    if identity.is_demo:
        raise ForbiddenError("Demo account is read-only")
    return identity


@router.get(
    "/profile",
    response_model=schemas.Envelope[Union[schemas.UserOut, schemas.IdentityOut]],
)
def get_profile(identity: Identity = Depends(get_identity)):
    return {"success": True, "data": identity_payload(identity)}


@router.put("/profile", response_model=schemas.Envelope[schemas.UserOut])
def update_profile(
    payload: schemas.ProfileUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
):
    if identity.is_demo:
        raise ForbiddenError("Cannot update demo user profile")

    preferences = None
    if payload.preferences is not None:
        preferences = payload.preferences.model_dump(by_alias=True)

    try:
        user = crud.update_profile(db, identity.user, name=payload.name, preferences=preferences)
    except RuntimeError:
        logger.exception("Profile update failed for user %s", identity.id)
        raise UnexpectedError("Internal server error during profile update.")

    log_security("Profile Updated", user_id=user.id)
    return {"success": True, "data": user}


@router.get("", response_model=schemas.Envelope[schemas.UserPage])
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None, pattern=r"^(user|admin|moderator)$"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    users, total = crud.list_users(db, page=page, limit=limit, role=role, is_active=is_active)
    return {
        "success": True,
        "data": {
            "users": users,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        },
    }


@router.get("/{user_id}", response_model=schemas.Envelope[schemas.UserOut])
def get_user(
    user_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {"success": True, "data": user}


@router.put("/{user_id}", response_model=schemas.Envelope[schemas.UserOut])
def update_user(
    user_id: int,
    payload: schemas.AdminUserUpdate,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if identity.id == str(user_id) and payload.is_active is False:
        raise ValidationError("Cannot deactivate your own account")

    try:
        user = crud.admin_update_user(
            db, user_id, role=payload.role, is_active=payload.is_active
        )
    except RuntimeError:
        logger.exception("Admin update of user %s failed", user_id)
        raise UnexpectedError("Internal server error during user update.")

    if user is None:
        raise NotFoundError("User not found")

    log_security(
        "User Updated by Admin",
        admin_id=identity.id,
        target_user_id=user_id,
        role=payload.role,
        is_active=payload.is_active,
    )
    return {"success": True, "data": user}


@router.delete("/{user_id}", response_model=schemas.MessageEnvelope)
def deactivate_user(
    user_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if identity.id == str(user_id):
        raise ValidationError("Cannot delete your own account")

    try:
        user = crud.deactivate_user(db, user_id)
    except RuntimeError:
        logger.exception("Deactivation of user %s failed", user_id)
        raise UnexpectedError("Internal server error during user deactivation.")

    if user is None:
        raise NotFoundError("User not found")

    log_security("User Deactivated by Admin", admin_id=identity.id, target_user_id=user_id)
    return {"success": True, "message": "User deactivated successfully"}
