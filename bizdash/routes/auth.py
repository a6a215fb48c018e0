import logging
from typing import Union

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..audit import log_security
from ..auth import (
    Identity,
    StoredIdentity,
    authenticate,
    get_identity,
    hash_password,
    issue_token,
    require_stored_identity,
    verify_password,
)
from ..database import get_db
from ..errors import UnexpectedError, ValidationError
from ..limits import auth_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def identity_payload(identity: Identity):
    """Public view of whoever is calling: a stored account or the demo identity."""
    if identity.is_demo:
        return schemas.IdentityOut(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            role=identity.role,
            is_demo=True,
            preferences=schemas.Preferences().model_dump(by_alias=True),
        )
    return schemas.UserOut.model_validate(identity.user)


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post(
    "/register",
    response_model=schemas.Envelope[schemas.AuthData],
    status_code=status.HTTP_201_CREATED,
)
@auth_limit
def register(
    payload: schemas.RegisterRequest, request: Request, db: Session = Depends(get_db)
):
    if crud.get_user_by_email(db, payload.email):
        log_security("Registration - Email Exists", email=payload.email, ip=_client_ip(request))
        raise ValidationError("User already exists with this email")

    try:
        user = crud.create_user(
            db,
            name=payload.name,
            email=payload.email,
            password_hash=hash_password(payload.password),
        )
    except RuntimeError:
        logger.exception("User registration failed for %s", payload.email)
        raise UnexpectedError("Internal server error during registration.")

    identity = StoredIdentity(user=user)
    log_security("User Registered", user_id=user.id, email=user.email, ip=_client_ip(request))
    return {
        "success": True,
        "data": {"token": issue_token(identity), "user": identity_payload(identity)},
    }


@router.post("/login", response_model=schemas.Envelope[schemas.AuthData])
@auth_limit
def login(payload: schemas.LoginRequest, request: Request, db: Session = Depends(get_db)):
    identity = authenticate(db, payload.email, payload.password, ip=_client_ip(request))
    return {
        "success": True,
        "data": {"token": issue_token(identity), "user": identity_payload(identity)},
    }


@router.get("/me", response_model=schemas.Envelope[Union[schemas.UserOut, schemas.IdentityOut]])
def me(identity: Identity = Depends(get_identity)):
    return {"success": True, "data": identity_payload(identity)}


@router.post("/refresh", response_model=schemas.Envelope[schemas.TokenOut])
def refresh(identity: Identity = Depends(get_identity)):
    log_security("Token Refreshed", user_id=identity.id)
    return {"success": True, "data": {"token": issue_token(identity)}}


@router.post("/logout", response_model=schemas.MessageEnvelope)
def logout(identity: Identity = Depends(get_identity)):
    # Tokens are stateless; the client discards its copy.
    log_security("User Logout", user_id=identity.id, email=identity.email)
    return {"success": True, "message": "Logged out successfully"}


@router.put("/change-password", response_model=schemas.MessageEnvelope)
@auth_limit
def change_password(
    payload: schemas.ChangePasswordRequest,
    request: Request,
    identity: StoredIdentity = Depends(require_stored_identity),
    db: Session = Depends(get_db),
):
    user = identity.user
    if not verify_password(payload.current_password, user.password_hash):
        log_security("Password Change - Wrong Current Password", user_id=user.id)
        raise ValidationError("Current password is incorrect")

    try:
        crud.update_password(db, user, hash_password(payload.new_password))
    except RuntimeError:
        logger.exception("Password change failed for user %s", user.id)
        raise UnexpectedError("Internal server error during password change.")

    log_security("Password Changed", user_id=user.id)
    return {"success": True, "message": "Password updated successfully"}
