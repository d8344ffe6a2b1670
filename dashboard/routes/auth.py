"""
Authentication API routes.

Login, self-service signup, password reset and the caller's own profile.
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from dashboard.auth import identity as identity_service
from dashboard.auth.backend import IdentityBackend, get_identity_backend
from dashboard.auth.identity import get_current_identity
from dashboard.auth.session import JWT_EXPIRATION
from dashboard.database import get_db
from dashboard.schemas import Identity, ProfileUpdate

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    email: str
    password: str
    display_name: str = Field(..., min_length=1)
    phone_number: str = ''
    business_name: str = ''
    api_key: Optional[str] = None
    agent_id_filter: Optional[str] = None


class TokenResponse(BaseModel):
    """Session token plus the resolved identity."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Identity


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: Session = Depends(get_db),
    backend: IdentityBackend = Depends(get_identity_backend),
):
    identity, token = await identity_service.authenticate(db, backend, body.email, body.password)
    return TokenResponse(access_token=token, expires_in=JWT_EXPIRATION, user=identity)


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(
    body: SignupRequest,
    db: Session = Depends(get_db),
    backend: IdentityBackend = Depends(get_identity_backend),
):
    """Register a new account with the `user` role."""
    identity, token = await identity_service.signup(
        db, backend, body.email, body.password, body.display_name,
        phone_number=body.phone_number,
        business_name=body.business_name,
        api_key=body.api_key,
        agent_id_filter=body.agent_id_filter,
    )
    return TokenResponse(access_token=token, expires_in=JWT_EXPIRATION, user=identity)


@router.get("/me", response_model=Identity)
async def get_me(current: Identity = Depends(get_current_identity)):
    return current


@router.put("/me", response_model=Identity)
async def update_me(
    body: ProfileUpdate,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await identity_service.update_own_profile(db, current, body)


@router.post("/password-reset", status_code=202)
async def request_password_reset(
    body: PasswordResetRequest,
    backend: IdentityBackend = Depends(get_identity_backend),
):
    """
    Email a reset link.

    Always answers 202 so the response does not reveal whether the address
    has an account.
    """
    await identity_service.reset_credential_secret(backend, body.email)
    return {"status": "accepted"}


@router.post("/password-reset/confirm", status_code=204)
async def confirm_password_reset(
    body: PasswordResetConfirm,
    backend: IdentityBackend = Depends(get_identity_backend),
):
    await identity_service.complete_password_reset(backend, body.token, body.new_password)
    return None


@router.post("/password", status_code=204)
async def change_password(
    body: PasswordChange,
    backend: IdentityBackend = Depends(get_identity_backend),
    current: Identity = Depends(get_current_identity),
):
    await identity_service.change_password(backend, current, body.current_password, body.new_password)
    return None
