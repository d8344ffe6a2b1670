"""
User management API routes (admin only).

Users are provisioned, edited and deactivated here; there is no hard delete.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dashboard.auth.backend import IdentityBackend, get_identity_backend
from dashboard.auth.identity import get_client_ip, get_current_identity
from dashboard.database import get_db
from dashboard.schemas import Identity, UserAccount, UserCreate, UserCreated, UserUpdate
from dashboard.services import user_directory

router = APIRouter(prefix="/api/users", tags=["users"])


class UserCreateRequest(UserCreate):
    """Profile fields plus the new user's ElevenLabs key and welcome flag."""
    api_key: Optional[str] = None
    send_welcome_email: bool = True


@router.get("", response_model=List[UserAccount])
async def list_users(
    active_only: bool = False,
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await user_directory.list_users(db, current, active_only=active_only, role=role)


@router.post("", response_model=UserCreated, status_code=201)
async def create_user(
    body: UserCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    backend: IdentityBackend = Depends(get_identity_backend),
    current: Identity = Depends(get_current_identity),
):
    """
    Provision a login, directory profile, API key and usage record.

    With `send_welcome_email` the user receives a password-reset link to
    choose their own password. If that email cannot be sent the user is
    still created and `welcome_email_sent` is false.
    """
    fields = UserCreate(**body.model_dump(exclude={"api_key", "send_welcome_email"}))
    return await user_directory.create_user(
        db, current, fields, body.api_key, body.send_welcome_email, backend,
        ip_address=get_client_ip(request),
    )


@router.get("/{user_id}", response_model=UserAccount)
async def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await user_directory.get_user(db, current, user_id)


@router.put("/{user_id}", response_model=UserAccount)
async def update_user(
    user_id: str,
    body: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Update profile fields, role or active status."""
    return await user_directory.update_user(db, current, user_id, body, ip_address=get_client_ip(request))


@router.delete("/{user_id}", status_code=204)
async def deactivate_user(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Deactivate a user (soft delete)."""
    await user_directory.deactivate_user(db, current, user_id, ip_address=get_client_ip(request))
    return None


@router.post("/{user_id}/reset-password", status_code=202)
async def reset_password(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    backend: IdentityBackend = Depends(get_identity_backend),
    current: Identity = Depends(get_current_identity),
):
    """Send the user a password-reset email."""
    user = await user_directory.get_user(db, current, user_id)
    await user_directory.reset_user_password(db, current, user.email, backend, ip_address=get_client_ip(request))
    return {"status": "sent"}
