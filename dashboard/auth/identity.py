"""
Identity and session resolution.

Authenticates a person against the identity backend, then projects the
backend account onto the directory profile to produce the Identity value
that every service call receives explicitly.
"""
from datetime import datetime
from typing import Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
import structlog

from dashboard.auth.backend import IdentityBackend, normalize_email
from dashboard.auth.session import create_access_token, decode_access_token
from dashboard.database import get_db
from dashboard.models import User
from dashboard.schemas import Identity, ProfileUpdate
from dashboard.services.credential_store import set_credential
from dashboard.services.usage import create_usage_record
from dashboard.services.user_directory import add_directory_entry, ensure_email_available, merge_changes
from shared.errors import AuthError, UnauthenticatedError

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


def to_identity(user: User) -> Identity:
    return Identity.model_validate(user)


def issue_token(identity: Identity) -> str:
    return create_access_token({"user_id": identity.id, "role": identity.role})


def _load_active_user(db: Session, user_id: Optional[str]) -> User:
    user = db.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        raise UnauthenticatedError("User not found or inactive")
    return user


async def authenticate(
    db: Session,
    backend: IdentityBackend,
    email: str,
    password: str,
) -> Tuple[Identity, str]:
    """
    Check an email/password pair and open a session.

    Returns the resolved Identity and a signed session token. Unknown,
    wrong-password and deactivated accounts all raise AuthError.
    """
    account_id = await backend.verify_password(email, password)

    user = db.get(User, account_id)
    if user is None or not user.is_active:
        logger.warning("login_rejected_inactive", user_id=account_id)
        raise AuthError("Account is deactivated or has no profile")

    user.last_login = datetime.utcnow()
    db.commit()

    identity = to_identity(user)
    logger.info("user_login", user_id=identity.id, role=identity.role)
    return identity, issue_token(identity)


def resolve_session(db: Session, token: str) -> Identity:
    """Decode a session token and re-read the caller's role and status."""
    payload = decode_access_token(token)
    return to_identity(_load_active_user(db, payload.get("user_id")))


async def signup(
    db: Session,
    backend: IdentityBackend,
    email: str,
    password: str,
    display_name: str,
    phone_number: str = '',
    business_name: str = '',
    api_key: Optional[str] = None,
    agent_id_filter: Optional[str] = None,
) -> Tuple[Identity, str]:
    """Self-service registration. New accounts always get the `user` role."""
    email = normalize_email(email)
    ensure_email_available(db, email)

    account_id = await backend.create_account(email, password)
    user = add_directory_entry(
        db, account_id, email, display_name,
        role='user',
        phone_number=phone_number,
        business_name=business_name,
        agent_id_filter=agent_id_filter,
    )
    create_usage_record(db, account_id)
    db.commit()

    identity = to_identity(user)
    if api_key and api_key.strip():
        await set_credential(db, identity, account_id, api_key)

    logger.info("user_signed_up", user_id=account_id)
    return identity, issue_token(identity)


async def reset_credential_secret(backend: IdentityBackend, email: str) -> None:
    """Start the backend's password-reset email flow."""
    await backend.send_password_reset(email)


async def complete_password_reset(backend: IdentityBackend, token: str, new_password: str) -> None:
    account_id = await backend.complete_password_reset(token, new_password)
    logger.info("password_reset_completed", user_id=account_id)


async def change_password(
    backend: IdentityBackend,
    caller: Identity,
    current_password: str,
    new_password: str,
) -> None:
    """Change the caller's own password after re-checking the current one."""
    account_id = await backend.verify_password(caller.email, current_password)
    if account_id != caller.id:
        raise AuthError("Invalid email or password")
    await backend.update_password(caller.id, new_password)


async def update_own_profile(db: Session, caller: Identity, fields: ProfileUpdate) -> Identity:
    """Edit the caller's own profile fields. Role and status are not editable here."""
    user = _load_active_user(db, caller.id)

    changes = merge_changes(fields)
    for name, value in changes.items():
        setattr(user, name, value)
    if changes:
        user.updated_at = datetime.utcnow()
        user.updated_by = caller.id
        db.commit()
        logger.info("profile_updated", user_id=caller.id, updated_fields=sorted(changes))

    return to_identity(user)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Identity:
    """
    FastAPI dependency resolving the caller from an `Authorization: Bearer` token.

    Raises:
        UnauthenticatedError: If no token is sent, or it is invalid, expired,
            or belongs to a deactivated user
    """
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")
    return resolve_session(db, credentials.credentials)


def get_client_ip(request: Request) -> Optional[str]:
    """Client address recorded on audit entries."""
    return request.client.host if request.client else None
