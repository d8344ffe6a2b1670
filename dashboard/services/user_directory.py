"""
User directory: admin-managed user profiles.

Every operation here requires the admin capability. Users are never
physically removed; deactivation is the only deletion path.
"""
import secrets
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from dashboard.auth.backend import IdentityBackend, normalize_email
from dashboard.auth.permissions import require_admin
from dashboard.models import User
from dashboard.schemas import Identity, UserAccount, UserCreate, UserCreated, UserUpdate
from dashboard.services.audit import record_admin_action
from dashboard.services.credential_store import set_credential
from dashboard.services.usage import create_usage_record
from shared.errors import (
    ConflictError, DashboardException, MailDeliveryError, NotFoundError, ValidationError
)

logger = structlog.get_logger()

# Length in bytes of the throwaway password set on admin-created accounts
TEMP_PASSWORD_BYTES = 12

# Profile columns an explicit null clears
NULLABLE_PROFILE_FIELDS = frozenset({'agent_id_filter'})


def _get_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", detail=user_id)
    return user


def merge_changes(fields: BaseModel) -> dict:
    """
    Fields explicitly supplied in a partial update.

    A null (or empty string) clears a nullable column; on any other column
    it is ignored, since those columns cannot be empty.
    """
    changes = {}
    for name, value in fields.model_dump(exclude_unset=True).items():
        if name in NULLABLE_PROFILE_FIELDS:
            changes[name] = value or None
        elif value is not None:
            changes[name] = value
    return changes


def ensure_email_available(db: Session, email: str) -> None:
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("A user with this email already exists", detail=email)


def add_directory_entry(
    db: Session,
    account_id: str,
    email: str,
    display_name: str,
    role: str = 'user',
    phone_number: str = '',
    business_name: str = '',
    agent_id_filter: Optional[str] = None,
    created_by: Optional[str] = None,
) -> User:
    """Write the directory row for a freshly created identity account."""
    user = User(
        id=account_id,
        email=email,
        display_name=display_name,
        phone_number=phone_number or '',
        business_name=business_name or '',
        role=role,
        is_active=True,
        agent_id_filter=agent_id_filter or None,
        created_at=datetime.utcnow(),
        created_by=created_by,
        last_login=None,
    )
    db.add(user)
    db.commit()
    return user


async def list_users(
    db: Session,
    caller: Identity,
    active_only: bool = False,
    role: Optional[str] = None,
) -> List[UserAccount]:
    """All directory entries, optionally filtered."""
    require_admin(caller)

    query = db.query(User)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    if role:
        query = query.filter(User.role == role)

    users = query.order_by(User.created_at.desc(), User.email).all()
    logger.info("users_listed", count=len(users), requested_by=caller.id)
    return [UserAccount.model_validate(u) for u in users]


async def get_user(db: Session, caller: Identity, user_id: str) -> UserAccount:
    require_admin(caller)
    return UserAccount.model_validate(_get_or_404(db, user_id))


async def create_user(
    db: Session,
    caller: Identity,
    fields: UserCreate,
    credential_plaintext: Optional[str],
    send_welcome: bool,
    backend: IdentityBackend,
    ip_address: Optional[str] = None,
) -> UserCreated:
    """
    Provision a new login with its directory entry, API key and usage record.

    The account is created in the identity backend with a random password
    the user never sees; with `send_welcome` a password-reset email lets
    them choose their own. If a write fails after the identity account
    exists, that account is left behind and the error is re-raised. A
    welcome email the mail provider refuses does not undo the user; the
    result carries `welcome_email_sent=False` and the audit entry records
    the failure.
    """
    require_admin(caller)

    email = normalize_email(fields.email)
    ensure_email_available(db, email)
    credential_plaintext = (credential_plaintext or '').strip() or None

    temp_password = secrets.token_urlsafe(TEMP_PASSWORD_BYTES)
    account_id = await backend.create_account(email, temp_password)
    logger.info("identity_account_provisioned", account_id=account_id, created_by=caller.id)

    try:
        user = add_directory_entry(
            db, account_id, email, fields.display_name,
            role=fields.role,
            phone_number=fields.phone_number,
            business_name=fields.business_name,
            agent_id_filter=fields.agent_id_filter,
            created_by=caller.id,
        )
        if credential_plaintext:
            await set_credential(db, caller, account_id, credential_plaintext, ip_address=ip_address)
        create_usage_record(db, account_id)
        db.commit()
    except (SQLAlchemyError, DashboardException) as e:
        db.rollback()
        logger.error("user_provisioning_incomplete", account_id=account_id, email=email,
                     created_by=caller.id, error=str(e))
        raise

    # The user exists from here on; a mail failure is reported, not raised
    welcome_sent = False
    details = {
        'email': email,
        'role': fields.role,
        'send_welcome_email': send_welcome,
    }
    if send_welcome:
        try:
            await backend.send_password_reset(email)
            welcome_sent = True
            logger.info("welcome_email_sent", user_id=account_id)
        except MailDeliveryError as e:
            details['welcome_email_error'] = e.message
            logger.warning("welcome_email_failed", user_id=account_id, error=e.message)
    details['welcome_email_sent'] = welcome_sent

    record_admin_action(db, caller.id, 'create_user', account_id, details=details, ip_address=ip_address)

    logger.info("user_created", user_id=account_id, role=fields.role, created_by=caller.id)
    return UserCreated.model_validate(user).model_copy(update={'welcome_email_sent': welcome_sent})


async def update_user(
    db: Session,
    caller: Identity,
    user_id: str,
    fields: UserUpdate,
    ip_address: Optional[str] = None,
) -> UserAccount:
    """Merge the supplied fields into a user's profile."""
    require_admin(caller)
    user = _get_or_404(db, user_id)

    changes = merge_changes(fields)
    if not changes:
        return UserAccount.model_validate(user)

    # Admins cannot lock themselves out
    if user.id == caller.id and (changes.get('role', user.role) != user.role
                                 or changes.get('is_active') is False):
        raise ValidationError("Cannot change your own role or active status")

    now = datetime.utcnow()
    was_active = user.is_active
    for name, value in changes.items():
        setattr(user, name, value)

    if was_active and user.is_active is False:
        user.deactivated_at = now
        user.deactivated_by = caller.id
    elif not was_active and user.is_active:
        user.deactivated_at = None
        user.deactivated_by = None

    user.updated_at = now
    user.updated_by = caller.id
    db.commit()

    record_admin_action(
        db, caller.id, 'update_user', user_id,
        details={'updated_fields': sorted(changes)},
        ip_address=ip_address,
    )

    logger.info("user_updated", user_id=user_id, updated_fields=sorted(changes), modified_by=caller.id)
    return UserAccount.model_validate(user)


async def deactivate_user(
    db: Session,
    caller: Identity,
    user_id: str,
    ip_address: Optional[str] = None,
) -> UserAccount:
    """Soft delete: mark the user inactive. The row is kept."""
    require_admin(caller)
    user = _get_or_404(db, user_id)

    if user.id == caller.id:
        raise ValidationError("Cannot deactivate your own account")

    if not user.is_active:
        logger.info("user_already_inactive", user_id=user_id)
        return UserAccount.model_validate(user)

    user.is_active = False
    user.deactivated_at = datetime.utcnow()
    user.deactivated_by = caller.id
    db.commit()

    record_admin_action(
        db, caller.id, 'deactivate_user', user_id,
        details={'action': 'User deactivated'},
        ip_address=ip_address,
    )

    logger.warning("user_deactivated", user_id=user_id, deactivated_by=caller.id)
    return UserAccount.model_validate(user)


async def reset_user_password(
    db: Session,
    caller: Identity,
    email: str,
    backend: IdentityBackend,
    ip_address: Optional[str] = None,
) -> None:
    """Send a password-reset email on a user's behalf."""
    require_admin(caller)
    email = normalize_email(email)

    await backend.send_password_reset(email)

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        logger.info("password_reset_for_unknown_user", requested_by=caller.id)
        return

    record_admin_action(
        db, caller.id, 'reset_password', user.id,
        details={'action': 'Password reset email sent'},
        ip_address=ip_address,
    )
    logger.info("password_reset_sent", user_id=user.id, requested_by=caller.id)
