"""
Identity backend: login accounts, password checks and password resets.

The directory (users table) only stores the opaque account id returned by
the backend. IdentityBackend is the collaborator interface;
LocalIdentityBackend keeps hashed passwords in the identity_accounts table
and sends reset links through a Mailer.
"""
import hashlib
import re
import secrets
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from passlib.context import CryptContext
from sqlalchemy.orm import Session
import structlog

from dashboard.config import get_config
from dashboard.database import get_db
from dashboard.models import IdentityAccount
from dashboard.utils.mailer import Mailer, build_mailer
from shared.errors import AuthError, ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password_hash(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def normalize_email(email: str) -> str:
    """Lower-case and validate an email address."""
    email = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address", detail=email or None)
    return email


def validate_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class IdentityBackend(ABC):
    """Operations the dashboard needs from an identity provider, keyed by email."""

    @abstractmethod
    async def create_account(self, email: str, password: str) -> str:
        """Create a login and return its opaque account id."""

    @abstractmethod
    async def verify_password(self, email: str, password: str) -> str:
        """Return the account id for a matching email/password pair."""

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        pass

    @abstractmethod
    async def update_password(self, account_id: str, password: str) -> None:
        pass

    @abstractmethod
    async def complete_password_reset(self, token: str, password: str) -> str:
        """Consume a reset token, set the password and return the account id."""


class LocalIdentityBackend(IdentityBackend):
    """Identity backend stored in the application database."""

    def __init__(self, db: Session, mailer: Optional[Mailer] = None):
        self.db = db
        self.mailer = mailer or build_mailer()
        self.config = get_config()

    def _find(self, email: str) -> Optional[IdentityAccount]:
        return self.db.query(IdentityAccount).filter(IdentityAccount.email == email).first()

    async def create_account(self, email: str, password: str) -> str:
        email = normalize_email(email)
        validate_password(password)
        if self._find(email):
            raise ConflictError("An account with this email already exists")

        account = IdentityAccount(
            id=uuid.uuid4().hex,
            email=email,
            password_hash=hash_password(password),
        )
        self.db.add(account)
        self.db.commit()
        logger.info("identity_account_created", account_id=account.id)
        return account.id

    async def verify_password(self, email: str, password: str) -> str:
        account = self._find((email or "").strip().lower())
        if not account or not verify_password_hash(password or "", account.password_hash):
            logger.warning("login_failed", email=email)
            raise AuthError("Invalid email or password")
        return account.id

    async def send_password_reset(self, email: str) -> None:
        account = self._find((email or "").strip().lower())
        if not account:
            # Same outcome as for a known address
            logger.info("password_reset_unknown_email")
            return

        token = secrets.token_urlsafe(32)
        account.reset_token_hash = _hash_token(token)
        account.reset_token_expires_at = datetime.utcnow() + timedelta(seconds=self.config.password_reset_ttl)
        self.db.commit()

        link = f"{self.config.password_reset_url}?token={token}"
        await self.mailer.send_password_reset(account.email, link)
        logger.info("password_reset_requested", account_id=account.id)

    async def update_password(self, account_id: str, password: str) -> None:
        validate_password(password)
        account = self.db.get(IdentityAccount, account_id)
        if not account:
            raise NotFoundError("Account not found")
        account.password_hash = hash_password(password)
        account.password_updated_at = datetime.utcnow()
        account.reset_token_hash = None
        account.reset_token_expires_at = None
        self.db.commit()
        logger.info("password_updated", account_id=account_id)

    async def complete_password_reset(self, token: str, password: str) -> str:
        account = None
        if token:
            account = self.db.query(IdentityAccount).filter(
                IdentityAccount.reset_token_hash == _hash_token(token)
            ).first()

        expires = account.reset_token_expires_at if account else None
        if expires is not None and expires.tzinfo is not None:
            expires = expires.replace(tzinfo=None)
        if not account or expires is None or expires < datetime.utcnow():
            raise ValidationError("Invalid or expired reset token")

        await self.update_password(account.id, password)
        return account.id


def get_identity_backend(db: Session = Depends(get_db)) -> IdentityBackend:
    """FastAPI dependency returning the identity backend for this request."""
    return LocalIdentityBackend(db)
