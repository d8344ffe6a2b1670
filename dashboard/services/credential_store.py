"""
Credential store: per-user ElevenLabs API keys, encrypted at rest.

Users manage their own key; admins may read or rotate anyone's. Every
rotation performed by someone other than the owner is audited.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session
import structlog

from dashboard.auth.permissions import require_self_or_admin
from dashboard.models import ApiKey, User
from dashboard.schemas import Credential, CredentialInfo, Identity
from dashboard.services.audit import record_admin_action
from dashboard.utils.encryption import decrypt_value, encrypt_value, mask_api_key
from shared.errors import CredentialMissing, NotFoundError, ValidationError

logger = structlog.get_logger()


def _write_credential(db: Session, owner_id: str, plaintext: str, actor_id: str) -> ApiKey:
    record = db.get(ApiKey, owner_id)
    if record is None:
        record = ApiKey(owner_id=owner_id)
        db.add(record)
    record.ciphertext = encrypt_value(plaintext)
    record.last_updated = datetime.utcnow()
    record.updated_by = actor_id
    db.commit()
    return record


async def set_credential(
    db: Session,
    caller: Identity,
    owner_id: str,
    plaintext: str,
    ip_address: Optional[str] = None,
) -> CredentialInfo:
    """Encrypt and store an API key, replacing any previous one."""
    require_self_or_admin(caller, owner_id)

    plaintext = (plaintext or "").strip()
    if not plaintext:
        raise ValidationError("API key must not be empty")
    if db.get(User, owner_id) is None:
        raise NotFoundError("User not found")

    record = _write_credential(db, owner_id, plaintext, caller.id)
    logger.info("api_key_updated", owner_id=owner_id, updated_by=caller.id)

    if caller.id != owner_id:
        record_admin_action(
            db, caller.id, 'set_api_key', owner_id,
            details={'masked_key': mask_api_key(plaintext)},
            ip_address=ip_address,
        )

    return CredentialInfo(
        owner_id=owner_id,
        masked_key=mask_api_key(plaintext),
        last_updated=record.last_updated,
        updated_by=record.updated_by,
    )


async def get_credential(db: Session, caller: Identity, owner_id: str) -> Optional[Credential]:
    """
    Load and decrypt a user's API key.

    Returns None when no key is stored. Raises DecryptionError when the
    stored value cannot be decrypted.
    """
    require_self_or_admin(caller, owner_id)

    record = db.get(ApiKey, owner_id)
    if record is None:
        logger.info("api_key_not_found", owner_id=owner_id)
        return None

    return Credential(
        owner_id=owner_id,
        plaintext=decrypt_value(record.ciphertext),
        last_updated=record.last_updated,
        updated_by=record.updated_by,
    )


async def require_credential(db: Session, caller: Identity, owner_id: str) -> Credential:
    """Like get_credential, but a missing key raises CredentialMissing."""
    credential = await get_credential(db, caller, owner_id)
    if credential is None:
        raise CredentialMissing(owner_id)
    return credential


async def describe_credential(db: Session, caller: Identity, owner_id: str) -> Optional[CredentialInfo]:
    """Masked view of a stored key for display."""
    credential = await get_credential(db, caller, owner_id)
    if credential is None:
        return None
    return CredentialInfo(
        owner_id=owner_id,
        masked_key=mask_api_key(credential.plaintext),
        last_updated=credential.last_updated,
        updated_by=credential.updated_by,
    )
