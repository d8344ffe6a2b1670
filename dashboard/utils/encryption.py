"""
Encryption utilities for stored provider API keys.

Uses Fernet (symmetric encryption) from cryptography library. A single
process-wide key is derived from ENCRYPTION_KEY and ENCRYPTION_SALT at
import time and never changes while the process runs.

This protects keys at rest against casual inspection of the database; it
does not protect against a leaked ENCRYPTION_KEY.
"""
import base64
import binascii

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import structlog

from dashboard.config import get_config
from shared.errors import DecryptionError

logger = structlog.get_logger()

_config = get_config()

ENCRYPTION_KEY = _config.encryption_key
ENCRYPTION_SALT = _config.encryption_salt

if not ENCRYPTION_KEY:
    logger.warning("encryption_key_missing", message="ENCRYPTION_KEY not set, generating temporary key")
    ENCRYPTION_KEY = Fernet.generate_key().decode()
    logger.warning("generated_encryption_key", message="Stored API keys will be unreadable after restart. Set ENCRYPTION_KEY for production")

if not ENCRYPTION_SALT:
    logger.warning("encryption_salt_missing", message="ENCRYPTION_SALT not set, using default")
    ENCRYPTION_SALT = base64.urlsafe_b64encode(b"voice-dashboard-default-salt-change-me").decode()


def get_fernet_key() -> bytes:
    """
    Derive Fernet key from master key and salt.

    Returns:
        bytes: Fernet-compatible encryption key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=base64.urlsafe_b64decode(ENCRYPTION_SALT.encode()),
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(ENCRYPTION_KEY.encode()))


fernet = Fernet(get_fernet_key())


def encrypt_value(plaintext: str) -> str:
    """
    Encrypt a plaintext string.

    Args:
        plaintext: String to encrypt

    Returns:
        str: Base64-encoded encrypted value
    """
    encrypted_bytes = fernet.encrypt(plaintext.encode())
    return base64.urlsafe_b64encode(encrypted_bytes).decode()


def decrypt_value(encrypted_value: str) -> str:
    """
    Decrypt an encrypted string.

    Args:
        encrypted_value: Base64-encoded encrypted value

    Returns:
        str: Decrypted plaintext

    Raises:
        DecryptionError: If the value is malformed or was encrypted with a
            different key
    """
    try:
        encrypted_bytes = base64.urlsafe_b64decode(encrypted_value.encode())
        return fernet.decrypt(encrypted_bytes).decode()
    except (InvalidToken, binascii.Error, ValueError) as e:
        logger.error("decryption_failed", error_type=type(e).__name__)
        raise DecryptionError() from e


def mask_api_key(api_key: str, visible: int = 4) -> str:
    """
    Mask an API key for display.

    Keeps the first and last `visible` characters; keys too short to mask
    meaningfully are fully hidden.
    """
    if not api_key:
        return ""
    if len(api_key) <= visible * 2:
        return "*" * len(api_key)
    return f"{api_key[:visible]}{'*' * (len(api_key) - visible * 2)}{api_key[-visible:]}"
