"""
Session tokens for authenticated dashboard users.

Tokens are HS256 JWTs carrying the user id. Session validity beyond the
token expiry (active flag, role) is re-checked against the directory on
every request.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from jose import jwt, JWTError
import structlog

from dashboard.config import get_config
from shared.errors import UnauthenticatedError

logger = structlog.get_logger()

_config = get_config()

JWT_SECRET = _config.jwt_secret
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION = _config.jwt_expiration

if not JWT_SECRET:
    logger.warning("jwt_secret_missing", message="JWT_SECRET not set, using development secret")
    JWT_SECRET = "dev-jwt-secret-change-in-production"


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed session token.

    Args:
        data: Claims to include in the token
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(seconds=JWT_EXPIRATION))
    to_encode.update({"exp": expire, "iat": datetime.utcnow()})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a session token.

    Raises:
        UnauthenticatedError: If token is invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning("jwt_decode_failed", error=str(e))
        raise UnauthenticatedError("Invalid or expired token")
