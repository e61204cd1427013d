"""
Password hashing and JWT access tokens.

Passwords are hashed with Argon2id. Tokens carry ``sub`` (user id), ``role``,
``email``, ``exp`` and ``type="access"``; anything else is rejected by
auth.dependencies.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import settings, is_production_like
from time_utils import utc_now

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def _load_secret_key() -> str:
    if settings.jwt_secret_key:
        return settings.jwt_secret_key
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    # Tokens from this key stop working on restart
    logger.warning("⚠️  JWT_SECRET_KEY not set! Using temporary development key.")
    return "dev-insecure-key-" + secrets.token_urlsafe(32)


SECRET_KEY = _load_secret_key()
ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Example:
        >>> hashed = hash_password("Passw0rd")
        >>> verify_password("Passw0rd", hashed)
        True
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to embed (``sub``, ``role``, ``email``)
        expires_delta: Lifetime override; defaults to ACCESS_TOKEN_EXPIRE_MINUTES
    """
    claims = dict(data)
    expire = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims.update({"exp": expire, "type": "access"})

    token = jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)
    logger.debug(f"Access token issued for sub={data.get('sub')}, expires at: {expire}")
    return token


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning None when the signature or expiry is invalid."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"JWT verification failed: {e}")
        return None
