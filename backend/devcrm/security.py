"""Passwords, session JWTs, API tokens and plugin secret encryption.

WHAT:
    - bcrypt password hashing (passlib)
    - HS256 session tokens carrying the user id and tenant id (python-jose)
    - Fernet encryption for secret plugin config fields (cryptography)
    - sha256-hashed API tokens; only the hash is stored

WHY:
    Plugin credentials are stored encrypted and only decrypted inside the
    worker. The API never returns them (see services/plugin_config.py).

Both JWT_SECRET and TOKEN_ENCRYPTION_KEY are required; importing this
module without them fails fast.

REFERENCES:
    - devcrm/routers/auth.py (login)
    - devcrm/deps.py (token -> current user)
    - devcrm/services/plugin_config.py (secret fields)
    - devcrm/services/api_tokens.py (API token lifecycle)
"""

import hashlib
import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Tuple

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt
from passlib.hash import bcrypt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_MINUTES = 7 * 24 * 60


def _load_secrets() -> Tuple[str, str]:
    jwt_secret = os.getenv("JWT_SECRET", "")
    encryption_key = os.getenv("TOKEN_ENCRYPTION_KEY", "")
    if not jwt_secret or not encryption_key:
        from devcrm.utils.env import load_env_file
        load_env_file()
        jwt_secret = jwt_secret or os.getenv("JWT_SECRET", "")
        encryption_key = encryption_key or os.getenv("TOKEN_ENCRYPTION_KEY", "")

    missing = [name for name, value in (("JWT_SECRET", jwt_secret), ("TOKEN_ENCRYPTION_KEY", encryption_key)) if not value]
    if missing:
        raise RuntimeError(
            f"{', '.join(missing)} not set. Run `python generate_keys.py` "
            "or export the variables before starting devcrm."
        )
    return jwt_secret, encryption_key


JWT_SECRET, TOKEN_ENCRYPTION_KEY = _load_secrets()
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(DEFAULT_TOKEN_MINUTES)))

try:
    _cipher = Fernet(TOKEN_ENCRYPTION_KEY)
except (ValueError, TypeError) as exc:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte key "
        "(cryptography.fernet.Fernet.generate_key())."
    ) from exc


# =============================================================================
# PLUGIN SECRETS
# =============================================================================

def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a secret config value.

    Args:
        plaintext: Raw secret (e.g. a plugin API token)
        context: Label for logs, `plugin:<key>:<field>`

    Returns:
        Fernet token as text, stored in `Plugin.config`
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.debug("[SECRET] Encrypted %s", context)
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Reverse `encrypt_secret`.

    Raises:
        ValueError: If the value was not produced with the current key
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        logger.error("[SECRET] Invalid ciphertext for %s (was TOKEN_ENCRYPTION_KEY rotated?)", context)
        raise ValueError("Unable to decrypt stored secret.") from exc
    logger.debug("[SECRET] Decrypted %s", context)
    return plaintext


# =============================================================================
# PASSWORDS
# =============================================================================

def get_password_hash(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.verify(password, password_hash)


@lru_cache()
def _dummy_password_hash() -> str:
    return bcrypt.hash("devcrm-timing-equalizer")


def verify_password_dummy(password: str) -> None:
    """Burn one bcrypt verification when no user matched.

    Keeps the login response time the same whether or not the email exists.
    """
    bcrypt.verify(password, _dummy_password_hash())


# =============================================================================
# SESSION TOKENS
# =============================================================================

def create_access_token(subject: str, tenant_id: str, expires_minutes: int | None = None) -> str:
    """Signed JWT for a user (`sub`) in a tenant (`tenant_id`)."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes if expires_minutes is not None else JWT_EXPIRES_MINUTES)
    claims: Dict[str, Any] = {
        "sub": subject,
        "tenant_id": tenant_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Validate signature and expiry; raises jose.JWTError on failure."""
    return jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])


# =============================================================================
# API TOKENS
# =============================================================================

API_TOKEN_PREFIX = "devcrm_"


def generate_api_token() -> str:
    """New plaintext API token: `devcrm_` + 32 url-safe characters."""
    return API_TOKEN_PREFIX + secrets.token_urlsafe(24)


def hash_api_token(token: str) -> str:
    """sha256 hex digest stored in place of the token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
