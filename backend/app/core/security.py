"""Password hashing."""

import bcrypt

from app.core.config import settings

# bcrypt ignores everything past 72 bytes, longer input is rejected by the schemas
BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """
    Hash a password with a fresh random salt.

    Args:
        plain: Plain text password (at most 72 bytes once UTF-8 encoded)

    Returns:
        Modular crypt string (``$2b$...``) safe to store
    """
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode(), salt).decode()


def verify_password(plain: str, hashed: str) -> bool:
    """
    Check a plain text password against a stored hash.

    Public counterpart of ``hash_password``. The service only writes hashes,
    so its callers are credential checks outside it, the tests included.
    """
    return bcrypt.checkpw(plain.encode(), hashed.encode())
