"""
Password and API token hashing.

Link passwords are hashed with argon2id (argon2-cffi); verification is a
constant-time comparison. API tokens are stored as SHA-256 digests so the
plaintext is only ever seen by its owner.
"""

import hashlib
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

TOKEN_PREFIX = "lg_"

_password_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    return _password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if *password* matches *password_hash*, False on mismatch or a malformed hash."""
    try:
        return _password_hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def generate_api_token() -> str:
    return f"{TOKEN_PREFIX}{secrets.token_hex(32)}"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
