"""
Crypto utilities — bcrypt password hashing and confirmation tokens.

Password hashing:
  Supports both bcrypt ($2b$) and werkzeug (scrypt/pbkdf2) hashes so
  users imported from other identity stores can still sign in.
"""

import secrets

import bcrypt
from werkzeug.security import check_password_hash


def hash_password(plain_password: str, rounds: int = 12) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_confirmation_token() -> str:
    """URL-safe random token for email confirmation links."""
    return secrets.token_urlsafe(32)
