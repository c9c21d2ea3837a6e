"""
Password helpers for accounts created by bulk imports.
"""
import secrets
import string
from typing import Optional

import bcrypt

from .config import settings

TEMPORARY_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with ``rounds`` bcrypt cost (settings default)."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=rounds or settings.bulk_password_hash_rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def generate_temporary_password(length: int = 12) -> str:
    """Random placeholder password; imported users reset it on first login."""
    return "".join(secrets.choice(TEMPORARY_PASSWORD_ALPHABET) for _ in range(length))
