from __future__ import annotations

import re

from werkzeug.security import check_password_hash, generate_password_hash

from utils import ApiError


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 256

_CHARACTER_CLASSES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[^A-Za-z0-9]"), "one special character"),
)


def validate_password_policy(password: str) -> str:
    """Return the password unchanged, or raise BAD_REQUEST naming what is missing."""
    pwd = str(password or "")
    if not pwd:
        raise ApiError("BAD_REQUEST", "Password is required")
    if len(pwd) < MIN_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(pwd) > MAX_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", "Password is too long")

    missing = [label for pattern, label in _CHARACTER_CLASSES if not pattern.search(pwd)]
    if missing:
        raise ApiError("BAD_REQUEST", "Password must contain at least " + ", ".join(missing))
    return pwd


def hash_password(password: str) -> str:
    return generate_password_hash(validate_password_policy(password), method="scrypt", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    # Users created without a password (or with a malformed hash) can never log in.
    if not password_hash:
        return False
    try:
        return check_password_hash(str(password_hash), str(password or ""))
    except ValueError:
        return False
