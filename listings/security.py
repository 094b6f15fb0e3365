from __future__ import annotations

import datetime as dt
import re
import secrets

import bcrypt
import jwt

from listings.config import settings

COMMON_PASSWORDS = {
    "password", "123456", "123456789", "qwerty", "abc123", "password123",
    "admin", "letmein", "welcome", "monkey", "1234567890", "password1",
    "qwerty123", "dragon", "master", "hello", "freedom", "whatever",
    "qazwsx", "trustno1", "654321", "1234",
}


def hash_password(password: str) -> str:
    # bcrypt stores algorithm + cost + salt in the resulting hash string.
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Invalid hash format.
        return False


def generate_reset_token() -> str:
    """Random token sent to the user; only its bcrypt hash is stored."""
    return secrets.token_hex(32)


def create_access_token(*, user_id: str, role: str) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(days=settings.ACCESS_TOKEN_DAYS)).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])


def normalize_phone(phone: str) -> str:
    """Normalise a Somali mobile number to ``+252XXXXXXXXX``."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("252"):
        return "+" + digits
    if len(digits) == 9:
        return "+252" + digits
    if len(digits) == 10 and digits.startswith("0"):
        return "+252" + digits[1:]
    return "+" + digits if digits else ""


def is_valid_phone(phone: str) -> bool:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10 and digits.startswith("0"):
        digits = digits[1:]
    return len(digits) == 9 or (len(digits) == 12 and digits.startswith("252"))


def password_problem(password: str, phone: str | None = None) -> str | None:
    """Return why ``password`` is unacceptable, or None."""
    if not password:
        return "Password is required."
    if len(password) < 5:
        return "Password must be at least 5 characters long."
    if not re.search(r"[A-Za-z0-9]", password):
        return "Password must contain at least one number or one alphabet."
    if password.lower() in COMMON_PASSWORDS:
        return "Password is too common. Please choose a more unique password."
    if phone:
        digits = re.sub(r"\D", "", phone)
        if len(digits) >= 6 and digits[-6:] in password:
            return "Password cannot contain your phone number."
    return None
