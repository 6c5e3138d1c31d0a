from __future__ import annotations
from uuid import uuid4
import secrets
import string
import time


SHORT_CODE_ALPHABET = string.digits + string.ascii_uppercase
SHORT_CODE_LENGTH = 4


def new_id() -> str:
    return str(uuid4())


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    """Random base36 code, upper-cased for reading out over a phone."""
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def normalize_short_code(code: str) -> str:
    return (code or "").strip().upper()


def now_ms() -> int:
    return int(time.time() * 1000)


def mask_phone(phone) -> str:
    if not phone:
        return "-"
    p = str(phone)
    return "*" * max(len(p) - 4, 0) + p[-4:]
