from __future__ import annotations

import random
import re
import string
import time

ORDER_ID_RE = re.compile(r"KAA-\d{6}", re.IGNORECASE)
PINCODE_RE = re.compile(r"\b[1-9]\d{5}\b")
VALID_PINCODE_RE = re.compile(r"^[1-9]\d{5}$")
VALID_ORDER_ID_RE = re.compile(r"^KAA-\d{6}$")
PHONE_IN_TEXT_RE = re.compile(r"(?:\+91|91|0)?([6-9]\d{9})")
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

MAX_TEXT_LENGTH = 4096

_QUANTITY_PATTERNS = [
    re.compile(r"(\d+)\s*(?:pcs?|pieces?|qty|quantity|nos?|numbers?)", re.IGNORECASE),
    re.compile(r"(?:qty|quantity|pcs?|pieces?)[:\s]*(\d+)", re.IGNORECASE),
    re.compile(r"x\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s*x", re.IGNORECASE),
]


def extract_order_id(text: str | None) -> str | None:
    if not text:
        return None
    match = ORDER_ID_RE.search(text)
    return match.group(0).upper() if match else None


def extract_pincode(text: str | None) -> str | None:
    if not text:
        return None
    match = PINCODE_RE.search(text)
    return match.group(0) if match else None


def extract_phone(text: str | None) -> str | None:
    """First Indian mobile number in ``text``, as ``91XXXXXXXXXX``."""
    if not text:
        return None
    match = PHONE_IN_TEXT_RE.search(text)
    return f"91{match.group(1)}" if match else None


def extract_email(text: str | None) -> str | None:
    if not text:
        return None
    match = EMAIL_RE.search(text)
    return match.group(0).lower() if match else None


def sanitize(text, max_len: int = MAX_TEXT_LENGTH) -> str:
    if not text:
        return ""
    return str(text).strip()[:max_len]


def is_valid_pincode(value: str | None) -> bool:
    return bool(value) and bool(VALID_PINCODE_RE.match(value))


def is_valid_order_id(value: str | None) -> bool:
    return bool(value) and bool(VALID_ORDER_ID_RE.match(value))


def extract_quantity(text: str | None) -> int:
    if not text:
        return 1
    for pattern in _QUANTITY_PATTERNS:
        match = pattern.search(text)
        if match:
            qty = int(match.group(1))
            if 0 < qty <= 100:
                return qty
    return 1


def generate_order_id() -> str:
    return f"KAA-{random.randint(100000, 999999)}"


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def generate_broadcast_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"BC-{_base36(int(time.time() * 1000))}{suffix}"
