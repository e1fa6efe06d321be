import re

COUNTRY_CODE = "91"

_NON_DIGITS = re.compile(r"\D")
_MOBILE = re.compile(r"^(91)?[6-9]\d{9}$")


def normalize_phone(value) -> str:
    """Canonical ``91XXXXXXXXXX`` form of an Indian number.

    Never raises; input that does not look like an Indian number comes back
    as its digits only. Already canonical numbers pass through unchanged.
    """
    if value is None:
        return ""
    digits = _NON_DIGITS.sub("", str(value))
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return digits
    stripped = digits.lstrip("0")
    if len(stripped) == 12 and stripped.startswith(COUNTRY_CODE):
        return stripped
    if len(stripped) == 10:
        return f"{COUNTRY_CODE}{stripped}"
    return digits


def is_valid_indian_phone(value) -> bool:
    if not value:
        return False
    return bool(_MOBILE.match(_NON_DIGITS.sub("", str(value))))


def mask_phone(phone: str) -> str:
    if not phone or len(phone) <= 4:
        return "****"
    return f"{phone[:2]}******{phone[-4:]}"
