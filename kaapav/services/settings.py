from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from kaapav.core.errors import ValidationError
from kaapav.models.setting import Setting

DEFAULT_SETTINGS: dict[str, Any] = {
    "business_name": "KAAPAV Fashion Jewellery",
    "support_phone": "+91 91483 30016",
    "support_hours": "9 AM - 9 PM IST",
    "auto_reply_enabled": True,
    "ai_enabled": True,
    "free_shipping_threshold": 498,
}


def _decode(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def get_settings(db: Session) -> dict[str, Any]:
    values = dict(DEFAULT_SETTINGS)
    for row in db.query(Setting).all():
        values[row.key] = _decode(row.value)
    return values


def update_settings(db: Session, changes: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("Settings payload must be a non-empty object")
    for key, value in changes.items():
        if not key or len(key) > 80:
            raise ValidationError("Invalid setting key", details={"key": key})
        row = db.get(Setting, key)
        if row is None:
            row = Setting(key=key)
            db.add(row)
        row.value = json.dumps(value)
    db.commit()
    return get_settings(db)
