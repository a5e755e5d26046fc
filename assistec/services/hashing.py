import hashlib
import hmac
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Tipo nao serializavel: {type(value).__name__}")


def canonical_json(payload: Any) -> bytes:
    """Stable byte form: sorted keys, no whitespace, Decimal as 2-place strings."""
    return json.dumps(
        payload,
        default=_default,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def keyed_digest(payload: Any, key: str) -> str:
    return hmac.new(key.encode("utf-8"), canonical_json(payload), hashlib.sha256).hexdigest()


def digests_match(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(left, right)
