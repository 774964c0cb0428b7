from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict
import hashlib
import hmac
import json

from .config import get_settings
from .errors import InvalidSignature, MalformedToken, SigningKeyMissing, TokenExpired
from .windows import ScanPhase

TOKEN_FIELDS = ("meetup_id", "phase", "issued_at", "expires_at", "signature")


def to_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _secret() -> bytes:
    secret = get_settings().qr_signing_secret
    if not secret:
        raise SigningKeyMissing()
    return secret.encode("utf-8")


def sign_payload(meetup_id: str, phase: str, issued_at: int) -> str:
    """Truncated hex HMAC-SHA256 over ``meetup_id:phase:issued_at``."""
    message = f"{meetup_id}:{phase}:{issued_at}".encode("utf-8")
    digest = hmac.new(_secret(), message, hashlib.sha256).hexdigest()
    return digest[: get_settings().qr_signature_length]


def sign_qr(*, meetup_id: str, phase: ScanPhase, now: datetime) -> Dict[str, Any]:
    issued_at = to_millis(now)
    expires_at = to_millis(now + timedelta(seconds=get_settings().qr_token_ttl_seconds))
    return {
        "meetup_id": str(meetup_id),
        "phase": phase.value,
        "issued_at": issued_at,
        "expires_at": expires_at,
        "signature": sign_payload(str(meetup_id), phase.value, issued_at),
    }


def parse_qr(raw: Any) -> Dict[str, Any]:
    """Accept the decoded token object, or the raw JSON text read off a QR code."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise MalformedToken()
    if not isinstance(raw, dict):
        raise MalformedToken()
    for k in TOKEN_FIELDS:
        if raw.get(k) in (None, ""):
            raise MalformedToken()
    try:
        issued_at = int(raw["issued_at"])
        expires_at = int(raw["expires_at"])
    except (TypeError, ValueError):
        raise MalformedToken()
    if not isinstance(raw["signature"], str):
        raise MalformedToken()
    return {
        "meetup_id": str(raw["meetup_id"]),
        "phase": str(raw["phase"]),
        "issued_at": issued_at,
        "expires_at": expires_at,
        "signature": raw["signature"],
    }


def verify_signature(token: Dict[str, Any]) -> None:
    expected = sign_payload(token["meetup_id"], token["phase"], token["issued_at"])
    if not hmac.compare_digest(expected.encode("utf-8"), token["signature"].encode("utf-8")):
        raise InvalidSignature()


def check_fresh(token: Dict[str, Any], now: datetime) -> None:
    """Expiry is derived from the signed ``issued_at``; ``expires_at`` must match it exactly."""
    ttl_ms = get_settings().qr_token_ttl_seconds * 1000
    if token["expires_at"] != token["issued_at"] + ttl_ms:
        raise InvalidSignature()
    if to_millis(now) > token["issued_at"] + ttl_ms:
        raise TokenExpired()


def qr_text(token: Dict[str, Any]) -> str:
    """Compact JSON that the host screen renders as a QR code."""
    return json.dumps(token, separators=(",", ":"), sort_keys=True)
