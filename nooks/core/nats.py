from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, connect_timeout=2, max_reconnect_attempts=3)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception:
        logger.warning("nats drain failed", exc_info=True)

async def publish(subject: str, evt: dict):
    await nats_connect()
    await _nats.publish(subject, json.dumps(evt).encode("utf-8"))

async def publish_notification(evt: dict):
    """
    evt = {
      "recipient_id": str,
      "title": str,
      "message": str,
      "category": "cancelled" | "host_transferred",
      "meetup_id": str
    }
    """
    await publish(_settings.nats_subject_notification, evt)

async def publish_attendance(evt: dict):
    """
    evt = {
      "meetup_id": str,
      "user_id": str,
      "phase": "entry" | "exit",
      "status": str,
      "recorded_at": iso8601,
      "idempotency_key": "meetup_id:user_id:phase"
    }
    """
    await publish(_settings.nats_subject_attendance, evt)
