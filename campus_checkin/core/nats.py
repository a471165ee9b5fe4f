from __future__ import annotations
import asyncio
import json
import logging
import uuid
from typing import Any, Dict

from nats.aio.client import Client as NATS
from .config import get_settings

_settings = get_settings()
_nc = NATS()
logger = logging.getLogger(__name__)

async def nats_connect() -> None:
    """Connect once at startup, giving up after a bounded number of attempts.

    Scans never connect on their own; while the broker is unreachable
    publications are skipped.
    """
    if _nc.is_connected:
        return
    await _nc.connect(
        servers=_settings.nats_server_list,
        connect_timeout=_settings.nats_connect_timeout,
        max_reconnect_attempts=_settings.nats_max_reconnect_attempts,
        reconnect_time_wait=1,
    )
    logger.info("connected to NATS %s", ",".join(_settings.nats_server_list))

async def nats_close() -> None:
    if _nc.is_connected:
        await _nc.drain()

def checkin_message(
    *,
    checkin_id: uuid.UUID,
    event_id: int,
    user_id: uuid.UUID,
    registration_id: int,
    checked_in_by: uuid.UUID,
    checked_in_at: str,
) -> Dict[str, Any]:
    # consumers flip the registration to attended; they dedupe on idempotency_key
    return {
        "event_id": event_id,
        "user_id": str(user_id),
        "registration_id": registration_id,
        "checkin_id": str(checkin_id),
        "checked_in_by": str(checked_in_by),
        "checked_in_at": checked_in_at,
        "idempotency_key": f"{event_id}:{user_id}",
    }

async def publish_checkin(msg: Dict[str, Any]) -> bool:
    """Publish a recorded check-in. Returns False when it was skipped."""
    if not _nc.is_connected:
        logger.warning("NATS not connected, check-in %s not published", msg.get("idempotency_key"))
        return False
    payload = json.dumps(msg).encode("utf-8")
    await asyncio.wait_for(
        _nc.publish(_settings.nats_subject_checkin, payload),
        timeout=_settings.nats_publish_timeout,
    )
    logger.debug("published %s for %s", _settings.nats_subject_checkin, msg.get("idempotency_key"))
    return True
