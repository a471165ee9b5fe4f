from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..models import CheckinRecord, as_utc, utcnow
from ..core.config import get_settings
from ..core.errors import EventNotFound, IssuanceConflict
from ..core.token import Claim, encode_claim, to_epoch_ms
from .events import get_event, event_snapshot
from .registrations import verify_registration, get_profile, participant_snapshot

settings = get_settings()
logger = logging.getLogger(__name__)

async def find_checkin(db: AsyncSession, *, user_id: uuid.UUID, event_id: int) -> CheckinRecord | None:
    return (await db.execute(
        select(CheckinRecord).where(CheckinRecord.user_id == user_id, CheckinRecord.event_id == event_id)
    )).scalar_one_or_none()

async def issue_checkin_token(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    event_id: int,
    registration_id: int,
    email: str | None = None,
    now: datetime | None = None,
) -> tuple[CheckinRecord, bool]:
    """Return the caller's check-in record for the event, creating it on first call.

    Repeat calls return the stored record untouched (same token, same
    issued_at/expires_at). The (user_id, event_id) unique constraint settles
    concurrent first calls; the loser gets IssuanceConflict.
    """
    reg = await verify_registration(db, user_id=user_id, event_id=event_id, registration_id=registration_id)

    existing = await find_checkin(db, user_id=user_id, event_id=event_id)
    if existing:
        logger.debug("returning existing QR token user=%s event=%s", user_id, event_id)
        return existing, False

    event = await get_event(db, event_id)
    if event is None:
        raise EventNotFound()
    profile = await get_profile(db, user_id)

    issued_at = now or utcnow()
    end_time = as_utc(event.end_time)
    claim = Claim(
        user_id=str(user_id),
        event_id=event_id,
        registration_id=reg.id,
        issued_at=issued_at,
        exp=to_epoch_ms(end_time),
        participant=participant_snapshot(reg, profile, email=email),
        event=event_snapshot(event),
    )
    record = CheckinRecord(
        user_id=user_id,
        event_id=event_id,
        registration_id=reg.id,
        token=encode_claim(claim),
        issued_at=issued_at,
        expires_at=end_time + timedelta(hours=settings.checkin_grace_hours),
        is_checked_in=False,
    )
    db.add(record)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning("concurrent QR issuance user=%s event=%s", user_id, event_id)
        raise IssuanceConflict() from e
    await db.refresh(record)
    logger.info("QR token issued user=%s event=%s record=%s", user_id, event_id, record.id)
    return record, True
