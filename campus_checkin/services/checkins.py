from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import SQLAlchemyError

from ..models import CheckinRecord, Event, Registration, RegStatus, as_utc, utcnow
from ..core.errors import (
    AlreadyCheckedIn, EventNotFound, InvalidTokenFormat, InvalidTokenStructure,
    NotAuthorized, RecordNotFound, RegistrationNotFound, TokenExpired, UpdateFailed,
)
from ..core.token import MalformedToken, TokenShapeError, ParticipantSnapshot, decode_claim, to_epoch_ms
from ..schemas import CheckinResult, EventBrief
from .events import get_event, can_manage_event
from .registrations import get_registration, get_profile, live_participant

logger = logging.getLogger(__name__)

def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return as_utc(dt).isoformat().replace("+00:00", "Z")

def _participant_dict(p: ParticipantSnapshot) -> Dict[str, Any]:
    return p.model_dump(mode="json", by_alias=True)

async def validate_checkin(
    db: AsyncSession,
    *,
    token: str,
    actor_id: uuid.UUID,
    actor_role: str | None,
    now: datetime | None = None,
) -> tuple[CheckinRecord, CheckinResult]:
    """Check a scanned QR token in, exactly once, on behalf of an organizer or admin.

    The steps run in a fixed order and the first failure ends the request:
    decode, claim shape, embedded expiry (before touching the db), stored
    record lookup by exact token, scanner authority over the event, prior use,
    stored grace-window expiry, live registration, conditional write.
    """
    now = now or utcnow()

    try:
        claim = decode_claim(token)
    except TokenShapeError as e:
        raise InvalidTokenStructure() from e
    except MalformedToken as e:
        raise InvalidTokenFormat() from e

    if to_epoch_ms(now) > claim.exp:
        raise TokenExpired()

    try:
        claim_user = uuid.UUID(claim.user_id)
    except ValueError:
        raise RecordNotFound()
    record = (await db.execute(
        select(CheckinRecord).where(
            CheckinRecord.token == token,
            CheckinRecord.user_id == claim_user,
            CheckinRecord.event_id == claim.event_id,
        )
    )).scalar_one_or_none()
    if record is None:
        logger.info("QR token with no stored record user=%s event=%s", claim.user_id, claim.event_id)
        raise RecordNotFound()

    event = await get_event(db, record.event_id)
    if event is None:
        raise EventNotFound()
    if not can_manage_event(event, actor_id=actor_id, actor_role=actor_role):
        logger.info("scanner %s not allowed to check in for event %s", actor_id, event.id)
        raise NotAuthorized()

    if record.is_checked_in:
        reg = await get_registration(db, record.registration_id)
        if reg is not None:
            participant = live_participant(reg, await get_profile(db, record.user_id))
        else:
            participant = claim.participant
        raise AlreadyCheckedIn(checked_in_at=_iso(record.checked_in_at), participant=_participant_dict(participant))

    if now > as_utc(record.expires_at):
        raise TokenExpired()

    reg = await get_registration(db, record.registration_id)
    if reg is None:
        raise RegistrationNotFound("User not registered for this event")
    participant = live_participant(reg, await get_profile(db, record.user_id))

    await mark_checked_in(db, record, actor_id=actor_id, now=now, participant=participant)
    logger.info("checked in user=%s event=%s by=%s", record.user_id, event.id, actor_id)

    return record, CheckinResult(
        message=f"Check-in successful for {participant.name or 'participant'}",
        participant=participant,
        event=EventBrief(id=event.id, title=event.title, start_time=as_utc(event.start_time)),
        checked_in_at=now,
    )

async def mark_checked_in(
    db: AsyncSession,
    record: CheckinRecord,
    *,
    actor_id: uuid.UUID,
    now: datetime,
    participant: ParticipantSnapshot | None = None,
) -> None:
    # conditional write: of two concurrent scans only one matches is_checked_in == false
    record_id = record.id
    try:
        result = await db.execute(
            update(CheckinRecord)
            .where(CheckinRecord.id == record_id, CheckinRecord.is_checked_in == False)
            .values(is_checked_in=True, checked_in_at=now, checked_in_by=actor_id)
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("check-in update failed for record %s", record_id)
        raise UpdateFailed() from e

    if result.rowcount == 0:
        await db.refresh(record)
        raise AlreadyCheckedIn(
            checked_in_at=_iso(record.checked_in_at),
            participant=_participant_dict(participant) if participant else None,
        )

async def checkin_stats(db: AsyncSession, event_id: int) -> tuple[int, int]:
    """Return (active registrations, checked-in records) for an event."""
    total = (await db.execute(
        select(func.count()).select_from(Registration).where(
            Registration.event_id == event_id, Registration.status != RegStatus.CANCELLED
        )
    )).scalar_one()
    checked_in = (await db.execute(
        select(func.count()).select_from(CheckinRecord).where(
            CheckinRecord.event_id == event_id, CheckinRecord.is_checked_in == True
        )
    )).scalar_one()
    return int(total), int(checked_in)

async def roster(db: AsyncSession, event_id: int):
    q = (
        select(CheckinRecord, Registration)
        .join(Registration, Registration.id == CheckinRecord.registration_id)
        .where(CheckinRecord.event_id == event_id, CheckinRecord.is_checked_in == True)
        .order_by(CheckinRecord.checked_in_at.asc())
    )
    return (await db.execute(q)).all()

async def my_tickets(db: AsyncSession, user_id: uuid.UUID):
    """Active registrations of a user with their event and check-in record (if issued)."""
    q = (
        select(Registration, Event, CheckinRecord)
        .join(Event, Event.id == Registration.event_id)
        .outerjoin(CheckinRecord, and_(
            CheckinRecord.registration_id == Registration.id,
            CheckinRecord.user_id == user_id,
        ))
        .where(Registration.user_id == user_id, Registration.status == RegStatus.REGISTERED)
        .order_by(Event.start_time.asc())
    )
    return (await db.execute(q)).all()

async def require_manageable_event(
    db: AsyncSession, event_id: int, *, actor_id: uuid.UUID, actor_role: str | None
) -> Event:
    event = await get_event(db, event_id)
    if event is None:
        raise EventNotFound()
    if not can_manage_event(event, actor_id=actor_id, actor_role=actor_role):
        raise NotAuthorized()
    return event
