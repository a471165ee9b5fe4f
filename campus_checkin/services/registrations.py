from __future__ import annotations
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import Registration, RegStatus, Profile
from ..core.errors import RegistrationNotFound
from ..core.token import ParticipantSnapshot

async def verify_registration(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    event_id: int,
    registration_id: int,
) -> Registration:
    """Return the caller's live registration for the event or raise RegistrationNotFound.

    All three ids must match, so a caller cannot present someone else's
    registration_id. Cancelled registrations no longer entitle the holder to a
    check-in token.
    """
    reg = (await db.execute(
        select(Registration).where(
            Registration.id == registration_id,
            Registration.user_id == user_id,
            Registration.event_id == event_id,
        )
    )).scalar_one_or_none()
    if reg is None:
        raise RegistrationNotFound()
    if reg.status == RegStatus.CANCELLED:
        raise RegistrationNotFound("Registration has been cancelled")
    return reg

async def get_registration(db: AsyncSession, registration_id: int) -> Registration | None:
    return (await db.execute(select(Registration).where(Registration.id == registration_id))).scalar_one_or_none()

async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    return (await db.execute(select(Profile).where(Profile.id == user_id))).scalar_one_or_none()

def _snapshot(reg: Registration, *, name: str | None, email: str | None) -> ParticipantSnapshot:
    return ParticipantSnapshot(
        name=name,
        email=email,
        roll_number=reg.roll_number,
        department=reg.department,
        year=reg.year,
        class_=reg.class_,
        profile_photo_url=reg.profile_photo_url,
    )

def participant_snapshot(
    reg: Registration, profile: Profile | None, *, email: str | None = None
) -> ParticipantSnapshot:
    """Snapshot embedded in a new token; a nameless registration shows the email."""
    mail = (profile.email if profile else None) or email
    return _snapshot(reg, name=reg.participant_name or mail, email=mail)

def live_participant(reg: Registration, profile: Profile | None) -> ParticipantSnapshot:
    """Participant as shown to the scanner, read from the current rows."""
    return _snapshot(
        reg,
        name=reg.participant_name or (profile.name if profile else None),
        email=profile.email if profile else None,
    )
