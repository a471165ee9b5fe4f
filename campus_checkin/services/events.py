from __future__ import annotations
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import Event, as_utc
from ..core.token import EventSnapshot

ADMIN_ROLE = "admin"

async def get_event(db: AsyncSession, event_id: int) -> Event | None:
    return (await db.execute(select(Event).where(Event.id == event_id))).scalar_one_or_none()

def can_manage_event(event: Event, *, actor_id: uuid.UUID, actor_role: str | None) -> bool:
    """Organizer of the event, or any admin."""
    return actor_role == ADMIN_ROLE or event.organizer_id == actor_id

def event_snapshot(event: Event) -> EventSnapshot:
    return EventSnapshot(
        id=event.id,
        title=event.title,
        description=event.description,
        location=event.location,
        start_time=as_utc(event.start_time),
        end_time=as_utc(event.end_time),
    )
