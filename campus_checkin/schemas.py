from __future__ import annotations
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

from .core.token import ParticipantSnapshot

class TokenRequest(BaseModel):
    event_id: int | None = None
    registration_id: int | None = None

class TokenResponse(BaseModel):
    token: str
    issued_at: datetime
    expires_at: datetime
    is_checked_in: bool

class ValidateRequest(BaseModel):
    qr_token: str | None = None

class EventBrief(BaseModel):
    id: int
    title: str
    start_time: datetime | None = None

class CheckinResult(BaseModel):
    valid: bool = True
    success: bool = True
    message: str
    participant: ParticipantSnapshot
    event: EventBrief
    checked_in_at: datetime

class CheckinStats(BaseModel):
    event_id: int
    total_registrations: int
    checked_in: int

class RosterRow(BaseModel):
    checkin_id: UUID
    user_id: UUID
    registration_id: int
    participant_name: str | None = None
    roll_number: str | None = None
    checked_in_at: datetime | None = None
    checked_in_by: UUID | None = None

class TicketRead(BaseModel):
    registration_id: int
    event: EventBrief
    status: str
    has_token: bool
    is_checked_in: bool
    checked_in_at: datetime | None = None
