from __future__ import annotations
import base64
import binascii
import json
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Wire format: base64(utf-8 JSON). Not signed; a token is only honoured if an
# identical string is stored on a check-in record.
REQUIRED_CLAIMS = ("user_id", "event_id", "exp")

class MalformedToken(ValueError):
    """Token is not base64-encoded JSON."""

class TokenShapeError(MalformedToken):
    """Token decodes but lacks required claims or has ill-typed ones."""

class ParticipantSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    email: str | None = None
    roll_number: str | None = None
    department: str | None = None
    year: str | None = None
    class_: str | None = Field(default=None, alias="class")
    profile_photo_url: str | None = None

class EventSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

class Claim(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    event_id: int
    registration_id: int | None = None
    issued_at: datetime | None = None
    exp: int  # epoch milliseconds
    participant: ParticipantSnapshot = Field(default_factory=ParticipantSnapshot)
    event: EventSnapshot = Field(default_factory=EventSnapshot)

def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)

def encode_claim(claim: Claim) -> str:
    doc = claim.model_dump(mode="json", by_alias=True)
    raw = json.dumps(doc, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")

def decode_claim(token: str) -> Claim:
    try:
        raw = base64.b64decode(token.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise MalformedToken("token is not base64-encoded JSON") from e
    if not isinstance(data, dict):
        raise MalformedToken("token payload is not a JSON object")

    missing = [k for k in REQUIRED_CLAIMS if not data.get(k)]
    if missing:
        raise TokenShapeError("missing claim: " + ", ".join(missing))
    try:
        return Claim.model_validate(data)
    except ValidationError as e:
        raise TokenShapeError(str(e)) from e
