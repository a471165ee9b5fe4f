from __future__ import annotations
import logging
from io import BytesIO
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, caller_id
from ..schemas import (
    TokenRequest, TokenResponse, ValidateRequest, CheckinResult,
    CheckinStats, RosterRow, TicketRead, EventBrief,
)
from ..models import as_utc
from ..services.issuer import issue_checkin_token, find_checkin
from ..services.checkins import (
    validate_checkin, checkin_stats, roster, my_tickets, require_manageable_event,
)
from ..core.errors import CheckinError, InvalidRequest, RecordNotFound, EXPECTED_KINDS
from ..core.redis import allow_request
from ..core.nats import checkin_message, publish_checkin
from ..core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkin", tags=["checkin"])
VALIDATE_PATH = f"{router.prefix}/validate"

def _iso(dt):
    return as_utc(dt).isoformat().replace("+00:00", "Z")

def _invalid(e: CheckinError) -> JSONResponse:
    return JSONResponse(status_code=e.status_code, content={"valid": False, **e.to_dict()})

# --- 1) Student fetches (or first creates) their QR token for an event
@router.post("/tokens", response_model=TokenResponse)
async def issue_token(payload: TokenRequest, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    if not payload.event_id or not payload.registration_id:
        raise InvalidRequest("Missing event_id or registration_id")
    record, _ = await issue_checkin_token(
        db,
        user_id=caller_id(claims),
        event_id=payload.event_id,
        registration_id=payload.registration_id,
        email=claims.get("email"),
    )
    return TokenResponse(
        token=record.token,
        issued_at=as_utc(record.issued_at),
        expires_at=as_utc(record.expires_at),
        is_checked_in=record.is_checked_in,
    )

# PNG of the caller's ticket, for printing or offline display
@router.get("/events/{event_id}/ticket.png")
async def ticket_png(event_id: int, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    import qrcode
    record = await find_checkin(db, user_id=caller_id(claims), event_id=event_id)
    if record is None:
        raise RecordNotFound("No QR token issued for this event")
    img = qrcode.make(record.token)
    b = BytesIO(); img.save(b, format="PNG")
    return Response(content=b.getvalue(), media_type="image/png")

# --- 2) Organizer/admin scans a ticket
@router.post("/validate", response_model=CheckinResult)
async def validate_scan(
    payload: ValidateRequest,
    request: Request,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.validate"):
        return JSONResponse(
            status_code=429,
            content={"valid": False, "error": "Too many requests", "kind": "RateLimited", "retryable": True},
        )
    if not payload.qr_token or not payload.qr_token.strip():
        return _invalid(InvalidRequest("Missing QR token"))

    actor_id = caller_id(claims)
    try:
        record, result = await validate_checkin(
            db, token=payload.qr_token.strip(), actor_id=actor_id, actor_role=claims.get("role"),
        )
    except CheckinError as e:
        if e.kind in EXPECTED_KINDS:
            logger.info("scan rejected by %s: %s", actor_id, e.kind)
        else:
            logger.warning("scan failed for %s: %s (%s)", actor_id, e.kind, e.message)
        return _invalid(e)

    if settings.use_nats_events:
        try:
            await publish_checkin(checkin_message(
                checkin_id=record.id,
                event_id=record.event_id,
                user_id=record.user_id,
                registration_id=record.registration_id,
                checked_in_by=actor_id,
                checked_in_at=_iso(result.checked_in_at),
            ))
        except Exception as e:
            # check-in already committed
            logger.warning("could not publish check-in for record %s: %s", record.id, e)

    return result

# --- 3) Organizer/admin dashboard counts
@router.get("/events/{event_id}/stats", response_model=CheckinStats)
async def event_stats(event_id: int, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    await require_manageable_event(db, event_id, actor_id=caller_id(claims), actor_role=claims.get("role"))
    total, checked_in = await checkin_stats(db, event_id)
    return CheckinStats(event_id=event_id, total_registrations=total, checked_in=checked_in)

# --- 4) Organizer/admin roster of checked-in attendees
@router.get("/events/{event_id}/roster", response_model=list[RosterRow])
async def event_roster(event_id: int, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    await require_manageable_event(db, event_id, actor_id=caller_id(claims), actor_role=claims.get("role"))
    rows = await roster(db, event_id)
    return [
        RosterRow(
            checkin_id=c.id, user_id=c.user_id, registration_id=c.registration_id,
            participant_name=r.participant_name, roll_number=r.roll_number,
            checked_in_at=as_utc(c.checked_in_at), checked_in_by=c.checked_in_by,
        )
        for c, r in rows
    ]

# --- 5) Student's tickets
@router.get("/users/me", response_model=list[TicketRead])
async def my_ticket_list(claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    rows = await my_tickets(db, caller_id(claims))
    return [
        TicketRead(
            registration_id=reg.id,
            event=EventBrief(id=ev.id, title=ev.title, start_time=as_utc(ev.start_time)),
            status=reg.status.value,
            has_token=c is not None,
            is_checked_in=bool(c and c.is_checked_in),
            checked_in_at=as_utc(c.checked_in_at) if c else None,
        )
        for reg, ev, c in rows
    ]
