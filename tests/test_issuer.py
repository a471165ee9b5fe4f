from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, func

from campus_checkin.core.errors import EventNotFound, IssuanceConflict, RegistrationNotFound
from campus_checkin.core.token import decode_claim
from campus_checkin.models import CheckinRecord, Profile, Registration, RegStatus, as_utc
from campus_checkin.services import issuer
from campus_checkin.services.issuer import issue_checkin_token
from campus_checkin.services.registrations import verify_registration

from factories import EVENT_END, OTHER_STUDENT_ID, STUDENT_ID, seed_event

ISSUE_NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


async def _count_records(db) -> int:
    return (await db.execute(select(func.count()).select_from(CheckinRecord))).scalar_one()


class TestRegistrationVerifier:
    @pytest.mark.asyncio
    async def test_matching_registration(self, db, scenario_event):
        reg = await verify_registration(db, user_id=STUDENT_ID, event_id=1, registration_id=10)
        assert reg.participant_name == "Asha Verma"

    @pytest.mark.asyncio
    async def test_someone_elses_registration(self, db, scenario_event):
        with pytest.raises(RegistrationNotFound):
            await verify_registration(db, user_id=STUDENT_ID, event_id=1, registration_id=11)

    @pytest.mark.asyncio
    async def test_wrong_event(self, db, scenario_event):
        with pytest.raises(RegistrationNotFound):
            await verify_registration(db, user_id=STUDENT_ID, event_id=2, registration_id=10)

    @pytest.mark.asyncio
    async def test_cancelled_registration_is_rejected(self, db, scenario_event):
        reg = (await db.execute(select(Registration).where(Registration.id == 10))).scalar_one()
        reg.status = RegStatus.CANCELLED
        await db.commit()
        with pytest.raises(RegistrationNotFound, match="cancelled"):
            await verify_registration(db, user_id=STUDENT_ID, event_id=1, registration_id=10)


class TestTokenIssuer:
    @pytest.mark.asyncio
    async def test_first_issue_creates_record(self, db, scenario_event):
        record, created = await issue_checkin_token(
            db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW
        )
        assert created is True
        assert record.is_checked_in is False
        assert as_utc(record.issued_at) == ISSUE_NOW
        # stored expiry is the event end plus the grace window
        assert as_utc(record.expires_at) == datetime(2025, 6, 1, 20, 0, tzinfo=timezone.utc)

        claim = decode_claim(record.token)
        assert claim.user_id == str(STUDENT_ID)
        assert claim.event_id == 1
        assert claim.registration_id == 10
        assert claim.exp == int(EVENT_END.timestamp() * 1000)
        assert claim.issued_at == ISSUE_NOW
        assert claim.participant.name == "Asha Verma"
        assert claim.participant.email == "asha@campus.test"
        assert claim.participant.roll_number == "21CS042"
        assert claim.participant.class_ == "A"
        assert claim.event.title == "Hack Night"
        assert claim.event.end_time == EVENT_END

    @pytest.mark.asyncio
    async def test_issue_is_idempotent(self, db, scenario_event):
        first, _ = await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW)
        later = ISSUE_NOW + timedelta(hours=3)
        second, created = await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=later)

        assert created is False
        assert second.id == first.id
        assert second.token == first.token
        assert as_utc(second.issued_at) == as_utc(first.issued_at) == ISSUE_NOW
        assert as_utc(second.expires_at) == as_utc(first.expires_at)
        assert await _count_records(db) == 1

    @pytest.mark.asyncio
    async def test_other_users_registration_creates_nothing(self, db, scenario_event):
        # caller is STUDENT_ID but presents OTHER_STUDENT_ID's registration
        with pytest.raises(RegistrationNotFound):
            await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=11, now=ISSUE_NOW)
        assert await _count_records(db) == 0

    @pytest.mark.asyncio
    async def test_each_student_gets_their_own_record(self, db, scenario_event):
        a, _ = await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW)
        b, _ = await issue_checkin_token(db, user_id=OTHER_STUDENT_ID, event_id=1, registration_id=11, now=ISSUE_NOW)
        assert a.token != b.token
        assert await _count_records(db) == 2

    @pytest.mark.asyncio
    async def test_missing_event(self, db):
        db.add(Registration(id=99, event_id=404, user_id=STUDENT_ID, status=RegStatus.REGISTERED))
        await db.commit()
        with pytest.raises(EventNotFound):
            await issue_checkin_token(db, user_id=STUDENT_ID, event_id=404, registration_id=99, now=ISSUE_NOW)

    @pytest.mark.asyncio
    async def test_nameless_registration_shows_email(self, db):
        await seed_event(db)
        reg = (await db.execute(select(Registration).where(Registration.id == 10))).scalar_one()
        reg.participant_name = None
        await db.commit()

        record, _ = await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW)
        assert decode_claim(record.token).participant.name == "asha@campus.test"

    @pytest.mark.asyncio
    async def test_email_from_caller_when_profile_missing(self, db):
        await seed_event(db)
        profile = (await db.execute(select(Profile).where(Profile.id == STUDENT_ID))).scalar_one()
        await db.delete(profile)
        reg = (await db.execute(select(Registration).where(Registration.id == 10))).scalar_one()
        reg.participant_name = None
        await db.commit()

        record, _ = await issue_checkin_token(
            db, user_id=STUDENT_ID, event_id=1, registration_id=10, email="asha@sso.test", now=ISSUE_NOW
        )
        participant = decode_claim(record.token).participant
        assert participant.name == participant.email == "asha@sso.test"

    @pytest.mark.asyncio
    async def test_concurrent_insert_raises_conflict(self, db, scenario_event, monkeypatch):
        await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW)

        # the racing request looked before the winner committed
        async def not_found_yet(*args, **kwargs):
            return None

        monkeypatch.setattr(issuer, "find_checkin", not_found_yet)
        with pytest.raises(IssuanceConflict):
            await issue_checkin_token(db, user_id=STUDENT_ID, event_id=1, registration_id=10, now=ISSUE_NOW)
        assert await _count_records(db) == 1
