"""
Tests for re-issuing a consent code and for the consent status read model.
"""
import pytest

from carelink.core.base import as_utc
from carelink.modules.consent import errors
from carelink.modules.consent.models import (
    ConsentOtp, STATUS_GRANTED, STATUS_NOT_REQUIRED, STATUS_OTP_PENDING, STATUS_PENDING,
)
from carelink.modules.events.outbox import EventOutbox


class TestResend:
    async def test_resend_supersedes_active_code(self, consent_service, assignment, org_id, primary_doctor_id, clock, reload):
        first = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id, "sms")
        old_code = (await reload(ConsentOtp, first.otp.id)).code
        clock.advance(minutes=2)

        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id, reason="patient lost the text")
        assert res.created is True
        assert res.previous_otp_invalidated is True
        assert res.otp.id != first.otp.id
        assert res.otp.method == "sms"
        assert res.attempts_remaining == 3
        assert res.resends_remaining == 1

        old = await reload(ConsentOtp, first.otp.id)
        assert as_utc(old.superseded_at) == clock()
        assert old.is_expired(clock()) is True

        with pytest.raises(errors.OtpExpired):
            await consent_service().verify_consent(org_id, old_code, otp_id=first.otp.id)

    async def test_new_code_verifies_by_assignment(self, consent_service, assignment, org_id, primary_doctor_id, clock, reload):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        clock.advance(minutes=1)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        code = (await reload(ConsentOtp, res.otp.id)).code

        verified = await consent_service().verify_consent(org_id, code, assignment_id=assignment.id)
        assert verified.otp.id == res.otp.id

    async def test_immediate_resend_code_verifies_by_assignment(self, consent_service, assignment, org_id, primary_doctor_id, primary_doctor, reload):
        """Old and new codes share one issued_at; the superseded one must not shadow the new one."""
        first = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert res.otp.issued_at == first.otp.issued_at

        status = await consent_service().consent_status(org_id, assignment.id, primary_doctor)
        assert status.latest_otp.id == res.otp.id
        assert status.status == STATUS_OTP_PENDING

        code = (await reload(ConsentOtp, res.otp.id)).code
        verified = await consent_service().verify_consent(org_id, code, assignment_id=assignment.id)
        assert verified.otp.id == res.otp.id
        assert verified.assignment.access_granted is True

    async def test_resend_resets_attempts(self, consent_service, assignment, org_id, primary_doctor_id, clock, reload):
        first = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        code = (await reload(ConsentOtp, first.otp.id)).code
        wrong = "100000" if code != "100000" else "999999"
        for _ in range(2):
            with pytest.raises(errors.InvalidCode):
                await consent_service().verify_consent(org_id, wrong, otp_id=first.otp.id)

        clock.advance(minutes=1)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert res.attempts_remaining == 3

    async def test_method_override_and_fallback(self, consent_service, assignment, org_id, primary_doctor_id, clock, sms_sender):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id, "email")
        clock.advance(minutes=1)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id, method="sms")
        assert res.otp.method == "sms"
        assert res.delivered_via == ["sms"]
        assert len(sms_sender.sent) == 1

    async def test_resend_without_prior_code_defaults_to_email(self, consent_service, assignment, org_id, primary_doctor_id):
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert res.previous_otp_invalidated is False
        assert res.otp.method == "email"

    async def test_resend_after_expiry_reuses_last_method(self, consent_service, assignment, org_id, primary_doctor_id, clock):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id, "in_person")
        clock.advance(minutes=20)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert res.previous_otp_invalidated is False
        assert res.otp.method == "in_person"

    async def test_rate_limit(self, consent_service, assignment, org_id, primary_doctor_id, clock, fetch_all):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        for _ in range(2):
            clock.advance(minutes=1)
            await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)

        clock.advance(minutes=1)
        with pytest.raises(errors.ResendLimitExceeded) as exc:
            await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert exc.value.status_code == 429
        assert len(await fetch_all(ConsentOtp, assignment_id=assignment.id)) == 3

    async def test_rate_limit_window_slides(self, consent_service, assignment, org_id, primary_doctor_id, clock):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        for _ in range(2):
            clock.advance(minutes=1)
            await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)

        clock.advance(minutes=29)
        res = await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id)
        assert res.created is True

    async def test_resend_refused_once_granted(self, consent_service, make_assignment, org_id, primary_doctor_id, clock):
        a = await make_assignment(consent_status="granted", access_granted=True, access_granted_at=clock())
        with pytest.raises(errors.AlreadyGranted):
            await consent_service().resend_consent(org_id, a.id, primary_doctor_id)

    async def test_resend_event_links_previous_code(self, consent_service, assignment, org_id, primary_doctor_id, clock, fetch_all):
        first = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        clock.advance(minutes=1)
        await consent_service().resend_consent(org_id, assignment.id, primary_doctor_id, reason="wrong number")

        events = await fetch_all(EventOutbox, event_type="CONSENT_OTP_RESENT")
        assert len(events) == 1
        assert events[0].payload["previous_otp_id"] == str(first.otp.id)
        assert events[0].payload["reason"] == "wrong number"


class TestConsentStatus:
    async def test_pending_without_code(self, consent_service, assignment, org_id, primary_doctor):
        res = await consent_service().consent_status(org_id, assignment.id, primary_doctor)
        assert res.status == STATUS_PENDING
        assert res.latest_otp is None

    async def test_otp_pending_while_code_active(self, consent_service, assignment, org_id, primary_doctor_id, primary_doctor):
        issued = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        res = await consent_service().consent_status(org_id, assignment.id, primary_doctor)
        assert res.status == STATUS_OTP_PENDING
        assert res.latest_otp.id == issued.otp.id

    async def test_back_to_pending_after_expiry(self, consent_service, assignment, org_id, primary_doctor_id, primary_doctor, clock):
        await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        clock.advance(minutes=16)
        res = await consent_service().consent_status(org_id, assignment.id, primary_doctor)
        assert res.status == STATUS_PENDING
        assert res.latest_otp.is_expired(res.checked_at) is True

    async def test_granted_after_verification(self, consent_service, assignment, org_id, primary_doctor_id, patient_principal, reload):
        issued = await consent_service().request_consent(org_id, assignment.id, primary_doctor_id)
        code = (await reload(ConsentOtp, issued.otp.id)).code
        await consent_service().verify_consent(org_id, code, otp_id=issued.otp.id, actor=patient_principal)

        res = await consent_service().consent_status(org_id, assignment.id, patient_principal)
        assert res.status == STATUS_GRANTED
        assert res.latest_otp.is_verified is True

    async def test_not_required(self, consent_service, make_assignment, org_id, secondary_doctor):
        a = await make_assignment(requires_consent=False)
        res = await consent_service().consent_status(org_id, a.id, secondary_doctor)
        # access is granted at creation when consent is not needed
        assert res.status == STATUS_GRANTED

    async def test_not_required_without_access(self, consent_service, make_assignment, org_id, secondary_doctor):
        a = await make_assignment(requires_consent=False, access_granted=False, consent_status="pending")
        res = await consent_service().consent_status(org_id, a.id, secondary_doctor)
        assert res.status == STATUS_NOT_REQUIRED

    async def test_stranger_sees_not_found(self, consent_service, assignment, org_id, stranger):
        with pytest.raises(errors.NotFoundOrForbidden):
            await consent_service().consent_status(org_id, assignment.id, stranger)
