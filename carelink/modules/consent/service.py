import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.base import utcnow
from carelink.core.config import settings
from carelink.core.logging import mask_destination
from carelink.core.security import Principal
from carelink.modules.assignments.models import SecondaryDoctorAssignment, CONSENT_GRANTED
from carelink.modules.assignments.repository import AssignmentRepository
from carelink.modules.assignments.service import is_party
from carelink.modules.patients.models import Patient
from carelink.modules.patients.repository import PatientRepository
from carelink.modules.audit.service import AuditService
from carelink.modules.events import outbox as events
from carelink.modules.events.outbox import OutboxService
from carelink.modules.consent import errors
from carelink.modules.consent.codes import generate_code, codes_match
from carelink.modules.consent.delivery import CodeDelivery, ConsentCodeNotifier
from carelink.modules.consent.models import (
    ConsentOtp, METHOD_EMAIL, METHOD_SMS, METHOD_PHONE_CALL, METHOD_SMS_EMAIL,
    consent_state,
)
from carelink.modules.consent.repository import ConsentOtpRepository
from carelink.platform.provider_registry import registry

logger = logging.getLogger(__name__)

@dataclass
class IssuanceResult:
    otp: ConsentOtp
    created: bool
    remaining_seconds: int
    attempts_remaining: int
    delivered_via: list[str] = field(default_factory=list)
    previous_otp_invalidated: bool = False
    resends_remaining: int | None = None

@dataclass
class VerificationResult:
    otp: ConsentOtp
    assignment: SecondaryDoctorAssignment

@dataclass
class ConsentStatusResult:
    assignment: SecondaryDoctorAssignment
    latest_otp: ConsentOtp | None
    status: str
    checked_at: datetime

def default_notifier() -> ConsentCodeNotifier:
    return ConsentCodeNotifier(sms=registry.sms_sender(), email=registry.email_sender())

def _delivered_to(method: str, patient: Patient | None) -> str | None:
    if patient is None:
        return None
    if method in (METHOD_SMS, METHOD_PHONE_CALL):
        return mask_destination(patient.primary_phone)
    if method == METHOD_EMAIL:
        return mask_destination(patient.primary_email)
    if method == METHOD_SMS_EMAIL:
        return f"{mask_destination(patient.primary_phone)}, {mask_destination(patient.primary_email)}"
    return None

class ConsentService:
    """OTP-gated consent for a secondary doctor's access to a patient's records.

    Issuance returns the already-active code for an assignment instead of minting a
    second one. Verification walks the checks in a fixed order (not found, expired,
    already verified, attempts exhausted, wrong code) and, on a match, marks the
    code verified and grants access on the assignment in a single commit.
    Expiry is never written by a timer; it is read from ``expires_at`` when needed.
    """

    def __init__(self, session: AsyncSession, notifier: ConsentCodeNotifier | None = None,
                 clock: Callable[[], datetime] | None = None):
        self.session = session
        self._now = clock or utcnow
        self.assignments = AssignmentRepository(session)
        self.otps = ConsentOtpRepository(session)
        self.patients = PatientRepository(session)
        self.audit = AuditService(session)
        self.outbox = OutboxService(session, self._now)
        self.notifier = notifier or default_notifier()
        self.ttl = timedelta(minutes=settings.CONSENT_OTP_TTL_MINUTES)
        self.max_attempts = settings.CONSENT_OTP_MAX_ATTEMPTS

    # ---- Issuance ----

    async def request_consent(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor_id: uuid.UUID,
                              method: str = METHOD_EMAIL, custom_message: str | None = None) -> IssuanceResult:
        now = self._now()
        # the row lock serializes dedup-check-then-insert per assignment
        a = await self._load_for_issuance(org_id, assignment_id, actor_id)

        existing = await self.otps.find_active(org_id, a.id, now)
        if existing:
            await self.audit.log(org_id, actor_id, "consent.request", "consent_otp", existing.id, outcome="already_exists")
            await self.session.commit()
            logger.info("Active consent code %s reused for assignment %s", existing.id, a.id)
            return IssuanceResult(
                otp=existing,
                created=False,
                remaining_seconds=existing.remaining_seconds(now),
                attempts_remaining=existing.attempts_remaining(),
            )

        otp, delivery = await self._issue(org_id, a, actor_id, method, custom_message, now)
        await self.outbox.enqueue(
            org_id, events.CONSENT_OTP_ISSUED, "assignment", a.id,
            {"otp_id": str(otp.id), "method": otp.method, "expires_at": otp.expires_at.isoformat()}
        )
        await self.audit.log(org_id, actor_id, "consent.request", "consent_otp", otp.id, outcome="issued")
        await self.session.commit()
        logger.info("Consent code %s issued for assignment %s via %s", otp.id, a.id, otp.method)

        delivered = await self.notifier.deliver(delivery)
        return IssuanceResult(
            otp=otp,
            created=True,
            remaining_seconds=otp.remaining_seconds(now),
            attempts_remaining=otp.attempts_remaining(),
            delivered_via=delivered,
        )

    async def resend_consent(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor_id: uuid.UUID,
                             method: str | None = None, reason: str | None = None) -> IssuanceResult:
        now = self._now()
        a = await self._load_for_issuance(org_id, assignment_id, actor_id)

        window_start = now - timedelta(minutes=settings.CONSENT_RESEND_WINDOW_MINUTES)
        recent = await self.otps.count_issued_since(org_id, a.id, window_start)
        if recent >= settings.CONSENT_RESEND_LIMIT:
            await self.session.rollback()
            raise errors.ResendLimitExceeded(resends_remaining=0, window_minutes=settings.CONSENT_RESEND_WINDOW_MINUTES)

        invalidated = await self.otps.find_active(org_id, a.id, now)
        if invalidated is not None:
            invalidated.superseded_at = now
            invalidated.expires_at = now
        previous = invalidated or await self.otps.latest(org_id, a.id)

        final_method = method or (previous.method if previous else METHOD_EMAIL)
        custom_message = previous.custom_message if previous else None
        otp, delivery = await self._issue(org_id, a, actor_id, final_method, custom_message, now)
        await self.outbox.enqueue(
            org_id, events.CONSENT_OTP_RESENT, "assignment", a.id,
            {
                "otp_id": str(otp.id),
                "previous_otp_id": str(invalidated.id) if invalidated else None,
                "method": otp.method,
                "reason": reason or "resend requested",
            }
        )
        await self.audit.log(org_id, actor_id, "consent.resend", "consent_otp", otp.id, outcome="issued")
        await self.session.commit()
        logger.info("Consent code %s re-issued for assignment %s (previous invalidated=%s)", otp.id, a.id, invalidated is not None)

        delivered = await self.notifier.deliver(delivery)
        return IssuanceResult(
            otp=otp,
            created=True,
            remaining_seconds=otp.remaining_seconds(now),
            attempts_remaining=otp.attempts_remaining(),
            delivered_via=delivered,
            previous_otp_invalidated=invalidated is not None,
            resends_remaining=max(0, settings.CONSENT_RESEND_LIMIT - (recent + 1)),
        )

    async def _load_for_issuance(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor_id: uuid.UUID) -> SecondaryDoctorAssignment:
        a = await self.assignments.get_for_doctor(org_id, assignment_id, actor_id, for_update=True)
        failure: errors.ConsentWorkflowError | None = None
        if a is None:
            failure = errors.NotFoundOrForbidden()
        elif not a.requires_consent:
            failure = errors.ConsentNotRequired()
        elif a.consent_status == CONSENT_GRANTED:
            failure = errors.AlreadyGranted()
        elif not a.is_active:
            failure = errors.AssignmentInactive()
        if failure is not None:
            await self.session.rollback()
            raise failure
        return a

    async def _issue(self, org_id: uuid.UUID, a: SecondaryDoctorAssignment, actor_id: uuid.UUID,
                     method: str, custom_message: str | None, now: datetime) -> tuple[ConsentOtp, CodeDelivery]:
        patient = await self.patients.get(org_id, a.patient_id)
        code = generate_code()
        otp = await self.otps.create(
            org_id,
            assignment_id=a.id,
            code=code,
            method=method,
            delivered_to=_delivered_to(method, patient),
            issued_at=now,
            expires_at=now + self.ttl,
            verified_at=None,
            blocked_at=None,
            superseded_at=None,
            is_verified=False,
            is_blocked=False,
            attempts_count=0,
            max_attempts=self.max_attempts,
            requested_by_user_id=actor_id,
            custom_message=custom_message,
        )
        delivery = CodeDelivery(
            assignment_id=a.id,
            code=code,
            method=method,
            minutes=int(self.ttl.total_seconds() // 60),
            attempts=self.max_attempts,
            phone=patient.primary_phone if patient else None,
            email=patient.primary_email if patient else None,
            patient_name=(patient.preferred_name or patient.legal_name) if patient else None,
            custom_message=custom_message,
        )
        return otp, delivery

    # ---- Verification ----

    async def verify_consent(self, org_id: uuid.UUID, code: str, *, otp_id: uuid.UUID | None = None,
                             assignment_id: uuid.UUID | None = None, actor: Principal | None = None) -> VerificationResult:
        if (otp_id is None) == (assignment_id is None):
            raise ValueError("exactly one of otp_id or assignment_id is required")
        now = self._now()

        otp, a = await self._lock_for_verification(org_id, otp_id, assignment_id)
        if otp is None or a is None or (actor is not None and not await is_party(self.patients, a, actor)):
            await self.session.rollback()
            raise errors.NotFoundOrForbidden()
        actor_id = actor.user_id if actor is not None else otp.requested_by_user_id

        # Terminal and expired states never consume an attempt.
        failure: errors.ConsentWorkflowError | None = None
        if otp.is_expired(now):
            failure = errors.OtpExpired()
        elif otp.is_verified:
            failure = errors.OtpAlreadyVerified()
        elif otp.is_blocked or otp.attempts_count >= otp.max_attempts:
            failure = errors.MaxAttemptsExceeded()
        if failure is not None:
            await self.audit.log(org_id, actor_id, "consent.verify", "consent_otp", otp.id, outcome=failure.code, success=False)
            await self.session.commit()
            raise failure

        if not codes_match(code, otp.code):
            await self._record_failed_attempt(org_id, otp, actor_id, now)
            raise errors.InvalidCode(attempts_remaining=otp.attempts_remaining())

        try:
            otp.is_verified = True
            otp.verified_at = now
            a.consent_status = CONSENT_GRANTED
            a.access_granted = True
            a.access_granted_at = now
            await self.outbox.enqueue(
                org_id, events.CONSENT_GRANTED, "assignment", a.id,
                {"otp_id": str(otp.id), "patient_id": str(a.patient_id), "secondary_doctor_id": str(a.secondary_doctor_id)}
            )
            await self.audit.log(org_id, actor_id, "consent.verify", "consent_otp", otp.id, outcome="verified")
            await self.session.commit()
        except Exception:
            logger.exception("Consent grant for assignment %s failed; rolled back", a.id)
            await self.session.rollback()
            raise
        logger.info("Consent granted for assignment %s via code %s", a.id, otp.id)
        return VerificationResult(otp=otp, assignment=a)

    async def _lock_for_verification(self, org_id: uuid.UUID, otp_id: uuid.UUID | None,
                                     assignment_id: uuid.UUID | None) -> tuple[ConsentOtp | None, SecondaryDoctorAssignment | None]:
        # Lock order is assignment then code, same as issuance.
        if otp_id is not None:
            target = await self.otps.get(org_id, otp_id)
            if target is None:
                return None, None
            assignment_id = target.assignment_id
        a = await self.assignments.get(org_id, assignment_id, for_update=True)
        if a is None:
            return None, None
        if otp_id is not None:
            otp = await self.otps.get(org_id, otp_id, for_update=True)
        else:
            otp = await self.otps.latest(org_id, a.id, for_update=True)
        return otp, a

    async def _record_failed_attempt(self, org_id: uuid.UUID, otp: ConsentOtp, actor_id: uuid.UUID, now: datetime):
        otp.attempts_count += 1
        if otp.attempts_count >= otp.max_attempts:
            otp.is_blocked = True
            otp.blocked_at = now
            await self.outbox.enqueue(
                org_id, events.CONSENT_OTP_BLOCKED, "assignment", otp.assignment_id,
                {"otp_id": str(otp.id), "attempts_count": otp.attempts_count}
            )
            logger.warning("Consent code %s blocked after %d failed attempts", otp.id, otp.attempts_count)
        await self.audit.log(org_id, actor_id, "consent.verify", "consent_otp", otp.id, outcome=errors.InvalidCode.code, success=False)
        await self.session.commit()

    # ---- Status ----

    async def consent_status(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor: Principal) -> ConsentStatusResult:
        now = self._now()
        a = await self.assignments.get(org_id, assignment_id)
        if a is None or not await is_party(self.patients, a, actor):
            raise errors.NotFoundOrForbidden()
        latest = await self.otps.latest(org_id, a.id)
        return ConsentStatusResult(assignment=a, latest_otp=latest, status=consent_state(a, latest, now), checked_at=now)
