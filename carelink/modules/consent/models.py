import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, Boolean, Integer, ForeignKey
from carelink.core.base import Base, TimestampedTenantMixin, as_utc

METHOD_SMS = "sms"
METHOD_EMAIL = "email"
METHOD_IN_PERSON = "in_person"
METHOD_PHONE_CALL = "phone_call"
METHOD_SMS_EMAIL = "sms_email"
METHODS = (METHOD_SMS, METHOD_EMAIL, METHOD_IN_PERSON, METHOD_PHONE_CALL, METHOD_SMS_EMAIL)

class ConsentOtp(Base, TimestampedTenantMixin):
    __tablename__ = "consent_otp"

    assignment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("secondarydoctorassignment.id"), index=True)
    code: Mapped[str] = mapped_column(String(6))
    method: Mapped[str] = mapped_column(String(16), default=METHOD_EMAIL)  # sms | email | in_person | phone_call | sms_email
    delivered_to: Mapped[str | None] = mapped_column(String(320), nullable=True)  # masked phone/email at issuance time

    issued_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    verified_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)  # replaced by a resend

    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)

    requested_by_user_id: Mapped[uuid.UUID] = mapped_column()
    custom_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_expired(self, now: datetime) -> bool:
        return self.superseded_at is not None or now > as_utc(self.expires_at)

    def is_active(self, now: datetime) -> bool:
        return not (self.is_expired(now) or self.is_verified or self.is_blocked)

    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts_count)

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((as_utc(self.expires_at) - now).total_seconds()))

# Consent state of an assignment as reported to callers
STATUS_GRANTED = "granted"
STATUS_NOT_REQUIRED = "not_required"
STATUS_OTP_PENDING = "otp_pending"
STATUS_PENDING = "pending"

def consent_state(assignment, latest: ConsentOtp | None, now: datetime) -> str:
    if assignment.access_granted:
        return STATUS_GRANTED
    if not assignment.requires_consent:
        return STATUS_NOT_REQUIRED
    if latest is not None and latest.is_active(now):
        return STATUS_OTP_PENDING
    return STATUS_PENDING
