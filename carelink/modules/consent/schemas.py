import uuid
from datetime import datetime
from pydantic import BaseModel, Field

METHOD_PATTERN = "^(sms|email|in_person|phone_call|sms_email)$"

class ConsentRequest(BaseModel):
    method: str = Field(default="email", pattern=METHOD_PATTERN)
    custom_message: str | None = Field(default=None, max_length=500)

class ConsentResend(BaseModel):
    method: str | None = Field(default=None, pattern=METHOD_PATTERN)
    reason: str | None = Field(default=None, min_length=5, max_length=200)

class ConsentVerify(BaseModel):
    # ASCII digits only; \d would also admit other scripts' digits
    code: str = Field(..., pattern=r"^[0-9]{6}$")

# The code itself is deliberately absent from every outbound model.
class ConsentOtpOut(BaseModel):
    id: uuid.UUID
    assignment_id: uuid.UUID
    method: str
    delivered_to: str | None
    issued_at: datetime
    expires_at: datetime
    verified_at: datetime | None
    is_verified: bool
    is_blocked: bool
    attempts_count: int
    max_attempts: int
    requested_by_user_id: uuid.UUID
    custom_message: str | None

    class Config:
        from_attributes = True

class IssuanceOut(BaseModel):
    assignment_id: uuid.UUID
    otp_already_exists: bool
    otp: ConsentOtpOut
    remaining_time_seconds: int
    verification_attempts_remaining: int
    delivered_via: list[str] = []
    previous_otp_invalidated: bool = False
    resends_remaining: int | None = None
    message: str

class VerificationOut(BaseModel):
    verified: bool = True
    otp_id: uuid.UUID
    assignment_id: uuid.UUID
    verified_at: datetime
    consent_status: str
    access_granted: bool
    access_granted_at: datetime | None

class OtpStatusOut(BaseModel):
    otp_id: uuid.UUID
    method: str
    is_verified: bool
    is_expired: bool
    is_blocked: bool
    attempts_count: int
    attempts_remaining: int
    issued_at: datetime
    expires_at: datetime
    verified_at: datetime | None

    @classmethod
    def from_otp(cls, otp, now: datetime) -> "OtpStatusOut":
        return cls(
            otp_id=otp.id,
            method=otp.method,
            is_verified=otp.is_verified,
            is_expired=otp.is_expired(now),
            is_blocked=otp.is_blocked,
            attempts_count=otp.attempts_count,
            attempts_remaining=otp.attempts_remaining(),
            issued_at=otp.issued_at,
            expires_at=otp.expires_at,
            verified_at=otp.verified_at,
        )

class ConsentStatusOut(BaseModel):
    assignment_id: uuid.UUID
    status: str  # granted | not_required | otp_pending | pending
    requires_consent: bool
    consent_status: str
    access_granted: bool
    access_granted_at: datetime | None
    is_active: bool
    latest_otp: OtpStatusOut | None
    checked_at: datetime
