import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from carelink.modules.consent.schemas import OtpStatusOut

class AssignmentCreate(BaseModel):
    patient_id: uuid.UUID
    secondary_doctor_id: uuid.UUID
    assignment_reason: str = Field(..., min_length=10, max_length=2000)
    specialty_focus: list[str] = []
    requires_consent: bool = True
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    notes: str | None = None

class AssignmentOut(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    patient_id: uuid.UUID
    primary_doctor_id: uuid.UUID
    secondary_doctor_id: uuid.UUID
    assignment_reason: str
    specialty_focus: list[str] | None
    notes: str | None
    requires_consent: bool
    consent_status: str
    access_granted: bool
    access_granted_at: datetime | None
    expires_at: datetime | None
    is_active: bool
    deactivated_at: datetime | None

    class Config:
        from_attributes = True

class AssignmentUpdate(BaseModel):
    assignment_reason: str | None = Field(default=None, min_length=10, max_length=2000)
    specialty_focus: list[str] | None = None
    notes: str | None = None
    expires_in_days: int | None = Field(default=None, ge=1, le=365)
    is_active: bool | None = None

class SecondaryAssignmentOut(BaseModel):
    """One row of a secondary doctor's worklist: the assignment and where its consent stands."""
    assignment: AssignmentOut
    status: str  # granted | not_required | otp_pending | pending
    latest_otp: OtpStatusOut | None
