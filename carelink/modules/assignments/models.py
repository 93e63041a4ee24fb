import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, Boolean, ForeignKey, JSON
from carelink.core.base import Base, TimestampedTenantMixin

CONSENT_PENDING = "pending"
CONSENT_GRANTED = "granted"
CONSENT_REVOKED = "revoked"

class SecondaryDoctorAssignment(Base, TimestampedTenantMixin):
    patient_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("patient.id"), index=True)
    primary_doctor_id: Mapped[uuid.UUID] = mapped_column()  # doctor who created the assignment
    secondary_doctor_id: Mapped[uuid.UUID] = mapped_column(index=True)
    assignment_reason: Mapped[str] = mapped_column(Text)
    specialty_focus: Mapped[list | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Consent / access
    requires_consent: Mapped[bool] = mapped_column(Boolean, default=True)
    consent_status: Mapped[str] = mapped_column(String(16), default=CONSENT_PENDING)  # pending | granted | revoked
    access_granted: Mapped[bool] = mapped_column(Boolean, default=False)
    access_granted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column()
