import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String
from carelink.core.base import Base, TimestampedTenantMixin

class Patient(Base, TimestampedTenantMixin):
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)  # login account of the patient, if any
    legal_name: Mapped[str] = mapped_column(String(200))
    preferred_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    primary_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    primary_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    primary_doctor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
