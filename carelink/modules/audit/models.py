import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Index, String, TIMESTAMP, text
from carelink.core.base import Base, TimestampedTenantMixin

class AuditEvent(Base, TimestampedTenantMixin):
    """Append-only record of a consent or assignment action, success or failure."""
    __table_args__ = (
        Index("ix_auditevent_resource", "org_id", "resource_type", "resource_id"),
    )

    actor_user_id: Mapped[uuid.UUID] = mapped_column()
    action: Mapped[str] = mapped_column(String(48))  # consent.request | consent.resend | consent.verify | assignment.create | assignment.update | assignment.deactivate
    resource_type: Mapped[str] = mapped_column(String(48))  # assignment | consent_otp
    resource_id: Mapped[str] = mapped_column(String(64))
    outcome: Mapped[str | None] = mapped_column(String(48), nullable=True)  # issued | verified | already_exists | error code
    success: Mapped[bool] = mapped_column(default=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
