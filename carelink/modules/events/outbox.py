import uuid
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import TIMESTAMP, text, String, Integer, Text, JSON, select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.base import Base, TimestampedTenantMixin, utcnow, as_utc
from carelink.core.config import settings
from carelink.core.db import SessionLocal
from carelink.platform.ports.event_bus import EventBusPort
from carelink.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

EVENTS_TOPIC = "carelink.events"

ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
ASSIGNMENT_UPDATED = "ASSIGNMENT_UPDATED"
ASSIGNMENT_DEACTIVATED = "ASSIGNMENT_DEACTIVATED"
CONSENT_OTP_ISSUED = "CONSENT_OTP_ISSUED"
CONSENT_OTP_RESENT = "CONSENT_OTP_RESENT"
CONSENT_OTP_BLOCKED = "CONSENT_OTP_BLOCKED"
CONSENT_GRANTED = "CONSENT_GRANTED"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SENT = "sent"
STATUS_DEAD = "dead"

# Events leave the database; a one-time code must never ride along.
FORBIDDEN_PAYLOAD_KEYS = frozenset({"code", "otp_code"})

class EventOutbox(Base, TimestampedTenantMixin):
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    subject_type: Mapped[str] = mapped_column(String(32))
    subject_id: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)
    occurred_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    status: Mapped[str] = mapped_column(String(16), default=STATUS_PENDING, index=True)  # pending | processing | sent | dead
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff: 2s, 4s, 8s ... capped at OUTBOX_MAX_BACKOFF_SECONDS."""
    return timedelta(seconds=min(settings.OUTBOX_MAX_BACKOFF_SECONDS, 2 ** min(attempts, 10)))

class OutboxRepository:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self._now = clock

    async def add(self, org_id: uuid.UUID, event_type: str, subject_type: str, subject_id: str, payload: dict) -> EventOutbox:
        now = self._now()
        obj = EventOutbox(
            org_id=org_id,
            event_type=event_type,
            subject_type=subject_type,
            subject_id=subject_id,
            payload=payload,
            occurred_at=now,
            status=STATUS_PENDING,
            attempts=0,
            next_attempt_at=now,
            last_error=None,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_due(self, limit: int) -> list[EventOutbox]:
        # SKIP LOCKED lets several relays share the table without double publishing
        q = (
            select(EventOutbox)
            .where(
                EventOutbox.deleted_at.is_(None),
                EventOutbox.status == STATUS_PENDING,
                EventOutbox.next_attempt_at <= self._now(),
            )
            .order_by(EventOutbox.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        batch = list(res.scalars().all())
        for ev in batch:
            ev.status = STATUS_PROCESSING
        await self.session.flush()
        return batch

    async def mark_sent(self, ev: EventOutbox):
        ev.status = STATUS_SENT
        ev.last_error = None
        await self.session.flush()

    async def mark_failed(self, ev: EventOutbox, error: str):
        ev.attempts = (ev.attempts or 0) + 1
        ev.last_error = error[:2000]
        if ev.attempts >= settings.OUTBOX_MAX_ATTEMPTS:
            ev.status = STATUS_DEAD
            log.error("Event %s (%s) dead after %d attempts", ev.id, ev.event_type, ev.attempts)
        else:
            ev.status = STATUS_PENDING
            ev.next_attempt_at = self._now() + retry_delay(ev.attempts)
        await self.session.flush()

class OutboxService:
    """Queues domain events in the caller's transaction; the relay publishes them after commit."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.repo = OutboxRepository(session, clock)

    async def enqueue(self, org_id: uuid.UUID, event_type: str, subject_type: str,
                      subject_id: str | uuid.UUID, payload: dict) -> EventOutbox:
        leaked = FORBIDDEN_PAYLOAD_KEYS.intersection(payload)
        if leaked:
            raise ValueError(f"event payload may not carry {sorted(leaked)}")
        return await self.repo.add(org_id, event_type, subject_type, str(subject_id), payload)

def event_envelope(ev: EventOutbox) -> dict:
    return {
        "source": settings.APP_NAME,
        "org_id": str(ev.org_id),
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "payload": ev.payload,
        "occurred_at": as_utc(ev.occurred_at).isoformat(),
        "outbox_id": str(ev.id),
    }

async def relay_once(session: AsyncSession, bus: EventBusPort, limit: int | None = None,
                     clock: Callable[[], datetime] = utcnow) -> int:
    """Publish one batch of due events and commit; returns how many were claimed."""
    repo = OutboxRepository(session, clock)
    batch = await repo.claim_due(limit or settings.OUTBOX_BATCH_SIZE)
    for ev in batch:
        try:
            await bus.publish(topic=EVENTS_TOPIC, key=ev.subject_id, value=event_envelope(ev),
                              headers={"event_type": ev.event_type})
        except Exception as ex:
            log.warning("Publishing event %s (%s) failed: %s", ev.id, ev.event_type, ex)
            await repo.mark_failed(ev, error=str(ex))
        else:
            await repo.mark_sent(ev)
    await session.commit()
    return len(batch)

async def run_outbox_relay(poll_interval_seconds: float | None = None):
    interval = poll_interval_seconds or settings.OUTBOX_POLL_SECONDS
    bus = registry.event_bus()
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            claimed = 0
            async with SessionLocal() as session:
                try:
                    claimed = await relay_once(session, bus)
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    await session.rollback()
            # drain a backlog without sleeping; idle otherwise
            await asyncio.sleep(0 if claimed else interval)
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
