import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.base import utcnow
from carelink.core.config import settings
from carelink.core.security import Principal, ROLE_PATIENT
from carelink.modules.assignments.errors import PatientNotFound, DuplicateActiveAssignment, AssignmentNotFound
from carelink.modules.assignments.models import SecondaryDoctorAssignment, CONSENT_PENDING, CONSENT_GRANTED
from carelink.modules.assignments.repository import AssignmentRepository
from carelink.modules.assignments.schemas import AssignmentCreate, AssignmentUpdate
from carelink.modules.patients.repository import PatientRepository
from carelink.modules.consent.models import ConsentOtp, consent_state
from carelink.modules.consent.repository import ConsentOtpRepository
from carelink.modules.audit.service import AuditService
from carelink.modules.events import outbox as events
from carelink.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

@dataclass
class SecondaryAssignmentView:
    assignment: SecondaryDoctorAssignment
    latest_otp: ConsentOtp | None
    status: str
    checked_at: datetime

async def is_party(patients: PatientRepository, a: SecondaryDoctorAssignment, actor: Principal) -> bool:
    """Admins, either doctor on the assignment, or the patient themself."""
    if actor.is_admin:
        return True
    if actor.user_id in (a.primary_doctor_id, a.secondary_doctor_id):
        return True
    if ROLE_PATIENT in actor.roles:
        patient = await patients.get(a.org_id, a.patient_id)
        return patient is not None and patient.user_id == actor.user_id
    return False

class AssignmentService:
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.assignments = AssignmentRepository(session)
        self.patients = PatientRepository(session)
        self.otps = ConsentOtpRepository(session)
        self.audit = AuditService(session)
        self._now = clock or utcnow
        self.outbox = OutboxService(session, self._now)

    async def create_assignment(self, org_id: uuid.UUID, actor_id: uuid.UUID, payload: AssignmentCreate) -> SecondaryDoctorAssignment:
        patient = await self.patients.get(org_id, payload.patient_id)
        if not patient:
            raise PatientNotFound()
        if await self.assignments.find_active(org_id, payload.patient_id, payload.secondary_doctor_id):
            raise DuplicateActiveAssignment()

        now = self._now()
        days = payload.expires_in_days or settings.ASSIGNMENT_DEFAULT_EXPIRY_DAYS
        needs_consent = payload.requires_consent
        obj = await self.assignments.create(
            org_id,
            patient_id=payload.patient_id,
            primary_doctor_id=actor_id,
            secondary_doctor_id=payload.secondary_doctor_id,
            assignment_reason=payload.assignment_reason,
            specialty_focus=payload.specialty_focus or None,
            notes=payload.notes,
            requires_consent=needs_consent,
            consent_status=CONSENT_PENDING if needs_consent else CONSENT_GRANTED,
            access_granted=not needs_consent,
            access_granted_at=None if needs_consent else now,
            expires_at=now + timedelta(days=days),
            is_active=True,
            created_by=actor_id,
        )
        await self.outbox.enqueue(
            org_id, events.ASSIGNMENT_CREATED, "assignment", obj.id,
            {"patient_id": str(obj.patient_id), "secondary_doctor_id": str(obj.secondary_doctor_id), "requires_consent": needs_consent}
        )
        await self.audit.log(org_id, actor_id, "assignment.create", "assignment", obj.id)
        await self.session.commit()
        logger.info("Assignment %s created (requires_consent=%s)", obj.id, needs_consent)
        return obj

    async def get_assignment(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor: Principal) -> SecondaryDoctorAssignment:
        obj = await self.assignments.get(org_id, assignment_id)
        if not obj or not await is_party(self.patients, obj, actor):
            raise AssignmentNotFound()
        return obj

    async def list_for_patient(self, org_id: uuid.UUID, patient_id: uuid.UUID, actor: Principal) -> Sequence[SecondaryDoctorAssignment]:
        rows = await self.assignments.list_for_patient(org_id, patient_id)
        return [a for a in rows if await is_party(self.patients, a, actor)]

    async def update_assignment(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor: Principal,
                                payload: AssignmentUpdate) -> SecondaryDoctorAssignment:
        """Primary doctor or admin only. ``is_active=False`` deactivates as ``deactivate`` does."""
        obj = await self._lock_for_owner(org_id, assignment_id, actor)
        now = self._now()
        changes = payload.model_dump(exclude_unset=True)
        is_active = changes.pop("is_active", None)
        days = changes.pop("expires_in_days", None)
        # the reason is required; an explicit null leaves it as is
        if "assignment_reason" in changes and changes["assignment_reason"] is None:
            del changes["assignment_reason"]

        updated = []
        if is_active and not obj.is_active:
            if await self.assignments.find_active(org_id, obj.patient_id, obj.secondary_doctor_id):
                await self.session.rollback()
                raise DuplicateActiveAssignment()
            obj.is_active = True
            obj.deactivated_at = None
            updated.append("is_active")
        for name, value in changes.items():
            setattr(obj, name, value)
            updated.append(name)
        if days is not None:
            obj.expires_at = now + timedelta(days=days)
            updated.append("expires_at")

        if updated:
            await self.outbox.enqueue(org_id, events.ASSIGNMENT_UPDATED, "assignment", obj.id, {"fields": updated})
            await self.audit.log(org_id, actor.user_id, "assignment.update", "assignment", obj.id)
        if is_active is False and obj.is_active:
            await self._deactivate_locked(org_id, obj, actor.user_id, now)
        await self.session.commit()
        logger.info("Assignment %s updated (fields=%s, active=%s)", obj.id, updated, obj.is_active)
        return obj

    async def deactivate(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor: Principal) -> SecondaryDoctorAssignment:
        obj = await self._lock_for_owner(org_id, assignment_id, actor)
        if obj.is_active:
            await self._deactivate_locked(org_id, obj, actor.user_id, self._now())
        await self.session.commit()
        return obj

    async def list_as_secondary(self, org_id: uuid.UUID, actor: Principal, *, active_only: bool = False,
                                limit: int = 50, offset: int = 0) -> list[SecondaryAssignmentView]:
        now = self._now()
        rows = await self.assignments.list_for_secondary(org_id, actor.user_id, active_only=active_only, limit=limit, offset=offset)
        views = []
        for a in rows:
            latest = await self.otps.latest(org_id, a.id)
            views.append(SecondaryAssignmentView(assignment=a, latest_otp=latest, status=consent_state(a, latest, now), checked_at=now))
        return views

    async def _lock_for_owner(self, org_id: uuid.UUID, assignment_id: uuid.UUID, actor: Principal) -> SecondaryDoctorAssignment:
        obj = await self.assignments.get(org_id, assignment_id, for_update=True)
        if not obj or not (actor.is_admin or obj.primary_doctor_id == actor.user_id):
            await self.session.rollback()
            raise AssignmentNotFound()
        return obj

    async def _deactivate_locked(self, org_id: uuid.UUID, obj: SecondaryDoctorAssignment, actor_id: uuid.UUID, now: datetime):
        obj.is_active = False
        obj.deactivated_at = now
        # an outstanding code must not grant access to an inactive assignment
        active = await self.otps.find_active(org_id, obj.id, now)
        if active:
            active.superseded_at = now
            active.expires_at = now
        await self.outbox.enqueue(org_id, events.ASSIGNMENT_DEACTIVATED, "assignment", obj.id, {"patient_id": str(obj.patient_id)})
        await self.audit.log(org_id, actor_id, "assignment.deactivate", "assignment", obj.id)
