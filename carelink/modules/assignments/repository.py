import uuid
from typing import Sequence
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.modules.assignments.models import SecondaryDoctorAssignment

class AssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> SecondaryDoctorAssignment:
        obj = SecondaryDoctorAssignment(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, assignment_id: uuid.UUID, *, for_update: bool = False) -> SecondaryDoctorAssignment | None:
        q = select(SecondaryDoctorAssignment).where(
            SecondaryDoctorAssignment.id == assignment_id,
            SecondaryDoctorAssignment.org_id == org_id,
            SecondaryDoctorAssignment.deleted_at.is_(None),
        )
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_for_doctor(self, org_id: uuid.UUID, assignment_id: uuid.UUID, doctor_id: uuid.UUID, *, for_update: bool = False) -> SecondaryDoctorAssignment | None:
        # Visible to the doctor who created it and to the assigned secondary doctor only.
        q = select(SecondaryDoctorAssignment).where(
            SecondaryDoctorAssignment.id == assignment_id,
            SecondaryDoctorAssignment.org_id == org_id,
            SecondaryDoctorAssignment.deleted_at.is_(None),
            or_(
                SecondaryDoctorAssignment.primary_doctor_id == doctor_id,
                SecondaryDoctorAssignment.secondary_doctor_id == doctor_id,
            ),
        )
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def find_active(self, org_id: uuid.UUID, patient_id: uuid.UUID, secondary_doctor_id: uuid.UUID) -> SecondaryDoctorAssignment | None:
        q = select(SecondaryDoctorAssignment).where(
            SecondaryDoctorAssignment.org_id == org_id,
            SecondaryDoctorAssignment.patient_id == patient_id,
            SecondaryDoctorAssignment.secondary_doctor_id == secondary_doctor_id,
            SecondaryDoctorAssignment.is_active.is_(True),
            SecondaryDoctorAssignment.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalars().first()

    async def list_for_patient(self, org_id: uuid.UUID, patient_id: uuid.UUID) -> Sequence[SecondaryDoctorAssignment]:
        q = select(SecondaryDoctorAssignment).where(
            SecondaryDoctorAssignment.org_id == org_id,
            SecondaryDoctorAssignment.patient_id == patient_id,
            SecondaryDoctorAssignment.deleted_at.is_(None),
        ).order_by(SecondaryDoctorAssignment.created_at.desc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_secondary(self, org_id: uuid.UUID, doctor_id: uuid.UUID, *, active_only: bool = False,
                                 limit: int = 50, offset: int = 0) -> Sequence[SecondaryDoctorAssignment]:
        q = select(SecondaryDoctorAssignment).where(
            SecondaryDoctorAssignment.org_id == org_id,
            SecondaryDoctorAssignment.secondary_doctor_id == doctor_id,
            SecondaryDoctorAssignment.deleted_at.is_(None),
        )
        if active_only:
            q = q.where(SecondaryDoctorAssignment.is_active.is_(True))
        q = q.order_by(SecondaryDoctorAssignment.created_at.desc(), SecondaryDoctorAssignment.id).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()
