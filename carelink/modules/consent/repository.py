import uuid
from datetime import datetime
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.modules.consent.models import ConsentOtp

class ConsentOtpRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> ConsentOtp:
        obj = ConsentOtp(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, otp_id: uuid.UUID, *, for_update: bool = False) -> ConsentOtp | None:
        q = select(ConsentOtp).where(
            ConsentOtp.id == otp_id,
            ConsentOtp.org_id == org_id,
            ConsentOtp.deleted_at.is_(None),
        )
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def find_active(self, org_id: uuid.UUID, assignment_id: uuid.UUID, now: datetime) -> ConsentOtp | None:
        q = select(ConsentOtp).where(
            ConsentOtp.org_id == org_id,
            ConsentOtp.assignment_id == assignment_id,
            ConsentOtp.deleted_at.is_(None),
            ConsentOtp.expires_at > now,
            ConsentOtp.is_verified.is_(False),
            ConsentOtp.is_blocked.is_(False),
            ConsentOtp.superseded_at.is_(None),
        ).order_by(ConsentOtp.issued_at.desc())
        res = await self.session.execute(q)
        return res.scalars().first()

    async def latest(self, org_id: uuid.UUID, assignment_id: uuid.UUID, *, for_update: bool = False) -> ConsentOtp | None:
        # A resend supersedes and re-issues at the same instant; the live code wins the tie.
        q = select(ConsentOtp).where(
            ConsentOtp.org_id == org_id,
            ConsentOtp.assignment_id == assignment_id,
            ConsentOtp.deleted_at.is_(None),
        ).order_by(
            ConsentOtp.issued_at.desc(),
            ConsentOtp.superseded_at.is_not(None),
            ConsentOtp.created_at.desc(),
        ).limit(1)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalars().first()

    async def count_issued_since(self, org_id: uuid.UUID, assignment_id: uuid.UUID, since: datetime) -> int:
        q = select(func.count(ConsentOtp.id)).where(
            ConsentOtp.org_id == org_id,
            ConsentOtp.assignment_id == assignment_id,
            ConsentOtp.deleted_at.is_(None),
            ConsentOtp.issued_at >= since,
        )
        res = await self.session.execute(q)
        return int(res.scalar_one())
