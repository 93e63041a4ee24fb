import uuid
from typing import Sequence
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.logging import request_id_ctx
from carelink.modules.audit.models import AuditEvent

class AuditService:
    """Adds audit rows to the caller's transaction; the caller commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(self,
                  org_id: uuid.UUID,
                  actor_user_id: uuid.UUID,
                  action: str,
                  resource_type: str,
                  resource_id: str | uuid.UUID,
                  outcome: str | None = None,
                  success: bool = True) -> AuditEvent:
        ev = AuditEvent(
            org_id=org_id,
            actor_user_id=actor_user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            outcome=outcome,
            success=success,
            request_id=request_id_ctx.get(),
        )
        self.session.add(ev)
        await self.session.flush()
        return ev

    async def list(self,
                   org_id: uuid.UUID,
                   resource_type: str | None = None,
                   resource_id: str | uuid.UUID | None = None,
                   action: str | None = None,
                   limit: int = 50) -> Sequence[AuditEvent]:
        """Newest first, scoped to one org; optional filters narrow to one resource or action."""
        q = select(AuditEvent).where(
            AuditEvent.org_id == org_id,
            AuditEvent.deleted_at.is_(None),
        )
        if resource_type:
            q = q.where(AuditEvent.resource_type == resource_type)
        if resource_id:
            q = q.where(AuditEvent.resource_id == str(resource_id))
        if action:
            q = q.where(AuditEvent.action == action)
        res = await self.session.execute(q.order_by(desc(AuditEvent.created_at)).limit(limit))
        return res.scalars().all()
