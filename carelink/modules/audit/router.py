from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.db import get_session
from carelink.core.security import get_principal, Principal, require_scopes
from carelink.modules.audit.schemas import AuditEventOut
from carelink.modules.audit.service import AuditService

router = APIRouter()

@router.get("/audit", response_model=list[AuditEventOut], dependencies=[Depends(require_scopes("audit:read"))])
async def list_audit(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
    resource_type: str | None = Query(None, max_length=48),
    resource_id: str | None = Query(None, max_length=64),
    action: str | None = Query(None, max_length=48),
    limit: int = Query(50, ge=1, le=200),
):
    return await AuditService(session).list(
        principal.org_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        limit=limit,
    )
