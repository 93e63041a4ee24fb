import uuid
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.db import get_session
from carelink.core.security import get_principal, require_scopes, Principal
from carelink.modules.assignments.schemas import AssignmentCreate, AssignmentUpdate, AssignmentOut, SecondaryAssignmentOut
from carelink.modules.consent.schemas import OtpStatusOut
from carelink.modules.assignments.service import AssignmentService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AssignmentService:
    return AssignmentService(session)

@router.post("/assignments", response_model=AssignmentOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("assignments:write"))])
async def create_assignment(
    payload: AssignmentCreate,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.create_assignment(principal.org_id, principal.user_id, payload)

# Declared before the /{assignment_id} route so "secondary" is not parsed as an id.
@router.get("/assignments/secondary", response_model=list[SecondaryAssignmentOut], dependencies=[Depends(require_scopes("assignments:read"))])
async def list_secondary_assignments(
    active_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    views = await service.list_as_secondary(principal.org_id, principal, active_only=active_only, limit=limit, offset=offset)
    return [
        SecondaryAssignmentOut(
            assignment=AssignmentOut.model_validate(v.assignment),
            status=v.status,
            latest_otp=OtpStatusOut.from_otp(v.latest_otp, v.checked_at) if v.latest_otp is not None else None,
        )
        for v in views
    ]

@router.get("/assignments/{assignment_id}", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:read"))])
async def get_assignment(
    assignment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.get_assignment(principal.org_id, assignment_id, principal)

@router.get("/patients/{patient_id}/assignments", response_model=list[AssignmentOut], dependencies=[Depends(require_scopes("assignments:read"))])
async def list_patient_assignments(
    patient_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.list_for_patient(principal.org_id, patient_id, principal)

@router.patch("/assignments/{assignment_id}", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:write"))])
async def update_assignment(
    assignment_id: uuid.UUID,
    payload: AssignmentUpdate,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.update_assignment(principal.org_id, assignment_id, principal, payload)

@router.post("/assignments/{assignment_id}/deactivate", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:write"))])
async def deactivate_assignment(
    assignment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.deactivate(principal.org_id, assignment_id, principal)
