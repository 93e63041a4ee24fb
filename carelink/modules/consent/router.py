import uuid
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from carelink.core.db import get_session
from carelink.core.security import get_principal, require_scopes, Principal
from carelink.modules.consent.schemas import (
    ConsentRequest, ConsentResend, ConsentVerify,
    ConsentOtpOut, IssuanceOut, VerificationOut, OtpStatusOut, ConsentStatusOut,
)
from carelink.modules.consent.service import ConsentService, IssuanceResult, VerificationResult

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> ConsentService:
    return ConsentService(session)

def _issuance_out(res: IssuanceResult) -> IssuanceOut:
    if res.created:
        message = "Consent code sent to patient. The patient must provide it to grant access."
    else:
        message = "Active consent code already exists. Use it or wait for it to expire."
    return IssuanceOut(
        assignment_id=res.otp.assignment_id,
        otp_already_exists=not res.created,
        otp=ConsentOtpOut.model_validate(res.otp),
        remaining_time_seconds=res.remaining_seconds,
        verification_attempts_remaining=res.attempts_remaining,
        delivered_via=res.delivered_via,
        previous_otp_invalidated=res.previous_otp_invalidated,
        resends_remaining=res.resends_remaining,
        message=message,
    )

def _verification_out(res: VerificationResult) -> VerificationOut:
    return VerificationOut(
        otp_id=res.otp.id,
        assignment_id=res.assignment.id,
        verified_at=res.otp.verified_at,
        consent_status=res.assignment.consent_status,
        access_granted=res.assignment.access_granted,
        access_granted_at=res.assignment.access_granted_at,
    )

@router.post("/assignments/{assignment_id}/consent/request", response_model=IssuanceOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("consent:request"))])
async def request_consent(
    assignment_id: uuid.UUID,
    payload: ConsentRequest,
    response: Response,
    principal: Principal = Depends(get_principal),
    service: ConsentService = Depends(svc),
):
    res = await service.request_consent(principal.org_id, assignment_id, principal.user_id, payload.method, payload.custom_message)
    if not res.created:
        response.status_code = status.HTTP_200_OK
    return _issuance_out(res)

@router.post("/assignments/{assignment_id}/consent/resend", response_model=IssuanceOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes("consent:request"))])
async def resend_consent(
    assignment_id: uuid.UUID,
    payload: ConsentResend,
    principal: Principal = Depends(get_principal),
    service: ConsentService = Depends(svc),
):
    res = await service.resend_consent(principal.org_id, assignment_id, principal.user_id, payload.method, payload.reason)
    return _issuance_out(res)

@router.post("/assignments/{assignment_id}/consent/verify", response_model=VerificationOut, dependencies=[Depends(require_scopes("consent:verify"))])
async def verify_assignment_consent(
    assignment_id: uuid.UUID,
    payload: ConsentVerify,
    principal: Principal = Depends(get_principal),
    service: ConsentService = Depends(svc),
):
    res = await service.verify_consent(principal.org_id, payload.code, assignment_id=assignment_id, actor=principal)
    return _verification_out(res)

@router.post("/consent/otps/{otp_id}/verify", response_model=VerificationOut, dependencies=[Depends(require_scopes("consent:verify"))])
async def verify_otp(
    otp_id: uuid.UUID,
    payload: ConsentVerify,
    principal: Principal = Depends(get_principal),
    service: ConsentService = Depends(svc),
):
    res = await service.verify_consent(principal.org_id, payload.code, otp_id=otp_id, actor=principal)
    return _verification_out(res)

@router.get("/assignments/{assignment_id}/consent/status", response_model=ConsentStatusOut, dependencies=[Depends(require_scopes("consent:read"))])
async def consent_status(
    assignment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: ConsentService = Depends(svc),
):
    res = await service.consent_status(principal.org_id, assignment_id, principal)
    a, otp = res.assignment, res.latest_otp
    latest = OtpStatusOut.from_otp(otp, res.checked_at) if otp is not None else None
    return ConsentStatusOut(
        assignment_id=a.id,
        status=res.status,
        requires_consent=a.requires_consent,
        consent_status=a.consent_status,
        access_granted=a.access_granted,
        access_granted_at=a.access_granted_at,
        is_active=a.is_active,
        latest_otp=latest,
        checked_at=res.checked_at,
    )
