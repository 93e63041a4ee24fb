import asyncio
import os
import sys
import uuid
from jose import jwt

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from carelink.core.config import settings
from carelink.core.db import SessionLocal, init_models
from carelink.modules.patients.repository import PatientRepository
from carelink.modules.assignments.schemas import AssignmentCreate
from carelink.modules.assignments.service import AssignmentService

DOCTOR_SCOPES = ["assignments:read", "assignments:write", "consent:request", "consent:verify", "consent:read"]
PATIENT_SCOPES = ["assignments:read", "consent:verify", "consent:read"]

def dev_token(user_id: uuid.UUID, org_id: uuid.UUID, roles: list[str], scopes: list[str]) -> str:
    claims = {"sub": str(user_id), "org_id": str(org_id), "roles": roles, "scopes": scopes}
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

async def main():
    """
    Seeds one patient and one pending secondary-doctor assignment, then prints
    bearer tokens for the three parties so the consent flow can be tried by hand.
    """
    print("Seeding demo assignment...")
    await init_models()
    org_id = uuid.UUID(settings.DEFAULT_ORG_ID)
    primary_id, secondary_id, patient_user_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    async with SessionLocal() as db:
        patient = await PatientRepository(db).create(
            org_id,
            user_id=patient_user_id,
            legal_name=os.environ.get("DEMO_PATIENT_NAME", "Demo Patient"),
            primary_phone=os.environ.get("DEMO_PATIENT_PHONE"),
            primary_email=os.environ.get("DEMO_PATIENT_EMAIL", "patient@example.com"),
            primary_doctor_id=primary_id,
        )
        await db.commit()
        print(f"  - Patient {patient.id}")

        assignment = await AssignmentService(db).create_assignment(org_id, primary_id, AssignmentCreate(
            patient_id=patient.id,
            secondary_doctor_id=secondary_id,
            assignment_reason="Second opinion on cardiology follow-up",
            requires_consent=True,
        ))
        print(f"  - Assignment {assignment.id} (consent_status={assignment.consent_status})")

    print("\nTokens:")
    print(f"  primary doctor:   {dev_token(primary_id, org_id, ['doctor'], DOCTOR_SCOPES)}")
    print(f"  secondary doctor: {dev_token(secondary_id, org_id, ['doctor'], DOCTOR_SCOPES)}")
    print(f"  patient:          {dev_token(patient_user_id, org_id, ['patient'], PATIENT_SCOPES)}")

if __name__ == "__main__":
    asyncio.run(main())
