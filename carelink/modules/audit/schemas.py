import uuid
from datetime import datetime
from pydantic import BaseModel

class AuditEventOut(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    actor_user_id: uuid.UUID
    action: str
    resource_type: str
    resource_id: str
    outcome: str | None = None
    success: bool
    request_id: str | None = None
    occurred_at: datetime

    class Config:
        from_attributes = True
