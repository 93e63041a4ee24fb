import uuid
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from carelink.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_DOCTOR = "doctor"
ROLE_HSP = "hsp"
ROLE_PATIENT = "patient"

# Stable identity for the tokenless local principal, so audit rows group together.
LOCAL_DEV_USER_ID = uuid.UUID(int=0xDE7)

class Principal(BaseModel):
    user_id: uuid.UUID
    org_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    def has_scopes(self, *needed: str) -> bool:
        return "*" in self.scopes or set(needed).issubset(self.scopes)

def _as_list(value) -> list[str]:
    # OAuth-style "a b c" strings and JSON arrays are both accepted
    if not value:
        return []
    if isinstance(value, str):
        return value.split()
    return [str(v) for v in value]

def principal_from_claims(claims: dict) -> Principal:
    subject = claims.get("sub") or claims.get("user_id")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    try:
        return Principal(
            user_id=uuid.UUID(str(subject)),
            org_id=uuid.UUID(str(claims.get("org_id") or settings.DEFAULT_ORG_ID)),
            roles=_as_list(claims.get("roles")),
            scopes=_as_list(claims.get("scopes") or claims.get("scope")),
        )
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Malformed subject or org id")

def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    if creds is None:
        if settings.ENV == "local":
            return Principal(user_id=LOCAL_DEV_USER_ID, org_id=uuid.UUID(settings.DEFAULT_ORG_ID), roles=[ROLE_ADMIN], scopes=["*"])
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return principal_from_claims(_decode_token(creds.credentials))

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_scopes(*needed):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient scopes")
        return principal
    return dep
