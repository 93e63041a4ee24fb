from fastapi import Request
from fastapi.responses import JSONResponse

class DomainError(Exception):
    """Business-rule failure reported to the caller with a stable reason code."""

    code: str = "domain_error"
    status_code: int = 400
    message: str = "Request could not be completed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}

async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
