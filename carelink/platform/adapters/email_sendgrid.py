import logging
import httpx
from carelink.core.config import settings
from carelink.core.logging import mask_destination
from carelink.platform.ports.messaging import EmailSenderPort

log = logging.getLogger("notify.email")

class SendgridEmailSender(EmailSenderPort):
    def __init__(self, api_key: str | None = None, sender: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key or settings.SENDGRID_API_KEY
        if not self.api_key:
            raise RuntimeError("SENDGRID_API_KEY not configured")
        self.sender = sender or settings.EMAIL_FROM
        self.api_url = settings.SENDGRID_API_URL
        self.transport = transport

    async def send_email(self, to: str, subject: str, body: str) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        async with httpx.AsyncClient(transport=self.transport, timeout=10.0) as client:
            response = await client.post(self.api_url, headers=headers, json=payload)
            response.raise_for_status()
        log.info("Email accepted status=%s to=%s", response.status_code, mask_destination(to))
