import asyncio
import logging
from twilio.rest import Client
from carelink.core.config import settings
from carelink.core.logging import mask_destination
from carelink.platform.ports.messaging import SmsSenderPort

log = logging.getLogger("notify.sms")

class TwilioSmsSender(SmsSenderPort):
    def __init__(self, client: Client | None = None, from_number: str | None = None):
        if client is None:
            if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN):
                raise RuntimeError("TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN not configured")
            client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        self.client = client
        self.from_number = from_number or settings.TWILIO_FROM_NUMBER
        if not self.from_number:
            raise RuntimeError("TWILIO_FROM_NUMBER not configured")

    async def send_sms(self, to: str, body: str) -> None:
        # twilio's REST client is blocking
        message = await asyncio.to_thread(
            self.client.messages.create, body=body, from_=self.from_number, to=to
        )
        log.info("SMS queued sid=%s to=%s", getattr(message, "sid", "-"), mask_destination(to))
