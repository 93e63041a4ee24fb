import logging
from carelink.core.logging import mask_destination
from carelink.platform.ports.messaging import SmsSenderPort, EmailSenderPort

log = logging.getLogger("notify.noop")

# Message bodies carry one-time codes, so only the masked destination is logged.

class NoopSmsSender(SmsSenderPort):
    async def send_sms(self, to: str, body: str) -> None:
        log.info("[NOOP SMS] to=%s chars=%d", mask_destination(to), len(body))

class NoopEmailSender(EmailSenderPort):
    async def send_email(self, to: str, subject: str, body: str) -> None:
        log.info("[NOOP EMAIL] to=%s subject=%r", mask_destination(to), subject)
