import uuid
import logging
from dataclasses import dataclass
from string import Template
from carelink.core.logging import mask_destination
from carelink.platform.ports.messaging import SmsSenderPort, EmailSenderPort
from carelink.modules.consent.models import (
    METHOD_SMS, METHOD_EMAIL, METHOD_SMS_EMAIL,
)

log = logging.getLogger(__name__)

SMS_TEMPLATE = Template(
    "[CareLink] Your healthcare consent code is $code. A doctor has requested access "
    "to your medical records. The code expires in $minutes minutes. Do not share it."
)
EMAIL_SUBJECT = "Healthcare Consent Verification - Your Code"
EMAIL_TEMPLATE = Template(
    "Hello $name,\n\n"
    "A secondary doctor has requested access to your medical records.\n"
    "Your one-time consent code is: $code\n\n"
    "This code is valid for $minutes minutes and allows $attempts attempts.\n"
    "Only share it with your healthcare provider if you agree to grant access.\n"
)

@dataclass
class CodeDelivery:
    assignment_id: uuid.UUID
    code: str
    method: str
    minutes: int
    attempts: int
    phone: str | None = None
    email: str | None = None
    patient_name: str | None = None
    custom_message: str | None = None

    def __repr__(self) -> str:
        return f"CodeDelivery(assignment_id={self.assignment_id}, method={self.method})"

def render_sms(d: CodeDelivery) -> str:
    body = SMS_TEMPLATE.substitute(code=d.code, minutes=d.minutes)
    if d.custom_message:
        body = f"{body} {d.custom_message}"
    return body

def render_email(d: CodeDelivery) -> tuple[str, str]:
    body = EMAIL_TEMPLATE.substitute(
        name=d.patient_name or "there", code=d.code, minutes=d.minutes, attempts=d.attempts,
    )
    if d.custom_message:
        body = f"{body}\nMessage from your doctor: {d.custom_message}\n"
    return EMAIL_SUBJECT, body

class ConsentCodeNotifier:
    """Routes a freshly issued code to the patient's channel(s).

    Delivery is best-effort: every failure is logged and swallowed so that an
    unavailable SMS or email provider never undoes an issued code.
    in_person and phone_call codes are relayed by the clinician, nothing is sent.
    """

    def __init__(self, sms: SmsSenderPort, email: EmailSenderPort):
        self.sms = sms
        self.email = email

    async def deliver(self, d: CodeDelivery) -> list[str]:
        sent: list[str] = []
        if d.method in (METHOD_SMS, METHOD_SMS_EMAIL):
            if await self._send_sms(d):
                sent.append(METHOD_SMS)
        if d.method in (METHOD_EMAIL, METHOD_SMS_EMAIL):
            if await self._send_email(d):
                sent.append(METHOD_EMAIL)
        if not sent:
            log.info("No outbound delivery for assignment %s (method=%s)", d.assignment_id, d.method)
        return sent

    async def _send_sms(self, d: CodeDelivery) -> bool:
        if not d.phone:
            log.warning("Patient has no phone number; SMS skipped for assignment %s", d.assignment_id)
            return False
        try:
            await self.sms.send_sms(d.phone, render_sms(d))
            return True
        except Exception:
            log.exception("SMS delivery failed for assignment %s to %s", d.assignment_id, mask_destination(d.phone))
            return False

    async def _send_email(self, d: CodeDelivery) -> bool:
        if not d.email:
            log.warning("Patient has no email address; email skipped for assignment %s", d.assignment_id)
            return False
        subject, body = render_email(d)
        try:
            await self.email.send_email(d.email, subject, body)
            return True
        except Exception:
            log.exception("Email delivery failed for assignment %s to %s", d.assignment_id, mask_destination(d.email))
            return False
