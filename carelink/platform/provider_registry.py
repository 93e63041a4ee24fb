import logging
from carelink.core.config import settings
from carelink.platform.ports.event_bus import EventBusPort
from carelink.platform.ports.messaging import SmsSenderPort, EmailSenderPort
from carelink.platform.adapters.bus_noop import NoopEventBus
from carelink.platform.adapters.messaging_noop import NoopSmsSender, NoopEmailSender

log = logging.getLogger("platform.registry")

class ProviderRegistry:
    """Builds each adapter once, on first use, from the *_PROVIDER settings.

    Vendor SDKs are imported only when their provider is selected, so a dev box
    running the noop adapters needs no Twilio/SendGrid/Redis configuration.
    """

    _event_bus: EventBusPort | None = None
    _sms: SmsSenderPort | None = None
    _email: EmailSenderPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            if settings.EVENT_BUS_PROVIDER.lower() == "redis":
                from carelink.platform.adapters.bus_redis import RedisStreamsEventBus
                cls._event_bus = RedisStreamsEventBus.from_settings()
            else:
                cls._event_bus = NoopEventBus()
            log.info("Event bus: %s", cls._event_bus.__class__.__name__)
        return cls._event_bus

    @classmethod
    def sms_sender(cls) -> SmsSenderPort:
        if cls._sms is None:
            if settings.SMS_PROVIDER.lower() == "twilio":
                from carelink.platform.adapters.sms_twilio import TwilioSmsSender
                cls._sms = TwilioSmsSender()
            else:
                cls._sms = NoopSmsSender()
        return cls._sms

    @classmethod
    def email_sender(cls) -> EmailSenderPort:
        if cls._email is None:
            if settings.EMAIL_PROVIDER.lower() == "sendgrid":
                from carelink.platform.adapters.email_sendgrid import SendgridEmailSender
                cls._email = SendgridEmailSender()
            else:
                cls._email = NoopEmailSender()
        return cls._email

    @classmethod
    async def close(cls):
        bus = cls._event_bus
        cls._event_bus = None
        if bus is not None and hasattr(bus, "close"):
            await bus.close()

registry = ProviderRegistry()
