from typing import Protocol, runtime_checkable

@runtime_checkable
class SmsSenderPort(Protocol):
    async def send_sms(self, to: str, body: str) -> None: ...

@runtime_checkable
class EmailSenderPort(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> None: ...
