from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SentVerification:
    email_address: str
    token: str
    confirmation_url: str


@dataclass
class RecordingEmailSender:
    # Keep messages in memory so tests can read the token back out.
    sent: list[SentVerification] = field(default_factory=list)

    async def send_verification(self, email_address: str, token: str, confirmation_url: str) -> None:
        self.sent.append(SentVerification(email_address, token, confirmation_url))
