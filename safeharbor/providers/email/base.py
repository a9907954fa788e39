from __future__ import annotations

from typing import Protocol


class EmailSender(Protocol):
    async def send_verification(self, email_address: str, token: str, confirmation_url: str) -> None:
        ...
