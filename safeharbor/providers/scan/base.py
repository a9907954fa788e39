from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Vulnerability:
    vulnerability_id: str
    priority: str = ""
    link: str = ""
    description: str = ""


class ScanProvider(Protocol):
    name: str

    async def scan(self, image_ref: str, params: dict[str, str]) -> list[Vulnerability]:
        ...
