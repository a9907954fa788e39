from __future__ import annotations

from safeharbor.core.errors import CollaboratorError
from safeharbor.providers.scan.base import Vulnerability


class FakeScanProvider:
    def __init__(self, name: str = "clair", vulnerabilities: list[Vulnerability] | None = None) -> None:
        # Fixed findings keep scan-event tests deterministic without a scanner.
        self.name = name
        self._vulnerabilities = list(vulnerabilities or [])
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.fail_with: str | None = None

    async def scan(self, image_ref: str, params: dict[str, str]) -> list[Vulnerability]:
        self.calls.append((image_ref, dict(params)))
        if self.fail_with:
            raise CollaboratorError(self.fail_with)
        return list(self._vulnerabilities)
