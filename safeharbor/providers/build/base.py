from __future__ import annotations

from typing import Protocol


class BuildTool(Protocol):
    # Failures surface as CollaboratorError; the tool's command line is its own concern.
    async def build(self, dockerfile_path: str, tag: str) -> str:
        ...

    async def save(self, image_ref: str) -> str:
        ...
