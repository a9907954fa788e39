from __future__ import annotations

from pathlib import Path

from safeharbor.core.errors import CollaboratorError


class FakeBuildTool:
    def __init__(self, output_dir: str | Path, *, output: str = "Step 1/1 : FROM scratch\nSuccessfully built") -> None:
        # Write a small image file so signature computation has real bytes to hash.
        self._output_dir = Path(output_dir)
        self._output = output
        self.built: list[tuple[str, str]] = []
        self.fail_with: str | None = None

    async def build(self, dockerfile_path: str, tag: str) -> str:
        if self.fail_with:
            raise CollaboratorError(self.fail_with)
        self.built.append((dockerfile_path, tag))
        return self._output

    async def save(self, image_ref: str) -> str:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._output_dir / f"{image_ref.replace('/', '_').replace(':', '_')}.tar"
        path.write_bytes(f"image:{image_ref}".encode("utf-8"))
        return str(path)
