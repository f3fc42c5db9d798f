"""Filesystem storage for temporary inputs and durable artifacts.

Responsibilities:
- Write, list, and delete flat files under one root directory.
- Reject names that would escape the root (path separators, dot segments).
"""

from __future__ import annotations

from pathlib import Path

from ..errors import InvalidInputError, NotFoundError


class ArtifactStore:
    """Flat, filesystem-backed file store rooted at one directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def ensure_root(self) -> Path:
        """Create the root directory when missing and return it."""

        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, name: str) -> Path:
        """Return the path for a plain filename inside the store."""

        if not name or name in {".", ".."} or "/" in name or "\\" in name:
            raise InvalidInputError(
                f"Invalid artifact name `{name}`.",
                hint="Use the generated filename returned by the conversion.",
            )
        return self.root / name

    def save_bytes(self, name: str, data: bytes) -> Path:
        """Save binary content and return the final path."""

        path = self.path_for(name)
        self.ensure_root()
        path.write_bytes(data)
        return path

    def list_names(self, suffix: str | None = None) -> list[str]:
        """List stored filenames, optionally filtered by suffix, in sorted order."""

        if not self.root.is_dir():
            return []
        return sorted(
            path.name
            for path in self.root.iterdir()
            if path.is_file() and (suffix is None or path.name.endswith(suffix))
        )

    def delete(self, name: str) -> None:
        """Delete a stored file.

        Raises:
            NotFoundError: If the file does not exist.
        """

        path = self.path_for(name)
        if not path.is_file():
            raise NotFoundError(f"Artifact not found: {name}", stage="delete")
        path.unlink()

    def discard(self, name: str) -> bool:
        """Delete a stored file if present and return whether it existed."""

        path = self.path_for(name)
        if not path.exists():
            return False
        path.unlink()
        return True
