"""Filesystem storage for generated document artifacts."""

from __future__ import annotations

import os
import uuid
from pathlib import Path

from opensri.utils.logging import get_logger

logger = get_logger(__name__)


class ArtifactStorage:
    """Files addressed by a path relative to ``root``.

    Renders go to a private temporary file in the destination folder and are
    hard-linked into place, so readers never see a half written PDF and a
    published file is never replaced.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def absolute_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def exists(self, relative_path: str | None) -> bool:
        return bool(relative_path) and self.absolute_path(relative_path).is_file()

    def temporary_path(self, relative_path: str) -> Path:
        final = self.absolute_path(relative_path)
        final.parent.mkdir(parents=True, exist_ok=True)
        return final.with_name(f".{final.name}.{uuid.uuid4().hex}.tmp")

    def promote(self, temporary: Path, relative_path: str) -> bool:
        """Publish ``temporary`` at ``relative_path`` unless a file is already there.

        The temporary file is removed either way.

        Returns:
            True if this call published the file
        """
        final = self.absolute_path(relative_path)
        try:
            os.link(temporary, final)
        except FileExistsError:
            logger.debug("artifact_already_published", path=relative_path)
            return False
        finally:
            temporary.unlink(missing_ok=True)
        return True

    def discard(self, temporary: Path) -> None:
        temporary.unlink(missing_ok=True)

    def read_bytes(self, relative_path: str) -> bytes:
        return self.absolute_path(relative_path).read_bytes()
