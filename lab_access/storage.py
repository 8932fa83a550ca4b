"""Local folder file storage."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .errors import ExternalServiceError
from .ports import StoredFile

__all__ = ["FolderFileStore"]

logger = logging.getLogger(__name__)


class FolderFileStore:
    """Stores files in one directory, keeping each description in a JSON sidecar.

    The sidecar for ``name`` is ``name + ".json"``.
    """

    def __init__(self, folder: str):
        self.folder = Path(folder)

    def create_file(self, name: str, content: bytes, mime_type: str, description: str = "") -> StoredFile:
        path = self.folder / name
        sidecar = self.folder / f"{name}.json"
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
            sidecar.write_text(
                json.dumps({"name": name, "mime_type": mime_type, "description": description}),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error(f"Unable to store '{path}': {exc}")
            raise ExternalServiceError("storage", f"Unable to store '{name}': {exc}") from exc
        logger.debug(f"Stored {len(content)} bytes at {path}")
        return StoredFile(
            name=name,
            content=content,
            mime_type=mime_type,
            description=description,
            location=str(path),
        )
