"""File intake for client uploads. The engine only ever keeps references."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, Field

from .errors import FileIntakeFailed

logger = logging.getLogger(__name__)


class StoredFile(BaseModel):
    """Reference to uploaded bytes held by a file intake."""

    ref: str
    filename: str
    content_type: Optional[str] = None
    size: int = 0
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Upload(BaseModel):
    """Raw file as received from the client."""

    filename: str
    content: bytes
    content_type: Optional[str] = None


class FileIntake(Protocol):
    """Protocol for upload storage backends."""

    async def store(self, upload: Upload) -> StoredFile:
        """Persist ``upload`` and return its reference.

        Raises:
            FileIntakeFailed: When the bytes could not be stored.
        """


def _safe_name(filename: str) -> str:
    name = Path(filename).name or "upload"
    return name.replace(" ", "_")


class InMemoryFileIntake(FileIntake):
    """Keep uploads in memory. Data is lost when the process exits."""

    def __init__(self) -> None:
        self._files: Dict[str, bytes] = {}

    async def store(self, upload: Upload) -> StoredFile:
        ref = f"memory://{uuid.uuid4()}/{_safe_name(upload.filename)}"
        self._files[ref] = upload.content
        return StoredFile(
            ref=ref,
            filename=upload.filename,
            content_type=upload.content_type,
            size=len(upload.content),
        )

    def read(self, ref: str) -> bytes:
        return self._files[ref]


class LocalFileIntake(FileIntake):
    """Write uploads below a local directory as ``<uuid>-<filename>``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def store(self, upload: Upload) -> StoredFile:
        path = self.directory / f"{uuid.uuid4()}-{_safe_name(upload.filename)}"
        try:
            await asyncio.to_thread(self._write, path, upload.content)
        except OSError as exc:
            logger.error(f"Failed to store upload {upload.filename}: {exc}")
            raise FileIntakeFailed(f"Could not store {upload.filename}") from exc
        return StoredFile(
            ref=str(path),
            filename=upload.filename,
            content_type=upload.content_type,
            size=len(upload.content),
        )
