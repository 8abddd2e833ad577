"""Blob storage for pitch decks and term sheets.

Uploads are validated locally (type and size) before the store is touched.
``LocalBlobStore`` writes under a directory and reports progress from the
bytes actually written.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path, PurePosixPath
from typing import Callable, Protocol
from urllib.parse import quote

from dealdesk.store import StoreError

log = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
DOCUMENT_CONTENT_TYPES = frozenset({
    "application/pdf",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
})
DOCUMENT_EXTENSIONS = (".pdf", ".pptx", ".ppt")
CHUNK_SIZE = 256 * 1024

ProgressCallback = Callable[[int], None]


class DocumentRejected(ValueError):
    """Client-side validation failure; raised before any network call."""

    def __init__(self, title: str, message: str):
        super().__init__(message)
        self.title = title


def validate_document(filename: str, content_type: str | None, size: int) -> None:
    """Accept PDF/PowerPoint (by content type or extension) up to 10 MB."""
    type_ok = (content_type or "") in DOCUMENT_CONTENT_TYPES
    ext_ok = filename.lower().endswith(DOCUMENT_EXTENSIONS)
    if not type_ok and not ext_ok:
        raise DocumentRejected("Invalid file type", "Please upload a PDF or PowerPoint file.")
    if size > MAX_DOCUMENT_BYTES:
        raise DocumentRejected("File too large", "Maximum file size is 10MB.")


class BlobStore(Protocol):
    async def store(self, path: str, data: bytes, progress: ProgressCallback | None = None) -> str:
        """Persist *data* at *path* and return its public URL."""
        ...


class LocalBlobStore:
    def __init__(self, root: str | Path | None = None, base_url: str | None = None):
        default_root = Path(__file__).parent / "data" / "blobs"
        self.root = Path(root or os.environ.get("DEALDESK_BLOB_DIR") or default_root)
        self.base_url = (base_url or os.environ.get("DEALDESK_BLOB_BASE_URL") or "/blobs").rstrip("/")

    def _target(self, path: str) -> Path:
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise StoreError(f"Invalid blob path: {path}")
        return self.root.joinpath(*rel.parts)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(path)}"

    async def store(self, path: str, data: bytes, progress: ProgressCallback | None = None) -> str:
        target = self._target(path)
        written = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as fh:
                for start in range(0, len(data), CHUNK_SIZE):
                    chunk = data[start:start + CHUNK_SIZE]
                    fh.write(chunk)
                    written += len(chunk)
                    if progress is not None:
                        progress(written)
                    await asyncio.sleep(0)
        except OSError as exc:
            log.warning("Blob write failed for %s: %s", path, exc)
            raise StoreError(str(exc)) from exc
        if progress is not None and not data:
            progress(0)
        log.info("Stored blob %s (%d bytes)", path, written)
        return self.public_url(path)
