"""
Upload Byte Storage

Durable byte handles for uploaded and split spreadsheets. A handle is the
relative key under the storage root, so it can be stored on a job row and
resolved later by any worker sharing the same root.
"""
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from config.settings import settings
from src.codeleads.exceptions import NotFoundError, ValidationError
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe to use inside a storage key.

    Quotes and brackets are dropped, whitespace becomes underscores, path
    separators and other reserved characters become hyphens, and dots are
    only kept for the extension.

    Args:
        filename: Raw name, e.g. ``"St. Louis (MO).csv"``

    Returns:
        Sanitized name, e.g. ``"St_Louis_MO.csv"``
    """
    last_dot = filename.rfind('.')
    name = filename[:last_dot] if last_dot > 0 else filename
    ext = filename[last_dot:] if last_dot > 0 else ''

    name = re.sub(r'["\']', '', name)
    name = re.sub(r'[()\[\]{}]', '', name)
    name = re.sub(r'\s+', '_', name)
    name = re.sub(r'[<>:|?*/\\]', '-', name)
    name = name.replace('.', '_')
    name = re.sub(r'_{2,}', '_', name)
    name = re.sub(r'^[._-]+|[._-]+$', '', name)

    ext = re.sub(r'[^A-Za-z0-9.]', '', ext)
    return (name or 'upload') + ext


class ByteStore(Protocol):
    """Storage collaborator used by ingestion."""

    def put(self, owner_id: str, filename: str, data: bytes, prefix: Optional[str] = None) -> str:
        ...

    def get(self, handle: str) -> bytes:
        ...


class LocalByteStore:
    """
    Filesystem-backed ByteStore.

    Keys look like ``{owner}/{timestamp}-{sanitized name}``; split groups
    go under ``{owner}/splits/``.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.storage_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, handle: str) -> Path:
        path = (self.root / handle).resolve()
        if self.root not in path.parents:
            raise ValidationError(f"Invalid storage handle: {handle!r}")
        return path

    def put(self, owner_id: str, filename: str, data: bytes, prefix: Optional[str] = None) -> str:
        """
        Store bytes and return their durable handle.

        Args:
            owner_id: Owner the file belongs to
            filename: Original filename (sanitized before use)
            data: File content
            prefix: Optional sub-folder under the owner (e.g. ``splits``)

        Returns:
            Handle relative to the storage root
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        parts = [sanitize_filename(owner_id)]
        if prefix:
            parts.append(sanitize_filename(prefix))
        parts.append(f"{stamp}-{sanitize_filename(filename)}")
        handle = "/".join(parts)

        path = self._path_for(handle)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        logger.info("upload_stored", handle=handle, size_bytes=len(data))
        return handle

    def get(self, handle: str) -> bytes:
        path = self._path_for(handle)
        if not path.is_file():
            raise NotFoundError(f"No stored file for handle {handle!r}", {"handle": handle})
        return path.read_bytes()

    def exists(self, handle: str) -> bool:
        return self._path_for(handle).is_file()
