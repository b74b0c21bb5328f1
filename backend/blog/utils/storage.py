"""Local filesystem storage for uploaded files.

Keys look like `public/images/2025/01/31/<uuid>.png`, the extension taken
from the MIME allow-list and never from the client filename. The key is
appended to `FILE_BASE_URL` to build the public URL, and `main.py`
serves `UPLOAD_DIR` read-only under that prefix.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from ..models import FileType
from .file_types import extension_for

logger = logging.getLogger("blog.storage")


class LocalFileStorage:
    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def build_key(self, file_type: FileType, content_type: str, now: datetime | None = None) -> str:
        """New dated key whose extension follows the accepted MIME type."""
        now = now or datetime.now(timezone.utc)
        ext = extension_for(content_type)
        return f"{file_type.base_path}/{now:%Y/%m/%d}/{uuid.uuid4().hex}{ext}"

    def _resolve(self, key: str) -> Path:
        target = (self.root / key).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"storage key escapes the upload root: {key}")
        return target

    def save(self, key: str, payload: bytes) -> Path:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        logger.info("stored file key=%s bytes=%d", key, len(payload))
        return target

    def delete(self, key: str) -> bool:
        """Remove the stored object; returns False when it was already gone."""
        target = self._resolve(key)
        if not target.exists():
            logger.warning("stored file already missing key=%s", key)
            return False
        target.unlink()
        logger.info("deleted stored file key=%s", key)
        return True

    def exists(self, key: str) -> bool:
        return self._resolve(key).exists()

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"
