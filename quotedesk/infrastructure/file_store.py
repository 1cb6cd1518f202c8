from __future__ import annotations

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from werkzeug.utils import secure_filename

from quotedesk.errors import StorageError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    stored_name: str
    display_name: str
    size: int


class LocalFileStore:
    """Attachment blobs on the local filesystem, one flat directory, random names."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(details=f"upload dir unavailable: {exc}") from exc

    def path_for(self, stored_name: str) -> Path:
        safe_name = secure_filename(stored_name)
        if not safe_name or safe_name != stored_name:
            raise StorageError(code="file_not_found", message_key="file_not_found", http_status=404)
        return self.root / safe_name

    def save(self, stream: IO[bytes], display_name: str) -> StoredBlob:
        self._ensure_root()
        extension = os.path.splitext(display_name or "")[1].lower()
        if not extension[1:].isalnum():
            extension = ""
        stored_name = f"{uuid.uuid4().hex}{extension}"
        target = self.root / stored_name
        try:
            with open(target, "wb") as handle:
                shutil.copyfileobj(stream, handle)
            size = target.stat().st_size
        except OSError as exc:
            self._discard(target)
            raise StorageError(details=f"write failed for {stored_name}: {exc}") from exc
        logger.info("file_stored", extra={"stored_name": stored_name, "size": size})
        return StoredBlob(stored_name=stored_name, display_name=display_name, size=size)

    def open(self, stored_name: str) -> IO[bytes]:
        path = self.path_for(stored_name)
        try:
            return open(path, "rb")
        except FileNotFoundError as exc:
            raise StorageError(
                code="file_not_found",
                message_key="file_not_found",
                http_status=404,
                details=str(exc),
            ) from exc
        except OSError as exc:
            raise StorageError(details=f"read failed for {stored_name}: {exc}") from exc

    def exists(self, stored_name: str) -> bool:
        return self.path_for(stored_name).is_file()

    def delete(self, stored_name: str) -> None:
        path = self.path_for(stored_name)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(details=f"delete failed for {stored_name}: {exc}") from exc
        logger.info("file_deleted", extra={"stored_name": stored_name})

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("file_discard_failed", extra={"path": str(path)})
