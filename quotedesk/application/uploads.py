from __future__ import annotations

import logging
import os
from typing import Iterable, List, Sequence

from quotedesk.domain.contracts import UploadedFile
from quotedesk.domain.models import QuoteFile
from quotedesk.errors import StorageError, ValidationError
from quotedesk.infrastructure.file_store import LocalFileStore
from quotedesk.infrastructure.repositories.base import utc_now_iso


logger = logging.getLogger(__name__)


def display_name_for(filename: str | None) -> str:
    name = os.path.basename(str(filename or "").replace("\\", "/")).strip()
    return name or "attachment"


def validate_uploads(
    files: Sequence[UploadedFile],
    *,
    max_files: int,
    max_file_bytes: int,
    allowed_extensions: Iterable[str],
) -> List[UploadedFile]:
    accepted = [item for item in files if item is not None and (item.filename or "").strip()]
    if len(accepted) > max_files:
        raise ValidationError(
            code="too_many_files",
            http_status=400,
            payload={"max_files": max_files},
        )
    extensions = {ext.lower() for ext in allowed_extensions}
    for item in accepted:
        extension = os.path.splitext(display_name_for(item.filename))[1].lower()
        if extension not in extensions:
            raise ValidationError(
                code="file_type_invalid",
                http_status=400,
                payload={"filename": display_name_for(item.filename), "allowed_extensions": sorted(extensions)},
            )
        if item.size > max_file_bytes:
            raise ValidationError(
                code="file_too_large",
                http_status=400,
                payload={"filename": display_name_for(item.filename), "max_file_bytes": max_file_bytes},
            )
    return accepted


def store_uploads(file_store: LocalFileStore, files: Sequence[UploadedFile]) -> List[QuoteFile]:
    """Write every upload to the store; a failure removes the blobs already written."""
    stored: List[QuoteFile] = []
    try:
        for item in files:
            blob = file_store.save(item.stream, display_name_for(item.filename))
            stored.append(
                QuoteFile(
                    stored_name=blob.stored_name,
                    display_name=blob.display_name,
                    size=blob.size,
                    uploaded_at=utc_now_iso(),
                )
            )
    except StorageError:
        discard_blobs(file_store, [item.stored_name for item in stored])
        raise
    return stored


def discard_blobs(file_store: LocalFileStore, stored_names: Iterable[str]) -> None:
    for stored_name in stored_names:
        try:
            file_store.delete(stored_name)
        except StorageError:
            logger.warning("blob_discard_failed", extra={"stored_name": stored_name})
