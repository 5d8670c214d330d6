"""Upload adapter turning raw blobs into stored file descriptors"""

import logging
import re
import time
import unicodedata

from projectflow.schemas.common import utc_now
from projectflow.schemas.file import FileDescriptor, FileType, UploadBlob

logger = logging.getLogger(__name__)

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_UNSAFE_CHARACTERS = re.compile(r"[^\w\s.-]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(filename: str) -> str:
    """
    Build a storage-safe path component from a display name.

    Accents are decomposed and dropped, anything outside ASCII word
    characters, whitespace, dots and dashes is removed, and whitespace runs
    become single dashes.

    >>> sanitize_filename("Relatório Final (2024).pdf")
    'Relatorio-Final-2024.pdf'
    """
    decomposed = unicodedata.normalize("NFD", filename)
    without_accents = _COMBINING_MARKS.sub("", decomposed)
    cleaned = _UNSAFE_CHARACTERS.sub("", without_accents).strip()
    return _WHITESPACE.sub("-", cleaned)


def classify_file_type(content_type: str) -> FileType:
    """image/* is a photo, a PDF is a contract, anything else a report"""
    if content_type.startswith("image/"):
        return FileType.PHOTO
    if content_type == "application/pdf":
        return FileType.CONTRACT
    return FileType.REPORT


def timestamped_path(prefix: str, filename: str) -> str:
    """`{prefix}/{epoch millis}-{sanitized name}`"""
    return f"{prefix}/{int(time.time() * 1000)}-{sanitize_filename(filename)}"


async def upload_file(storage, blob: UploadBlob, path: str, bucket: str) -> FileDescriptor:
    """
    Upload a blob (overwriting any object at the same path) and describe it.

    Args:
        storage: Blob storage exposing upload() and get_public_url()
        blob: File to store
        path: Target object key
        bucket: Target bucket

    Returns:
        FileDescriptor whose id is the stored path

    Storage errors propagate unchanged.
    """
    stored_path = await storage.upload(
        bucket, path, blob.data, content_type=blob.content_type, overwrite=True
    )
    url = storage.get_public_url(bucket, stored_path)
    logger.debug(f"Stored {blob.name} ({blob.size} bytes) at {bucket}/{stored_path}")

    return FileDescriptor(
        id=stored_path,
        name=blob.name,
        url=url,
        type=classify_file_type(blob.content_type),
        uploaded_at=utc_now(),
    )
