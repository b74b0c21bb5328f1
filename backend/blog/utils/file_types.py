"""Classify uploads by MIME type."""

from typing import Optional

from ..errors import BadRequestError
from ..models import FileType

IMAGE_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "image/bmp",
})

VIDEO_MIME_TYPES = frozenset({
    "video/mp4",
    "video/mpeg",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-flv",
    "video/webm",
    "video/x-matroska",
})

DOCUMENT_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "text/csv",
})

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "image/bmp": ".bmp",
    "video/mp4": ".mp4",
    "video/mpeg": ".mpeg",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-flv": ".flv",
    "video/webm": ".webm",
    "video/x-matroska": ".mkv",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "text/plain": ".txt",
    "text/csv": ".csv",
}


def normalize_content_type(content_type: Optional[str]) -> str:
    """Lowercase the MIME type and drop parameters such as `; charset=utf-8`."""
    if not content_type:
        return ""
    return content_type.lower().split(";")[0].strip()


def resolve_file_type(content_type: Optional[str]) -> FileType:
    """Map a MIME type to its storage category or raise BadRequestError."""
    normalized = normalize_content_type(content_type)
    if not normalized:
        raise BadRequestError("cannot determine the file type")
    if normalized in IMAGE_MIME_TYPES:
        return FileType.IMAGE
    if normalized in VIDEO_MIME_TYPES:
        return FileType.VIDEO
    if normalized in DOCUMENT_MIME_TYPES:
        return FileType.DOCUMENT
    raise BadRequestError(f"unsupported file type: {normalized} (allowed: images, videos, documents)")


def extension_for(content_type: Optional[str]) -> str:
    """Storage file extension for an allowed MIME type.

    The extension never comes from the client filename; `StaticFiles`
    picks the served Content-Type from it.
    """
    return _EXTENSIONS.get(normalize_content_type(content_type), "")
