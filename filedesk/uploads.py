"""
Upload validation for FileDesk.
Rejects a submission before anything touches storage.
"""
import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional

import magic

from filedesk.utils import get_max_upload_bytes, get_min_upload_bytes

logger = logging.getLogger("filedesk.uploads")

MAX_FILENAME_LENGTH = 255
FILENAME_PATTERN = re.compile(r'^[A-Za-z0-9._-]+$')

ALLOWED_CONTENT_TYPES = frozenset({
    'text/plain',
    'application/pdf',
    'image/jpeg',
    'image/png',
})


class UploadStatus(enum.Enum):
    """Transport-level outcome of receiving the file part."""
    OK = "ok"
    NO_FILE = "no_file"
    TOO_LARGE = "too_large"
    PARTIAL = "partial"
    NO_TMP_DIR = "no_tmp_dir"
    CANT_WRITE = "cant_write"
    EXTENSION = "extension"


_STATUS_MESSAGES = {
    UploadStatus.NO_FILE: "No file was uploaded",
    UploadStatus.TOO_LARGE: "File too large (maximum 5MB allowed)",
    UploadStatus.PARTIAL: "File was only partially uploaded",
    UploadStatus.NO_TMP_DIR: "Missing temporary folder",
    UploadStatus.CANT_WRITE: "Failed to write file to disk",
    UploadStatus.EXTENSION: "File upload stopped by extension",
}


@dataclass
class UploadPayload:
    """What the transport handed over for the file part of a request."""
    data: Optional[bytes]
    status: UploadStatus = UploadStatus.OK
    client_filename: Optional[str] = None
    declared_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0


@dataclass(frozen=True)
class RejectionReason:
    check: str
    message: str

    def __str__(self) -> str:
        return self.message


def sniff_content_type(data: bytes) -> str:
    """Content type from the bytes themselves, ignoring what the client declared."""
    try:
        return magic.from_buffer(data, mime=True)
    except magic.MagicException as exc:
        logger.warning("content_type_undetected size=%d error=%s", len(data), exc)
        return 'application/octet-stream'


class UploadValidator:
    """Runs the upload checks in order and stops at the first failure."""

    def __init__(self, min_size: Optional[int] = None, max_size: Optional[int] = None,
                 allowed_types=ALLOWED_CONTENT_TYPES):
        self.min_size = get_min_upload_bytes() if min_size is None else min_size
        self.max_size = get_max_upload_bytes() if max_size is None else max_size
        self.allowed_types = frozenset(allowed_types)

    def validate(self, upload: Optional[UploadPayload], logical_filename: Optional[str]) -> Optional[RejectionReason]:
        if upload is None or upload.data is None or upload.status is UploadStatus.NO_FILE:
            return RejectionReason("presence", _STATUS_MESSAGES[UploadStatus.NO_FILE])

        if upload.status is not UploadStatus.OK:
            return RejectionReason("transport", _STATUS_MESSAGES.get(upload.status, "Unknown upload error"))

        if upload.size > self.max_size:
            return RejectionReason("size", "File too large (maximum 5MB allowed)")
        if upload.size < self.min_size:
            return RejectionReason("size", "File too small (minimum 1KB required)")

        reason = self.check_filename(logical_filename)
        if reason:
            return reason

        content_type = sniff_content_type(upload.data)
        if content_type not in self.allowed_types:
            return RejectionReason("content_type", "File type not allowed")

        return None

    def check_filename(self, logical_filename: Optional[str]) -> Optional[RejectionReason]:
        if not logical_filename:
            return RejectionReason("filename", "Filename cannot be empty")
        if len(logical_filename) > MAX_FILENAME_LENGTH:
            return RejectionReason("filename", "Filename too long (maximum 255 characters)")
        # any character outside the allow-list rejects the name, nothing is stripped
        if not FILENAME_PATTERN.match(logical_filename) or logical_filename.startswith('.'):
            return RejectionReason("filename", "Filename contains invalid characters")
        return None
