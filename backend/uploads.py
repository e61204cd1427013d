"""
File upload validation and storage.

Files are validated by extension, streamed to disk in chunks with an
incremental size check, and stored under a sanitized, timestamp-prefixed name
so two uploads of the same file never collide.
"""

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Tuple

from fastapi import UploadFile

from errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf"}
UPLOAD_URL_PREFIX = "/uploads"
CHUNK_SIZE = 256 * 1024
MAX_NAME_ATTEMPTS = 100

_WHITESPACE = re.compile(r"\s+")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")


class FileTooLargeError(ValidationError):
    status_code = 413


@dataclass
class StoredFile:
    filename: str
    original_filename: str
    path: Path
    size: int

    @property
    def web_path(self) -> str:
        return f"{UPLOAD_URL_PREFIX}/{self.filename}"


def sanitize_filename(original: str) -> str:
    """Whitespace runs become dashes; anything outside [A-Za-z0-9._-] is dropped."""
    return _UNSAFE_CHARS.sub("", _WHITESPACE.sub("-", original))


def validate_file_upload(filename: str) -> None:
    """Reject anything that isn't an image or PDF."""
    if not filename:
        raise ValidationError("No file uploaded")
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        logger.info(f"Rejected upload with extension '{ext}': {filename}")
        raise ValidationError("Only .jpg, .png, .pdf files allowed!")


class UploadStorage:
    def __init__(self, upload_dir: Path, max_bytes: int):
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes

    def ensure_dir(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def stored_name(self, original: str) -> str:
        return f"{int(time.time() * 1000)}-{sanitize_filename(Path(original).name)}"

    def _create_unique(self, original: str) -> Tuple[str, Path, BinaryIO]:
        """Open a new file for writing, adding a counter when the stored name is taken."""
        filename = self.stored_name(original)
        stem, suffix = Path(filename).stem, Path(filename).suffix
        for attempt in range(MAX_NAME_ATTEMPTS):
            candidate = filename if attempt == 0 else f"{stem}-{attempt}{suffix}"
            filepath = self.upload_dir / candidate
            try:
                return candidate, filepath, open(filepath, "xb")
            except FileExistsError:
                logger.debug(f"Upload name {candidate} already taken")
        raise FileExistsError(f"No free upload name for {original}")

    async def save(self, file: UploadFile) -> StoredFile:
        """
        Save an uploaded file using chunked streaming.

        Aborts and removes the partial file as soon as the size limit is
        exceeded, so at most one chunk is held in memory.

        Raises:
            ValidationError: bad extension
            FileTooLargeError: file exceeds ``max_bytes``
        """
        validate_file_upload(file.filename)
        self.ensure_dir()

        filename, filepath, f = self._create_unique(file.filename)
        total_size = 0

        try:
            with f:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total_size += len(chunk)
                    if total_size > self.max_bytes:
                        raise FileTooLargeError(
                            f"File too large. Maximum size: {self.max_bytes / (1024 * 1024):.0f}MB"
                        )
                    f.write(chunk)
        except Exception:
            if filepath.exists():
                filepath.unlink()
            raise

        logger.info(f"Stored upload {file.filename} as {filename} ({total_size} bytes)")
        return StoredFile(filename=filename, original_filename=file.filename, path=filepath, size=total_size)

    def discard(self, stored: StoredFile) -> None:
        """Remove a stored file whose attachment record could not be written."""
        if stored.path.exists():
            stored.path.unlink()
            logger.error(f"Cleaned up orphaned upload: {stored.path}")
