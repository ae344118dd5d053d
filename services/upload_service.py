"""
Upload Service - temporary file handling for uploaded workbooks.

Uploaded bytes are written to a temp file for the lifetime of one
ingestion attempt. The file is removed on every exit path.
"""

import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from backend.config import settings, ensure_temp_dir
from services.exceptions import UploadRejected

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._ -]')


class UploadService:
    """
    Framework-agnostic handling of uploaded files.

    Checks extension and size, and owns the temp file lifecycle.
    """

    def __init__(self, temp_dir: Optional[str] = None,
                 allowed_extensions: Optional[List[str]] = None,
                 max_size_mb: Optional[int] = None):
        """
        Initialize upload service.

        Args:
            temp_dir: Directory for temporary uploads (default: settings.TEMP_UPLOAD_DIR)
            allowed_extensions: Allowed suffixes (default: settings.ALLOWED_EXTENSIONS)
            max_size_mb: Maximum upload size (default: settings.MAX_FILE_SIZE_MB)
        """
        self.temp_dir = temp_dir or settings.TEMP_UPLOAD_DIR
        self.allowed_extensions = allowed_extensions or settings.ALLOWED_EXTENSIONS
        self.max_size_mb = max_size_mb or settings.MAX_FILE_SIZE_MB

    def validate_file_extension(self, filename: str):
        """
        Raises:
            UploadRejected: If the extension is not allowed
        """
        ext = Path(filename or '').suffix.lower()
        if ext not in [e.lower() for e in self.allowed_extensions]:
            logger.warning(f"Invalid file extension: {ext} (allowed: {self.allowed_extensions})")
            raise UploadRejected(
                f"File extension '{ext}' not allowed. "
                f"Allowed extensions: {', '.join(self.allowed_extensions)}"
            )

    def validate_file_size(self, size_bytes: int):
        """
        Raises:
            UploadRejected: If the upload exceeds the size limit
        """
        max_size_bytes = self.max_size_mb * 1024 * 1024
        if size_bytes > max_size_bytes:
            logger.warning(f"File size {size_bytes / 1024 / 1024:.1f} MB exceeds limit of {self.max_size_mb} MB")
            raise UploadRejected(
                f"File too large ({size_bytes / 1024 / 1024:.1f} MB). "
                f"Maximum size is {self.max_size_mb} MB."
            )

    @contextmanager
    def scoped_upload(self, filename: str, data: bytes) -> Iterator[Path]:
        """
        Write an upload to a temp file and remove it when the block exits.

        Yields:
            Path of the temporary file
        """
        ensure_temp_dir(self.temp_dir)
        safe_name = _UNSAFE_CHARS.sub('_', Path(filename or 'upload').name)
        path = Path(self.temp_dir) / f"{int(time.time() * 1000)}-{safe_name}"
        try:
            path.write_bytes(data)
            logger.debug(f"Stored upload at {path} ({len(data)} bytes)")
            yield path
        finally:
            self.delete_file(path)

    def delete_file(self, file_path) -> bool:
        """
        Delete a file.

        Returns:
            True if file was deleted, False if file didn't exist
        """
        path = Path(file_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Deleted temp upload: {path}")
        return True

    def cleanup_temp_files(self, older_than_hours: int = 24) -> int:
        """
        Clean up temp uploads left behind by killed processes.

        Returns:
            Number of files deleted
        """
        temp_path = Path(self.temp_dir)
        if not temp_path.exists():
            return 0

        cutoff_time = datetime.now().timestamp() - (older_than_hours * 3600)
        deleted_count = 0

        for file_path in temp_path.glob("*"):
            if file_path.is_file() and file_path.stat().st_mtime < cutoff_time:
                if self.delete_file(file_path):
                    deleted_count += 1

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} temporary files")
        return deleted_count
