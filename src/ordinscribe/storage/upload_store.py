"""Per-session upload directory management."""

import logging
import re
import shutil
from pathlib import Path
from typing import BinaryIO

from ordinscribe.config import get_settings
from ordinscribe.models.errors import ResourceError, ValidationError
from ordinscribe.models.pipeline import FileRef

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(name: str) -> str:
    """Strip directory components and shell-hostile characters from an upload name."""
    base = Path(name).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    if not cleaned:
        raise ValidationError(f"Invalid file name: {name!r}")
    return cleaned


class UploadStore:
    """Stores uploaded artifacts in one directory per session."""

    def __init__(self, base_dir: Path | None = None, max_size_mb: int | None = None):
        settings = get_settings()
        self.base_dir = base_dir or settings.upload_dir
        self.max_size_bytes = (max_size_mb or settings.upload_max_size_mb) * 1024 * 1024
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save(
        self,
        session_id: str,
        file_name: str,
        stream: BinaryIO,
        content_type: str | None = None,
    ) -> FileRef:
        """Copy *stream* into the session directory and return a handle to it."""
        name = safe_file_name(file_name)
        session_dir = self.base_dir / session_id
        path = session_dir / name
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                shutil.copyfileobj(stream, f)
            size = path.stat().st_size
        except OSError as e:
            raise ResourceError(f"Could not store upload {name}: {e}")

        if size == 0:
            path.unlink(missing_ok=True)
            raise ValidationError(f"Uploaded file {name} is empty")
        if size > self.max_size_bytes:
            path.unlink(missing_ok=True)
            raise ValidationError(
                f"Uploaded file {name} exceeds {self.max_size_bytes // (1024 * 1024)} MB",
                details={"size": size},
            )
        logger.info(f"Stored upload {name} ({size} bytes) for session {session_id}")
        return FileRef(
            name=name,
            path=path,
            content_type=content_type or "application/octet-stream",
            size=size,
        )

    def cleanup(self, session_id: str) -> None:
        """Remove everything stored for a session."""
        session_dir = self.base_dir / session_id
        if session_dir.exists():
            shutil.rmtree(session_dir, ignore_errors=True)
            logger.info(f"Cleaned up uploads for session {session_id}")
