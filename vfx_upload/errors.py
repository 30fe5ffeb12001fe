"""Exception types raised across the upload pipeline."""
from __future__ import annotations

from typing import Sequence


class ResolverError(Exception):
    """Raised when a job's destination key cannot be resolved."""


class CannotParse(ResolverError):
    def __init__(self) -> None:
        super().__init__("Could not parse filename")


class ShotNotFound(ResolverError):
    def __init__(self, prefix: str) -> None:
        super().__init__(f"No shot folder matching '{prefix}'")
        self.prefix = prefix


class MediaToolError(RuntimeError):
    """Raised when ffmpeg or ffprobe exits with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = self.stderr or f"Process exited with code {returncode}"
        super().__init__(message)


class StorageError(RuntimeError):
    """Raised when an object-store operation fails."""


class InvalidTransition(RuntimeError):
    """Raised when a job is moved to a status its current status cannot reach."""


class CatalogError(ValueError):
    """Raised when a project catalog file is rejected."""
