"""Utilities for resolving, tagging and uploading VFX renders."""

from .models import (  # noqa: F401
    ColorSpace,
    Completed,
    Failed,
    FailureKind,
    MuxingAudio,
    ParsedFileName,
    Pending,
    ProbeResult,
    Project,
    ResolvingPath,
    Tagged,
    TaggingColor,
    UploadJob,
    Uploading,
    UploadStatus,
)
from .planner import build_jobs, iter_preview_lines, parse_file_name  # noqa: F401
from .projects import ProjectCatalog, default_projects  # noqa: F401
from .session import UploadSession  # noqa: F401

__all__ = [
    "ColorSpace",
    "Completed",
    "Failed",
    "FailureKind",
    "MuxingAudio",
    "ParsedFileName",
    "Pending",
    "ProbeResult",
    "Project",
    "ProjectCatalog",
    "ResolvingPath",
    "Tagged",
    "TaggingColor",
    "UploadJob",
    "UploadSession",
    "Uploading",
    "UploadStatus",
    "build_jobs",
    "default_projects",
    "iter_preview_lines",
    "parse_file_name",
]
