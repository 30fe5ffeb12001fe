"""Dataclasses describing upload jobs, projects and their pipeline state."""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type
from uuid import uuid4

from .errors import InvalidTransition


class ColorSpace(str, enum.Enum):
    P3_D65_PQ = "P3-D65-PQ"
    REC2020_PQ = "Rec2020-PQ"
    REC709 = "Rec709"
    NONE = "None"

    @property
    def display_name(self) -> str:
        return _COLOR_SPACE_NAMES[self]

    @property
    def ffmpeg_color_flags(self) -> Optional[List[str]]:
        """Container-level color flags for ffmpeg; None means never tag."""

        expected = self.expected_probe_values
        if expected is None:
            return None
        primaries, transfer, space = expected
        return ["-color_primaries", primaries, "-color_trc", transfer, "-colorspace", space]

    @property
    def expected_probe_values(self) -> Optional[Tuple[str, str, str]]:
        return _EXPECTED_PROBE_VALUES.get(self)

    @classmethod
    def from_value(cls, value: Optional[str], default: Optional["ColorSpace"] = None) -> "ColorSpace":
        try:
            return cls(value)
        except ValueError:
            return default or cls.P3_D65_PQ


_COLOR_SPACE_NAMES = {
    ColorSpace.P3_D65_PQ: "P3-D65 / PQ (HDR)",
    ColorSpace.REC2020_PQ: "Rec.2020 / PQ (HDR)",
    ColorSpace.REC709: "Rec.709 (SDR)",
    ColorSpace.NONE: "None (don't tag)",
}

# (primaries, transfer, space) as reported by ffprobe
_EXPECTED_PROBE_VALUES = {
    ColorSpace.P3_D65_PQ: ("smpte432", "smpte2084", "bt2020nc"),
    ColorSpace.REC2020_PQ: ("bt2020", "smpte2084", "bt2020nc"),
    ColorSpace.REC709: ("bt709", "bt709", "bt709"),
}


@dataclass(frozen=True)
class ParsedFileName:
    """Shot identity extracted from a render file name."""

    project_name: Optional[str]  # "MyShow", None when the name has no prefix
    episode_number: int  # 201
    shot_number: str  # "052"
    suffix: str  # "vfx"
    version: str  # "v001"
    extension: str  # "mov"

    @property
    def shot_prefix(self) -> str:
        episode = f"{self.episode_number:03d}"
        if self.project_name:
            return f"{self.project_name}_{episode}_{self.shot_number}"
        return f"{episode}_{self.shot_number}"

    @property
    def canonical_name(self) -> str:
        return f"{self.shot_prefix}_{self.suffix}_{self.version}.{self.extension}"


@dataclass(frozen=True)
class Project:
    """One episode's remote layout."""

    id: str
    display_name: str
    bucket: str
    base_path: str
    episode_number: int
    color_space: ColorSpace
    plates_folder: str
    vfx_folder: str


@dataclass(frozen=True)
class ProbeResult:
    """Audio presence and color tags reported by a single probe call."""

    has_audio_track: bool
    color_primaries: Optional[str] = None
    color_transfer: Optional[str] = None
    color_space: Optional[str] = None

    def already_tagged(self, target: ColorSpace) -> bool:
        """Return True when the file already carries *target*'s tags, or *target* needs none."""

        expected = target.expected_probe_values
        if expected is None:
            return True

        observed = (self.color_primaries, self.color_transfer, self.color_space)
        if any(value is None or value == "unknown" for value in observed):
            return False
        return observed == expected


# ----------------------------------------------------------------------
# Job status
# ----------------------------------------------------------------------
class FailureKind(str, enum.Enum):
    RESOLUTION = "resolution"
    TAGGING = "tagging"
    UPLOAD = "upload"
    OTHER = "other"


class UploadStatus:
    """Base class for the closed set of job statuses below."""

    label = ""

    @property
    def is_terminal(self) -> bool:
        return isinstance(self, (Completed, Failed))

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Pending(UploadStatus):
    label = "pending"


@dataclass(frozen=True)
class ResolvingPath(UploadStatus):
    label = "resolvingPath"


@dataclass(frozen=True)
class MuxingAudio(UploadStatus):
    label = "muxingAudio"


@dataclass(frozen=True)
class TaggingColor(UploadStatus):
    label = "taggingColor"


@dataclass(frozen=True)
class Tagged(UploadStatus):
    label = "tagged"


@dataclass(frozen=True)
class Uploading(UploadStatus):
    progress: float = 0.0
    label = "uploading"

    def __str__(self) -> str:
        return f"uploading {self.progress:.0%}"


@dataclass(frozen=True)
class Completed(UploadStatus):
    label = "completed"


@dataclass(frozen=True)
class Failed(UploadStatus):
    message: str = "Unknown error"
    kind: FailureKind = FailureKind.OTHER
    label = "failed"

    @property
    def can_edit_path(self) -> bool:
        return self.kind is FailureKind.RESOLUTION

    def __str__(self) -> str:
        return f"failed: {self.message}"


_ALLOWED_TRANSITIONS: Dict[Type[UploadStatus], Tuple[Type[UploadStatus], ...]] = {
    Pending: (ResolvingPath, MuxingAudio, Failed),
    ResolvingPath: (Pending, Failed),
    MuxingAudio: (TaggingColor, Tagged, Failed),
    TaggingColor: (Tagged, Failed),
    Tagged: (Uploading, Failed),
    Uploading: (Uploading, Completed, Failed),
    Completed: (),
    Failed: (),
}

StatusListener = Callable[["UploadJob", UploadStatus, UploadStatus], None]


@dataclass(eq=False)
class UploadJob:
    """One file moving through resolve -> tag -> upload."""

    source_path: Path
    parsed: Optional[ParsedFileName] = None
    project: Optional[Project] = None
    color_space: ColorSpace = ColorSpace.P3_D65_PQ
    destination_path: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    status: UploadStatus = field(default_factory=Pending)
    muxed_path: Optional[Path] = None  # upload this instead of the source when set
    tagged_path: Optional[Path] = None  # takes precedence over muxed_path
    _listeners: List[StatusListener] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def file_name(self) -> str:
        return self.source_path.name

    @property
    def file_to_upload(self) -> Path:
        return self.tagged_path or self.muxed_path or self.source_path

    @property
    def remote_uri(self) -> Optional[str]:
        if self.project is None or not self.destination_path:
            return None
        return f"s3://{self.project.bucket}/{self.destination_path}"

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def transition(self, new_status: UploadStatus) -> None:
        """Move to *new_status*, rejecting anything the state machine does not allow."""

        with self._lock:
            old_status = self.status
            allowed = _ALLOWED_TRANSITIONS[type(old_status)]
            if not isinstance(new_status, allowed):
                raise InvalidTransition(
                    f"{self.file_name}: cannot move from {old_status.label} to {new_status.label}"
                )
            if isinstance(new_status, MuxingAudio) and not self.destination_path:
                raise InvalidTransition(f"{self.file_name}: destination path is required before tagging")
            self.status = new_status
        self._notify(old_status, new_status)

    def update_progress(self, progress: float) -> None:
        """Record upload progress; ignored once the job has left ``uploading``."""

        with self._lock:
            old_status = self.status
            if not isinstance(old_status, Uploading):
                return
            self.status = Uploading(max(0.0, min(progress, 1.0)))
        self._notify(old_status, self.status)

    def fail(self, message: str, kind: FailureKind = FailureKind.OTHER) -> None:
        self.transition(Failed(message, kind))

    def reset(self) -> None:
        """Return a failed job to pending; the only way out of a terminal failure."""

        with self._lock:
            old_status = self.status
            if not isinstance(old_status, Failed):
                raise InvalidTransition(f"{self.file_name}: only failed jobs can be reset")
            if old_status.kind is FailureKind.RESOLUTION:
                self.destination_path = ""
            self._drop_artifacts(only_missing=False)
            self.status = Pending()
        self._notify(old_status, self.status)

    def drop_missing_artifacts(self) -> None:
        """Forget artifacts that no longer exist on disk."""

        with self._lock:
            self._drop_artifacts(only_missing=True)

    def _drop_artifacts(self, *, only_missing: bool) -> None:
        # A key renamed after an artifact goes back to the name of the file it replaced.
        head, sep, key_name = self.destination_path.rpartition("/")
        for attr in ("muxed_path", "tagged_path"):
            path = getattr(self, attr)
            if path is None or (only_missing and path.exists()):
                continue
            if key_name and key_name == path.name:
                original = self.parsed.canonical_name if self.parsed else self.source_path.name
                self.destination_path = f"{head}{sep}{original}"
            setattr(self, attr, None)

    def _notify(self, old_status: UploadStatus, new_status: UploadStatus) -> None:
        for listener in list(self._listeners):
            listener(self, old_status, new_status)
