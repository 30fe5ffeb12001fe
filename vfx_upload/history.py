"""Durable job history: snapshot entries and the JSON file that holds them."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    ColorSpace,
    Completed,
    Failed,
    FailureKind,
    Pending,
    Tagged,
    UploadJob,
)
from .planner import parse_file_name
from .projects import ProjectCatalog, write_atomic

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "job-history.json"
PERSISTED_STATUSES = ("pending", "tagged", "completed", "failed")


@dataclass(frozen=True)
class PersistedJob:
    """Stable projection of an UploadJob; in-flight statuses are stored as ``pending``."""

    id: str
    source_path: str
    file_name: str
    destination_path: str
    color_space: str
    status: str  # pending | tagged | completed | failed
    episode_number: Optional[int] = None
    failure_message: Optional[str] = None
    failure_kind: Optional[str] = None
    muxed_path: Optional[str] = None
    tagged_path: Optional[str] = None

    @classmethod
    def from_job(cls, job: UploadJob) -> "PersistedJob":
        status = job.status
        failure_message = None
        failure_kind = None
        if isinstance(status, Completed):
            persisted_status = "completed"
        elif isinstance(status, Tagged):
            persisted_status = "tagged"
        elif isinstance(status, Failed):
            persisted_status = "failed"
            failure_message = status.message
            failure_kind = status.kind.value
        else:
            # Interrupted work has no stored form; it is redone from pending.
            persisted_status = "pending"

        if job.project is not None:
            episode = job.project.episode_number
        elif job.parsed is not None:
            episode = job.parsed.episode_number
        else:
            episode = None

        return cls(
            id=job.id,
            source_path=str(job.source_path),
            file_name=job.file_name,
            destination_path=job.destination_path,
            color_space=job.color_space.value,
            status=persisted_status,
            episode_number=episode,
            failure_message=failure_message,
            failure_kind=failure_kind,
            muxed_path=str(job.muxed_path) if job.muxed_path else None,
            tagged_path=str(job.tagged_path) if job.tagged_path else None,
        )

    def to_job(self, catalog: ProjectCatalog) -> UploadJob:
        source = Path(self.source_path)
        project = catalog.find_by_episode(self.episode_number) if self.episode_number is not None else None
        job = UploadJob(
            source_path=source,
            parsed=parse_file_name(source.name),
            project=project,
            color_space=ColorSpace.from_value(self.color_space),
            destination_path=self.destination_path,
            id=self.id,
        )
        if self.status == "completed":
            # The key already names the uploaded object; only the local copies matter.
            job.muxed_path = _existing(self.muxed_path)
            job.tagged_path = _existing(self.tagged_path)
            job.status = Completed()
            return job

        job.muxed_path = Path(self.muxed_path) if self.muxed_path else None
        job.tagged_path = Path(self.tagged_path) if self.tagged_path else None
        job.drop_missing_artifacts()

        if self.status == "tagged":
            # Without a surviving artifact the source would go up untagged; re-tag instead.
            if job.muxed_path is None and job.tagged_path is None:
                job.status = Pending()
            else:
                job.status = Tagged()
        elif self.status == "failed":
            job.status = Failed(self.failure_message or "Unknown error", _failure_kind(self.failure_kind))
        else:
            job.status = Pending()
        return job

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceURL": self.source_path,
            "fileName": self.file_name,
            "s3DestinationPath": self.destination_path,
            "colorSpaceRawValue": self.color_space,
            "status": self.status,
            "episodeNumber": self.episode_number,
            "failureMessage": self.failure_message,
            "failureKind": self.failure_kind,
            "muxedFileURL": self.muxed_path,
            "taggedFileURL": self.tagged_path,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PersistedJob":
        status = payload.get("status")
        if status not in PERSISTED_STATUSES:
            raise ValueError(f"Unknown persisted status {status!r}")
        source = payload["sourceURL"]
        episode = payload.get("episodeNumber")
        return cls(
            id=str(payload["id"]),
            source_path=str(source),
            file_name=str(payload.get("fileName") or Path(source).name),
            destination_path=str(payload.get("s3DestinationPath") or ""),
            color_space=str(payload.get("colorSpaceRawValue") or ColorSpace.P3_D65_PQ.value),
            status=status,
            episode_number=int(episode) if episode is not None else None,
            failure_message=payload.get("failureMessage"),
            failure_kind=payload.get("failureKind"),
            muxed_path=payload.get("muxedFileURL"),
            tagged_path=payload.get("taggedFileURL"),
        )


def _existing(path: Optional[str]) -> Optional[Path]:
    if not path:
        return None
    candidate = Path(path)
    return candidate if candidate.exists() else None


def _failure_kind(value: Optional[str]) -> FailureKind:
    try:
        return FailureKind(value)
    except ValueError:
        return FailureKind.OTHER


class JobHistoryStore:
    """Reads and writes the whole job list as one JSON array."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @classmethod
    def in_directory(cls, data_dir: Path) -> "JobHistoryStore":
        return cls(Path(data_dir) / HISTORY_FILENAME)

    def save(self, entries: Sequence[PersistedJob]) -> None:
        payload = json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False)
        write_atomic(self.path, payload + "\n")
        logger.debug("Saved %d job(s) to %s", len(entries), self.path)

    def load(self) -> List[PersistedJob]:
        """Return the stored entries; a missing or unreadable file yields an empty list."""

        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unable to read job history %s: %s", self.path, exc)
            return []
        if not isinstance(payload, list):
            logger.warning("Ignoring job history %s: expected a JSON array", self.path)
            return []

        entries: List[PersistedJob] = []
        for index, item in enumerate(payload):
            try:
                entries.append(PersistedJob.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping job history entry %d: %s", index, exc)
        return entries

    def save_jobs(self, jobs: Sequence[UploadJob]) -> None:
        self.save([PersistedJob.from_job(job) for job in jobs])

    def load_jobs(self, catalog: ProjectCatalog) -> List[UploadJob]:
        return [entry.to_job(catalog) for entry in self.load()]
