"""The job list a front end works with: adding files, running batches, persisting progress."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from werkzeug.utils import secure_filename

from .config import UploaderConfig
from .history import JobHistoryStore
from .media_tools import MediaTools
from .models import (
    ColorSpace,
    Completed,
    Failed,
    Pending,
    Project,
    Tagged,
    UploadJob,
    UploadStatus,
)
from .muxing import AudioMuxingService
from .planner import build_jobs
from .projects import ProjectCatalog
from .resolver import S3PathResolver, replace_file_name
from .runner import UploadManager, is_ready_for_tagging
from .storage import CredentialStatus, ObjectStore, S3Storage

logger = logging.getLogger(__name__)


class UploadSession:
    """Owns the jobs, wires them to the pipeline and snapshots them after each milestone."""

    def __init__(
        self,
        *,
        store: ObjectStore,
        catalog: ProjectCatalog,
        history: JobHistoryStore,
        manager: UploadManager,
        default_color_space: ColorSpace = ColorSpace.P3_D65_PQ,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.history = history
        self.manager = manager
        self.default_color_space = default_color_space
        self.credential_status: Optional[CredentialStatus] = None
        self._jobs: List[UploadJob] = []
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: UploaderConfig,
        *,
        store: Optional[ObjectStore] = None,
        tools: Optional[MediaTools] = None,
    ) -> "UploadSession":
        store = store or S3Storage(config.s3)
        resolver = S3PathResolver(store)
        muxer = AudioMuxingService(store, resolver, tools)
        manager = UploadManager(store, resolver, muxer, max_concurrent=config.max_concurrent)
        return cls(
            store=store,
            catalog=ProjectCatalog.load(config.projects_path),
            history=JobHistoryStore.in_directory(config.data_dir),
            manager=manager,
            default_color_space=config.default_color_space,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def jobs(self) -> List[UploadJob]:
        with self._lock:
            return list(self._jobs)

    @property
    def projects(self) -> List[Project]:
        return self.catalog.projects

    @property
    def is_authenticated(self) -> bool:
        return self.credential_status is not None and self.credential_status.is_valid

    @property
    def can_tag(self) -> bool:
        return (
            self.is_authenticated
            and not self.manager.is_busy
            and any(is_ready_for_tagging(job) for job in self.jobs)
        )

    @property
    def can_upload(self) -> bool:
        jobs = self.jobs
        return (
            self.is_authenticated
            and not self.manager.is_busy
            and any(isinstance(job.status, Tagged) for job in jobs)
            and not any(is_ready_for_tagging(job) for job in jobs)
        )

    @property
    def can_quit(self) -> bool:
        """Quitting mid-batch would abandon running work; front ends must refuse it."""

        return not self.manager.is_busy

    def find(self, job_id: str) -> Optional[UploadJob]:
        """Look a job up by id or unambiguous id prefix."""

        matches = [job for job in self.jobs if job.id == job_id or job.id.startswith(job_id)]
        return matches[0] if len(matches) == 1 else None

    def check_credentials(self) -> CredentialStatus:
        self.credential_status = self.store.check_credentials()
        return self.credential_status

    # ------------------------------------------------------------------
    # Job list
    # ------------------------------------------------------------------
    def restore(self) -> List[UploadJob]:
        restored = self.history.load_jobs(self.catalog)
        with self._lock:
            self._jobs = restored
        for job in restored:
            job.add_listener(self._on_status_change)
        logger.info("Restored %d job(s) from %s", len(restored), self.history.path)
        return restored

    def add_files(self, paths: Sequence[Path], *, resolve: bool = True) -> List[UploadJob]:
        new_jobs = build_jobs(paths, catalog=self.catalog, default_color_space=self.default_color_space)
        if not new_jobs:
            return []
        with self._lock:
            self._jobs.extend(new_jobs)
        for job in new_jobs:
            job.add_listener(self._on_status_change)
        self.save()

        if resolve:
            self.resolve_missing(new_jobs)
        return new_jobs

    def resolve_missing(self, jobs: Optional[Iterable[UploadJob]] = None) -> None:
        """Resolve pending jobs that have a shot identity but no destination yet.

        Jobs whose names carry no identity stay pending until a path is set by hand.
        """

        candidates = [
            job for job in (jobs if jobs is not None else self.jobs)
            if isinstance(job.status, Pending) and not job.destination_path and job.parsed is not None
        ]
        if not candidates:
            return
        self.manager.resolve_all(candidates)
        self.save()

    def set_destination(self, job: UploadJob, key: str, *, project: Optional[Project] = None) -> None:
        """Manually set a job's destination key (the edit-path action)."""

        key = key.strip().strip("/")
        if not key:
            raise ValueError("Destination path cannot be empty")
        if isinstance(job.status, Failed):
            job.reset()
        elif not isinstance(job.status, Pending):
            raise ValueError(f"{job.file_name} is {job.status.label}; only pending or failed jobs can be edited")

        if project is not None:
            job.project = project
            job.color_space = project.color_space
        job.destination_path = key
        self.save()

    def retry(self, job: UploadJob) -> None:
        """Re-submit a failed job from pending."""

        job.reset()
        self.save()
        if not job.destination_path and job.parsed is not None:
            self.resolve_missing([job])

    def remove_job(self, job: UploadJob) -> None:
        with self._lock:
            self._jobs = [existing for existing in self._jobs if existing.id != job.id]
        self.save()

    def clear_completed(self) -> int:
        with self._lock:
            before = len(self._jobs)
            self._jobs = [job for job in self._jobs if not isinstance(job.status, Completed)]
            removed = before - len(self._jobs)
        self.save()
        return removed

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    def start_tagging(self) -> List[UploadJob]:
        return self.manager.tag_all(self.jobs)

    def start_upload(self) -> List[UploadJob]:
        return self.manager.upload_all(self.jobs)

    # ------------------------------------------------------------------
    # Post-upload actions
    # ------------------------------------------------------------------
    def remote_uri(self, job: UploadJob) -> Optional[str]:
        return job.remote_uri

    def delete_from_remote(self, job: UploadJob) -> None:
        """Delete the uploaded object and drop the job; storage errors propagate to the caller."""

        if job.project is None or not job.destination_path:
            raise ValueError(f"{job.file_name} has no remote object to delete")
        self.store.delete_object(job.project.bucket, job.destination_path)
        logger.info("Deleted %s", job.remote_uri)
        self.remove_job(job)

    def rename_on_remote(self, job: UploadJob, new_file_name: str) -> str:
        """Copy the uploaded object to a new file name in the same folder, then delete the old key."""

        if job.project is None or not job.destination_path:
            raise ValueError(f"{job.file_name} has no remote object to rename")
        safe_name = secure_filename(new_file_name)
        if not safe_name:
            raise ValueError(f"Invalid file name: {new_file_name!r}")

        old_key = job.destination_path
        new_key = replace_file_name(old_key, safe_name)
        if new_key == old_key:
            return old_key

        bucket = job.project.bucket
        if self.store.object_exists(bucket, new_key):
            raise ValueError(f"s3://{bucket}/{new_key} already exists")
        self.store.copy_object(bucket, old_key, new_key)
        self.store.delete_object(bucket, old_key)
        job.destination_path = new_key
        logger.info("Renamed s3://%s/%s -> %s", bucket, old_key, new_key)
        self.save()
        return new_key

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    def import_projects(self, path: Path) -> List[Project]:
        return self.catalog.import_file(path)

    def remove_all_projects(self) -> None:
        self.catalog.remove_all()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self) -> None:
        with self._lock:
            self.history.save_jobs(self._jobs)

    def _on_status_change(self, job: UploadJob, old: UploadStatus, new: UploadStatus) -> None:
        if new.is_terminal or isinstance(new, Tagged):
            self.save()
