"""High-level orchestration of the resolve, tag and upload stages."""
from __future__ import annotations

import logging
import threading
from typing import Iterable, List

from .errors import ResolverError
from .models import (
    Completed,
    FailureKind,
    Pending,
    ResolvingPath,
    Tagged,
    UploadJob,
    Uploading,
)
from .muxing import AudioMuxingService
from .resolver import S3PathResolver
from .scheduler import DEFAULT_MAX_CONCURRENT, run_bounded
from .storage import ObjectStore
from .tagging import tag_job

logger = logging.getLogger(__name__)

RESOLUTION_FAILURE_PREFIX = "Path resolution: "


def resolve_path(job: UploadJob, resolver: S3PathResolver) -> None:
    """Fill in *job*'s destination key, or fail it with a resolution error."""

    job.transition(ResolvingPath())
    try:
        key = resolver.resolve(job)
    except Exception as exc:  # noqa: BLE001
        if not isinstance(exc, ResolverError):
            logger.exception("Failed to resolve destination for %s", job.file_name)
        job.destination_path = ""
        job.fail(f"{RESOLUTION_FAILURE_PREFIX}{exc}", FailureKind.RESOLUTION)
        return
    job.destination_path = key
    job.transition(Pending())


def upload_job(job: UploadJob, store: ObjectStore) -> None:
    """Upload a tagged job's chosen artifact to its destination key."""

    job.transition(Uploading(0.0))
    source = job.file_to_upload
    project = job.project
    logger.info(
        "[Upload] %s -> s3://%s/%s",
        source.name,
        project.bucket if project else "?",
        job.destination_path,
    )

    if project is None:
        job.fail("No project assigned", FailureKind.UPLOAD)
        return

    try:
        store.upload_file(
            source,
            project.bucket,
            job.destination_path,
            metadata={"color-space": job.color_space.value},
            on_progress=job.update_progress,
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to upload %s", source.name)
        job.fail(str(exc), FailureKind.UPLOAD)
        return
    job.transition(Completed())


def is_ready_for_tagging(job: UploadJob) -> bool:
    return isinstance(job.status, Pending) and bool(job.destination_path)


def is_ready_for_upload(job: UploadJob) -> bool:
    return isinstance(job.status, Tagged)


class UploadManager:
    """Runs batches of jobs through tagging and uploading with a shared concurrency ceiling."""

    def __init__(
        self,
        store: ObjectStore,
        resolver: S3PathResolver,
        muxer: AudioMuxingService,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.muxer = muxer
        self.max_concurrent = max(1, min(max_concurrent, DEFAULT_MAX_CONCURRENT))
        self.is_tagging = False
        self.is_uploading = False
        self.completed_count = 0
        self.total_count = 0
        self._lock = threading.Lock()

    @property
    def is_busy(self) -> bool:
        return self.is_tagging or self.is_uploading

    def resolve_path(self, job: UploadJob) -> None:
        resolve_path(job, self.resolver)

    def resolve_all(self, jobs: Iterable[UploadJob]) -> None:
        candidates = [job for job in jobs if isinstance(job.status, Pending) and not job.destination_path]
        run_bounded(candidates, self.resolve_path, max_workers=self.max_concurrent)

    def tag_all(self, jobs: Iterable[UploadJob]) -> List[UploadJob]:
        """Tag every pending job that has a destination path; returns the batch."""

        batch = [job for job in jobs if is_ready_for_tagging(job)]
        if not batch:
            return []
        self._start_batch(len(batch), tagging=True)
        try:
            run_bounded(batch, self._tag_one, max_workers=self.max_concurrent, on_complete=self._advance)
        finally:
            self.is_tagging = False
        return batch

    def upload_all(self, jobs: Iterable[UploadJob]) -> List[UploadJob]:
        batch = [job for job in jobs if is_ready_for_upload(job)]
        if not batch:
            return []
        self._start_batch(len(batch), tagging=False)
        try:
            run_bounded(batch, self._upload_one, max_workers=self.max_concurrent, on_complete=self._advance)
        finally:
            self.is_uploading = False
        return batch

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _start_batch(self, total: int, *, tagging: bool) -> None:
        with self._lock:
            if self.is_busy:
                raise RuntimeError("A batch is already running")
            if tagging:
                self.is_tagging = True
            else:
                self.is_uploading = True
            self.total_count = total
            self.completed_count = 0

    def _advance(self, job: UploadJob, completed: int, total: int) -> None:
        with self._lock:
            self.completed_count = completed
        logger.info("Progress %d/%d (%s: %s)", completed, total, job.file_name, job.status)

    def _tag_one(self, job: UploadJob) -> None:
        try:
            tag_job(job, self.muxer)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to tag %s", job.file_name)
            _fail_if_active(job, f"Tag failed: {exc}", FailureKind.TAGGING)

    def _upload_one(self, job: UploadJob) -> None:
        upload_job(job, self.store)


def _fail_if_active(job: UploadJob, message: str, kind: FailureKind) -> None:
    if not job.status.is_terminal:
        job.fail(message, kind)
