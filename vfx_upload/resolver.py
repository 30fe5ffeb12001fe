"""Destination-key discovery against the remote shot folders, with a per-project listing cache."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import CannotParse, ShotNotFound
from .models import Project, UploadJob
from .storage import ObjectStore

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0  # 5 minutes
AUDIO_EXTENSIONS: Tuple[str, ...] = (".wav", ".aif", ".aiff")


@dataclass
class _FolderListing:
    folders: List[str]
    fetched_at: float


def matches_shot_prefix(folder: str, shot_prefix: str) -> bool:
    """Case-insensitive prefix match that also tolerates extra leading tokens before an underscore."""

    lower = folder.lower()
    prefix_lower = shot_prefix.lower()
    return lower.startswith(prefix_lower) or f"_{prefix_lower}" in lower


def find_matching_folder(folders: Sequence[str], shot_prefix: str) -> Optional[str]:
    for folder in folders:
        if matches_shot_prefix(folder, shot_prefix):
            return folder[:-1] if folder.endswith("/") else folder
    return None


def replace_file_name(key: str, file_name: str) -> str:
    """Swap the final component of a remote key."""

    head, _, _ = key.rpartition("/")
    return f"{head}/{file_name}" if head else file_name


class S3PathResolver:
    """Finds the remote shot folder for a job and builds its destination key.

    Listings are cached per project for ``ttl`` seconds. Concurrent misses for
    the same project wait on one listing call; other projects are not blocked.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._cache: Dict[str, _FolderListing] = {}
        self._cache_lock = threading.Lock()
        self._project_locks: Dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def resolve(self, job: UploadJob) -> str:
        """Return the destination key for *job*, built from its shot identity rather than its file name."""

        parsed, project = job.parsed, job.project
        if parsed is None or project is None:
            raise CannotParse()

        folder = self.find_shot_folder(project, parsed.shot_prefix)
        key = f"{project.base_path}/{folder}/{project.vfx_folder}/{parsed.canonical_name}"
        logger.info("[Resolve] %s -> %s", job.file_name, key)
        return key

    def find_shot_folder(self, project: Project, shot_prefix: str) -> str:
        folders = self._list_shot_folders(project)
        folder = find_matching_folder(folders, shot_prefix)
        if folder is None:
            raise ShotNotFound(shot_prefix)
        return folder

    def find_plates_audio(self, project: Project, shot_folder: str) -> List[str]:
        """Audio file names in the shot's plates folder."""

        prefix = f"{project.base_path}/{shot_folder}/{project.plates_folder}/"
        items = self._store.list_prefix(project.bucket, prefix)
        return [item for item in items if item.lower().endswith(AUDIO_EXTENSIONS)]

    def plates_key(self, project: Project, shot_folder: str, file_name: str) -> str:
        return f"{project.base_path}/{shot_folder}/{project.plates_folder}/{file_name}"

    def invalidate(self, project_id: Optional[str] = None) -> None:
        with self._cache_lock:
            if project_id is None:
                self._cache.clear()
            else:
                self._cache.pop(project_id, None)

    def cached_at(self, project_id: str) -> Optional[float]:
        with self._cache_lock:
            listing = self._cache.get(project_id)
            return listing.fetched_at if listing else None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def _fresh_listing(self, project_id: str) -> Optional[List[str]]:
        with self._cache_lock:
            listing = self._cache.get(project_id)
            if listing is not None and self._clock() - listing.fetched_at < self._ttl:
                return listing.folders
        return None

    def _project_lock(self, project_id: str) -> threading.Lock:
        with self._cache_lock:
            lock = self._project_locks.get(project_id)
            if lock is None:
                lock = self._project_locks[project_id] = threading.Lock()
            return lock

    def _list_shot_folders(self, project: Project) -> List[str]:
        folders = self._fresh_listing(project.id)
        if folders is not None:
            return folders

        with self._project_lock(project.id):
            # Another worker may have refreshed the listing while we waited.
            folders = self._fresh_listing(project.id)
            if folders is not None:
                return folders

            logger.debug("Listing shot folders for %s", project.display_name)
            folders = self._store.list_prefix(project.bucket, f"{project.base_path}/")
            with self._cache_lock:
                self._cache[project.id] = _FolderListing(list(folders), self._clock())
            return folders
