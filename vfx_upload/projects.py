"""Project catalog: built-in episode layouts plus user-imported configuration files."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import CatalogError
from .models import ColorSpace, Project

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "sync-services"
MYSHOW_BASE_PATH = "CLIENTS/Sync_Reed/03_MyShow/MYSHOW_S02"
MYSHOW_EPISODES = range(201, 208)
# Episodes up to 204 were delivered with numbered folder names.
LAST_NUMBERED_FOLDER_EPISODE = 204

PROJECT_FIELDS = (
    "id",
    "displayName",
    "s3Bucket",
    "s3BasePath",
    "episodeNumber",
    "colorSpace",
    "platesFolder",
    "vfxFolder",
)


def default_projects() -> List[Project]:
    projects: List[Project] = []
    for episode in MYSHOW_EPISODES:
        numbered = episode <= LAST_NUMBERED_FOLDER_EPISODE
        projects.append(
            Project(
                id=f"myshow_{episode}",
                display_name=f"MyShow {episode}",
                bucket=DEFAULT_BUCKET,
                base_path=f"{MYSHOW_BASE_PATH}/{episode}/20_WORKING",
                episode_number=episode,
                color_space=ColorSpace.P3_D65_PQ,
                plates_folder="01_Plates" if numbered else "Plates",
                vfx_folder="03_VFX" if numbered else "VFX",
            )
        )
    return projects


def project_from_dict(record: Mapping[str, Any], *, index: int = 0) -> Project:
    """Build a Project from one catalog record, raising CatalogError on any invalid field."""

    if not isinstance(record, Mapping):
        raise CatalogError(f"Project {index}: expected an object, got {type(record).__name__}")

    missing = [key for key in PROJECT_FIELDS if key not in record]
    if missing:
        raise CatalogError(f"Project {index}: missing {', '.join(missing)}")

    strings: Dict[str, str] = {}
    for key in ("id", "displayName", "s3Bucket", "s3BasePath", "platesFolder", "vfxFolder"):
        value = record[key]
        if not isinstance(value, str) or not value.strip():
            raise CatalogError(f"Project {index}: '{key}' must be a non-empty string")
        strings[key] = value.strip()

    episode = record["episodeNumber"]
    if isinstance(episode, bool) or not isinstance(episode, int) or not 0 <= episode <= 999:
        raise CatalogError(f"Project {index}: 'episodeNumber' must be an integer between 0 and 999")

    try:
        color_space = ColorSpace(record["colorSpace"])
    except ValueError as exc:
        raise CatalogError(f"Project {index}: unknown colorSpace {record['colorSpace']!r}") from exc

    return Project(
        id=strings["id"],
        display_name=strings["displayName"],
        bucket=strings["s3Bucket"],
        base_path=strings["s3BasePath"].strip("/"),
        episode_number=episode,
        color_space=color_space,
        plates_folder=strings["platesFolder"].strip("/"),
        vfx_folder=strings["vfxFolder"].strip("/"),
    )


def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "displayName": project.display_name,
        "s3Bucket": project.bucket,
        "s3BasePath": project.base_path,
        "episodeNumber": project.episode_number,
        "colorSpace": project.color_space.value,
        "platesFolder": project.plates_folder,
        "vfxFolder": project.vfx_folder,
    }


def parse_catalog(payload: Any) -> List[Project]:
    if not isinstance(payload, list):
        raise CatalogError("Project catalog must be a JSON array of project records")
    projects = [project_from_dict(record, index=index) for index, record in enumerate(payload)]

    seen_ids = set()
    for project in projects:
        if project.id in seen_ids:
            raise CatalogError(f"Duplicate project id {project.id!r}")
        seen_ids.add(project.id)
    return projects


def read_catalog_file(path: Path) -> List[Project]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise CatalogError(f"Unable to read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CatalogError(f"{path} is not valid JSON: {exc}") from exc
    return parse_catalog(payload)


class ProjectCatalog:
    """The active set of projects, looked up by episode number."""

    def __init__(self, projects: Optional[Sequence[Project]] = None, *, storage_path: Optional[Path] = None) -> None:
        self._projects: List[Project] = list(projects) if projects is not None else default_projects()
        self._storage_path = storage_path
        self._lock = threading.Lock()

    @classmethod
    def load(cls, storage_path: Path) -> "ProjectCatalog":
        """Load the imported catalog at *storage_path*, falling back to the built-in projects."""

        if storage_path.exists():
            try:
                projects = read_catalog_file(storage_path)
            except CatalogError as exc:
                logger.warning("Ignoring stored project catalog: %s", exc)
            else:
                return cls(projects, storage_path=storage_path)
        return cls(storage_path=storage_path)

    @property
    def projects(self) -> List[Project]:
        with self._lock:
            return list(self._projects)

    def find_by_episode(self, episode: int) -> Optional[Project]:
        with self._lock:
            for project in self._projects:
                if project.episode_number == episode:
                    return project
        return None

    def find_by_id(self, project_id: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects:
                if project.id == project_id:
                    return project
        return None

    def import_file(self, path: Path) -> List[Project]:
        """Replace the catalog with the projects in *path*; an invalid file leaves it untouched."""

        projects = read_catalog_file(path)
        self._persist(projects)
        with self._lock:
            self._projects = projects
        logger.info("Imported %d project(s) from %s", len(projects), path)
        return list(projects)

    def remove_all(self) -> None:
        self._persist([])
        with self._lock:
            self._projects = []

    def _persist(self, projects: Sequence[Project]) -> None:
        if self._storage_path is None:
            return
        payload = json.dumps([project_to_dict(project) for project in projects], indent=2)
        write_atomic(self._storage_path, payload)


def write_atomic(path: Path, text: str) -> None:
    """Replace *path* with *text* in a single rename so readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
