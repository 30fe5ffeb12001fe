"""Planning helpers: shot-name parsing and job creation for dropped files."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import ColorSpace, Failed, ParsedFileName, UploadJob
from .projects import ProjectCatalog

# MyShow_201_052_vfx_v001.mov or 201_052_vfx_v001.mov
_SHOT_NAME_RE = re.compile(
    r"^(?:(?P<project>[A-Za-z]+)_)?"
    r"(?P<episode>\d{3})_(?P<shot>\d{3})_"
    r"(?P<suffix>[A-Za-z0-9]+)_(?P<version>[vV]\d+)"
    r"\.(?P<ext>\w+)$"
)


def parse_file_name(name: str) -> Optional[ParsedFileName]:
    """Extract the shot identity from *name*, or None when it does not follow the convention."""

    match = _SHOT_NAME_RE.match(Path(name).name)
    if not match:
        return None
    return ParsedFileName(
        project_name=match.group("project"),
        episode_number=int(match.group("episode")),
        shot_number=match.group("shot"),
        suffix=match.group("suffix"),
        version=match.group("version"),
        extension=match.group("ext"),
    )


def build_job(
    source: Path,
    *,
    catalog: ProjectCatalog,
    default_color_space: ColorSpace = ColorSpace.P3_D65_PQ,
) -> UploadJob:
    parsed = parse_file_name(source.name)
    project = catalog.find_by_episode(parsed.episode_number) if parsed else None
    color_space = project.color_space if project else default_color_space
    return UploadJob(
        source_path=source,
        parsed=parsed,
        project=project,
        color_space=color_space,
    )


def build_jobs(
    sources: Sequence[Path],
    *,
    catalog: ProjectCatalog,
    default_color_space: ColorSpace = ColorSpace.P3_D65_PQ,
) -> List[UploadJob]:
    """Create one pending job per existing file; directories and missing paths are skipped."""

    jobs: List[UploadJob] = []
    for source in sources:
        path = Path(source).expanduser()
        if not path.is_file():
            continue
        jobs.append(build_job(path.resolve(), catalog=catalog, default_color_space=default_color_space))
    return jobs


def iter_preview_lines(jobs: Iterable[UploadJob]) -> Iterable[str]:
    header = (
        f"{'#':>3}  {'ID':<8}  {'Status':<16}  {'Project':<12}  {'Color':<10}  "
        f"{'File':<36}  Destination"
    )
    yield header
    yield '-' * len(header)
    for index, job in enumerate(jobs, start=1):
        project = job.project.display_name if job.project else '-'
        yield (
            f"{index:>3}  {job.id[:8]:<8}  {job.status.label:<16}  {project:<12}  "
            f"{job.color_space.value:<10}  {job.file_name:<36}  {job.remote_uri or '-'}"
        )
        if isinstance(job.status, Failed):
            yield f"{'':>3}  {'':<8}  {str(job.status)}"
