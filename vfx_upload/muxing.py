"""Audio muxing and color tagging of render files before upload."""
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from .media_tools import MediaTools
from .models import ColorSpace, ProbeResult, UploadJob
from .resolver import S3PathResolver
from .storage import ObjectStore

logger = logging.getLogger(__name__)

MERGED_STEM_MARKER = "merged"
MUXED_SUFFIX = "_muxed"
TAGGED_SUFFIX = "_tagged"


def artifact_path(source: Path, suffix: str) -> Path:
    """Sibling of *source* named ``{stem}{suffix}{ext}``."""

    return source.with_name(f"{source.stem}{suffix}{source.suffix}")


class AudioMuxingService:
    """Fetches companion audio from the plates folder and rewrites render containers."""

    def __init__(
        self,
        store: ObjectStore,
        resolver: S3PathResolver,
        tools: Optional[MediaTools] = None,
        *,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._tools = tools or MediaTools()
        self._temp_dir = temp_dir

    def probe(self, path: Path) -> ProbeResult:
        return self._tools.probe(path)

    def mux_audio_if_needed(
        self,
        job: UploadJob,
        probe: ProbeResult,
        color_flags: Optional[Sequence[str]] = None,
    ) -> Optional[Path]:
        """Mux plate audio into a silent render; returns the muxed file or None when skipped.

        When *color_flags* is given the tags are written in the same ffmpeg pass.
        """

        project, parsed = job.project, job.parsed
        if project is None or parsed is None:
            return None
        if probe.has_audio_track:
            return None

        shot_folder = self._resolver.find_shot_folder(project, parsed.shot_prefix)
        stems = self._resolver.find_plates_audio(project, shot_folder)
        if not stems:
            logger.info("[Tag] %s: no plate audio in %s", job.file_name, shot_folder)
            return None

        output = artifact_path(job.source_path, MUXED_SUFFIX)
        with tempfile.TemporaryDirectory(prefix="vfx-upload-", dir=self._temp_dir) as tmp:
            tmp_dir = Path(tmp)
            merged = next((stem for stem in stems if MERGED_STEM_MARKER in stem.lower()), None)
            if merged is not None:
                audio = self._download(project, shot_folder, merged, tmp_dir)
            else:
                local_stems = [self._download(project, shot_folder, stem, tmp_dir) for stem in stems]
                audio = self._tools.mix_audio(local_stems, tmp_dir / "merged.wav")

            try:
                self._tools.mux(job.source_path, audio, output, color_flags)
            except Exception:
                _discard(output)
                raise
        return output

    def tag_color_space_if_needed(
        self,
        source: Path,
        probe: ProbeResult,
        target: ColorSpace,
    ) -> Optional[Path]:
        """Stand-alone color tagging by stream-copy remux; None when the file already matches."""

        color_flags = target.ffmpeg_color_flags
        if color_flags is None or probe.already_tagged(target):
            return None

        output = artifact_path(source, TAGGED_SUFFIX)
        try:
            self._tools.tag_color(source, output, color_flags)
        except Exception:
            _discard(output)
            raise
        return output

    def _download(self, project, shot_folder: str, file_name: str, directory: Path) -> Path:
        local = directory / Path(file_name).name
        key = self._resolver.plates_key(project, shot_folder, file_name)
        self._store.download_file(project.bucket, key, local)
        return local


def _discard(path: Path) -> None:
    if path.exists():
        path.unlink()
