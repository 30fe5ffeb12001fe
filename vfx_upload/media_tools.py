"""Thin wrappers around the ffmpeg and ffprobe binaries."""
from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import imageio_ffmpeg

from .errors import MediaToolError
from .models import ProbeResult

logger = logging.getLogger(__name__)

_MIN_THREADS = 2
THREAD_ENV_KEYS = ("VFX_UPLOAD_FFMPEG_THREADS", "FFMPEG_THREADS")
DEFAULT_TIMEOUT = 3600  # seconds; long renders remux slowly on network volumes
COMMON_BINARY_DIRS = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin")

_ffmpeg_cache: Optional[str] = None
_ffprobe_cache: Optional[str] = None

CommandRunner = Callable[..., subprocess.CompletedProcess]


def resolve_threads(env: Optional[Mapping[str, str]] = None) -> Tuple[int, str]:
    """ffmpeg thread count: VFX_UPLOAD_FFMPEG_THREADS, then FFMPEG_THREADS, then the CPU count."""
    env_map: Mapping[str, str] = env if env is not None else os.environ
    for key in THREAD_ENV_KEYS:
        raw = (env_map.get(key) or "").strip()
        if raw.isdigit() and int(raw) >= 1:
            return int(raw), raw

    count = max(_MIN_THREADS, os.cpu_count() or _MIN_THREADS)
    return count, str(count)


FFMPEG_THREADS, FFMPEG_THREAD_STR = resolve_threads()


def _find_binary(name: str, env_key: str) -> Optional[str]:
    env_binary = os.environ.get(env_key)
    if env_binary and os.path.exists(env_binary):
        logger.info("Found %s via environment: %s", name, env_binary)
        return env_binary

    found = shutil.which(name)
    if found:
        logger.debug("Found %s in PATH: %s", name, found)
        return found

    for directory in COMMON_BINARY_DIRS:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            logger.debug("Found %s at %s", name, candidate)
            return candidate
    return None


def get_ffmpeg_path() -> str:
    """Locate ffmpeg, falling back to the binary bundled with imageio-ffmpeg."""
    global _ffmpeg_cache

    if _ffmpeg_cache is not None:
        return _ffmpeg_cache

    found = _find_binary("ffmpeg", "FFMPEG_BINARY")
    if found is None:
        found = imageio_ffmpeg.get_ffmpeg_exe()
        logger.info("Using ffmpeg from imageio-ffmpeg: %s", found)
    _ffmpeg_cache = found
    return _ffmpeg_cache


def get_ffprobe_path() -> str:
    """Locate ffprobe; the bare name is returned when nothing is found so the error surfaces on use."""
    global _ffprobe_cache

    if _ffprobe_cache is not None:
        return _ffprobe_cache

    _ffprobe_cache = _find_binary("ffprobe", "FFPROBE_BINARY") or "ffprobe"
    return _ffprobe_cache


class MediaTools:
    """Probe, mix, mux and color-tag media files with ffmpeg/ffprobe."""

    def __init__(
        self,
        *,
        ffmpeg: Optional[str] = None,
        ffprobe: Optional[str] = None,
        runner: CommandRunner = subprocess.run,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self._ffmpeg = ffmpeg
        self._ffprobe = ffprobe
        self._runner = runner
        self._timeout = timeout

    @property
    def ffmpeg(self) -> str:
        if self._ffmpeg is None:
            self._ffmpeg = get_ffmpeg_path()
        return self._ffmpeg

    @property
    def ffprobe(self) -> str:
        if self._ffprobe is None:
            self._ffprobe = get_ffprobe_path()
        return self._ffprobe

    def run(self, args: Sequence[str]) -> str:
        """Run *args* and return stdout, raising MediaToolError on any failure."""

        command = [str(arg) for arg in args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = self._runner(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise MediaToolError(command, exc.returncode, exc.stderr or "") from exc
        except subprocess.TimeoutExpired as exc:
            raise MediaToolError(command, -1, f"Timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise MediaToolError(command, -1, str(exc)) from exc
        return result.stdout or ""

    # ------------------------------------------------------------------
    # Probe
    # ------------------------------------------------------------------
    def probe(self, path: Path) -> ProbeResult:
        """Single ffprobe call returning audio presence and video color tags.

        When the file cannot be probed the result reports an audio track and
        unknown color, so muxing is skipped rather than risking a duplicate
        audio stream.
        """

        fallback = ProbeResult(has_audio_track=True)
        try:
            stdout = self.run([
                self.ffprobe,
                "-v", "quiet",
                "-show_entries", "stream=codec_type,color_primaries,color_transfer,color_space",
                "-of", "json",
                str(path),
            ])
            payload = json.loads(stdout)
        except (MediaToolError, ValueError) as exc:
            logger.warning("Probe failed for %s: %s", Path(path).name, exc)
            return fallback

        streams = payload.get("streams") if isinstance(payload, dict) else None
        if not isinstance(streams, list):
            return fallback

        has_audio = any(stream.get("codec_type") == "audio" for stream in streams)
        video = next((stream for stream in streams if stream.get("codec_type") == "video"), None)
        if video is None:
            return ProbeResult(has_audio_track=has_audio)
        return ProbeResult(
            has_audio_track=has_audio,
            color_primaries=video.get("color_primaries"),
            color_transfer=video.get("color_transfer"),
            color_space=video.get("color_space"),
        )

    # ------------------------------------------------------------------
    # Transcodes
    # ------------------------------------------------------------------
    def mix_audio(self, inputs: Sequence[Path], output: Path) -> Path:
        """Mix audio stems with equal, non-normalized gains into one stereo file."""

        if not inputs:
            raise ValueError("At least one audio input is required")
        args: List[str] = [self.ffmpeg]
        for stem in inputs:
            args += ["-i", str(stem)]
        args += [
            "-filter_complex", f"amix=inputs={len(inputs)}:normalize=0",
            "-ac", "2",
            "-threads", FFMPEG_THREAD_STR,
            "-loglevel", "error",
            "-y", str(output),
        ]
        self.run(args)
        return output

    def mux(self, video: Path, audio: Path, output: Path, color_flags: Optional[Sequence[str]] = None) -> Path:
        """Copy the video stream, encode *audio* as AAC, and optionally apply color flags in the same pass."""

        args: List[str] = [
            self.ffmpeg,
            "-i", str(video),
            "-i", str(audio),
            "-map", "0:v",
            "-map", "1:a",
            "-c:v", "copy",
            "-c:a", "aac",
            "-shortest",
        ]
        if color_flags:
            args += list(color_flags)
        args += ["-threads", FFMPEG_THREAD_STR, "-loglevel", "error", "-y", str(output)]
        self.run(args)
        return output

    def tag_color(self, source: Path, output: Path, color_flags: Sequence[str]) -> Path:
        """Container remux that only rewrites color tags; no re-encoding."""

        args: List[str] = [
            self.ffmpeg,
            "-i", str(source),
            "-c:v", "copy",
            "-c:a", "copy",
        ]
        args += list(color_flags)
        args += ["-loglevel", "error", "-y", str(output)]
        self.run(args)
        return output
