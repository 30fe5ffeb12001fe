"""Runtime configuration assembled from the environment (and an optional .env file)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .models import ColorSpace
from .scheduler import DEFAULT_MAX_CONCURRENT
from .storage import S3Config, s3_config_from_env

APP_NAME = "VFX Upload"
DEFAULT_DATA_DIR = Path.home() / ".vfx-upload"
PROJECTS_FILENAME = "projects.json"


@dataclass(frozen=True)
class UploaderConfig:
    """Immutable runtime configuration."""

    data_dir: Path
    s3: S3Config
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    default_color_space: ColorSpace = ColorSpace.P3_D65_PQ

    @property
    def projects_path(self) -> Path:
        return self.data_dir / PROJECTS_FILENAME


def _resolve_max_concurrent(raw: Optional[str]) -> int:
    try:
        configured = int(raw or "0")
    except (TypeError, ValueError):
        configured = 0
    # The setting can only lower the ceiling.
    return min(configured, DEFAULT_MAX_CONCURRENT) if configured > 0 else DEFAULT_MAX_CONCURRENT


def load_config(env: Optional[Mapping[str, str]] = None) -> UploaderConfig:
    env_map: Mapping[str, str] = env if env is not None else os.environ

    raw_dir = (env_map.get("VFX_UPLOAD_DATA_DIR") or "").strip()
    data_dir = Path(raw_dir).expanduser() if raw_dir else DEFAULT_DATA_DIR

    return UploaderConfig(
        data_dir=data_dir,
        s3=s3_config_from_env(env_map),
        max_concurrent=_resolve_max_concurrent(env_map.get("VFX_UPLOAD_MAX_CONCURRENT")),
        default_color_space=ColorSpace.from_value(env_map.get("VFX_UPLOAD_DEFAULT_COLOR_SPACE")),
    )
