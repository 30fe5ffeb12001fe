"""Decides which container rewrites a render needs before upload, and runs them."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import MediaToolError, ResolverError, StorageError
from .models import (
    ColorSpace,
    FailureKind,
    MuxingAudio,
    ProbeResult,
    Tagged,
    TaggingColor,
    UploadJob,
)
from .muxing import AudioMuxingService
from .resolver import replace_file_name

logger = logging.getLogger(__name__)

# Failures a tagging step may raise without aborting the job outright.
TAG_STEP_ERRORS = (MediaToolError, ResolverError, StorageError, OSError)


class TagAction(str, enum.Enum):
    MUX_WITH_COLOR = "mux_with_color"  # one ffmpeg pass: audio + color flags
    MUX_ONLY = "mux_only"
    COLOR_ONLY = "color_only"  # stream-copy remux with color flags
    NONE = "none"


@dataclass(frozen=True)
class TagPlan:
    action: TagAction
    color_flags: Optional[List[str]] = None

    @property
    def needs_audio_mux(self) -> bool:
        return self.action in (TagAction.MUX_WITH_COLOR, TagAction.MUX_ONLY)

    @property
    def needs_color_tag(self) -> bool:
        return self.action in (TagAction.MUX_WITH_COLOR, TagAction.COLOR_ONLY)


def needs_color_tag(probe: ProbeResult, target: ColorSpace) -> bool:
    return target.ffmpeg_color_flags is not None and not probe.already_tagged(target)


def decide(probe: ProbeResult, target: ColorSpace) -> TagPlan:
    """Map a probe result onto the four-way decision table."""

    color = needs_color_tag(probe, target)
    flags = target.ffmpeg_color_flags if color else None
    if not probe.has_audio_track:
        return TagPlan(TagAction.MUX_WITH_COLOR if color else TagAction.MUX_ONLY, flags)
    if color:
        return TagPlan(TagAction.COLOR_ONLY, flags)
    return TagPlan(TagAction.NONE)


def tag_job(job: UploadJob, muxer: AudioMuxingService) -> None:
    """Probe, mux and/or color-tag *job*, leaving it ``tagged`` or ``failed``.

    A step that fails after an earlier step produced an artifact does not fail
    the job: the artifact is uploaded instead. The job only fails when an
    error occurred and the untouched source would be uploaded.
    """

    name = job.file_name
    probe = muxer.probe(job.source_path)
    logger.info(
        "[Tag] %s: probe -> has_audio=%s color=%s/%s/%s",
        name,
        probe.has_audio_track,
        probe.color_primaries,
        probe.color_transfer,
        probe.color_space,
    )

    plan = decide(probe, job.color_space)
    logger.info("[Tag] %s: action=%s target=%s", name, plan.action.value, job.color_space.value)

    job.transition(MuxingAudio())
    did_mux = False
    step_error: Optional[str] = None

    if plan.needs_audio_mux:
        try:
            muxed = muxer.mux_audio_if_needed(job, probe, plan.color_flags)
        except TAG_STEP_ERRORS as exc:
            step_error = str(exc)
            job.muxed_path = None
            logger.warning("[Tag] %s: mux failed -> %s", name, exc)
        else:
            if muxed is not None:
                job.muxed_path = muxed
                did_mux = True
                logger.info("[Tag] %s: muxed -> %s", name, muxed.name)
            else:
                logger.info("[Tag] %s: mux skipped", name)

    # Without a mux the color flags were not applied yet.
    if plan.needs_color_tag and not did_mux:
        job.transition(TaggingColor())
        try:
            tagged = muxer.tag_color_space_if_needed(job.source_path, probe, job.color_space)
        except TAG_STEP_ERRORS as exc:
            step_error = step_error or str(exc)
            job.tagged_path = None
            logger.warning("[Tag] %s: color tag failed -> %s", name, exc)
        else:
            if tagged is not None:
                job.tagged_path = tagged
                logger.info("[Tag] %s: color tagged -> %s", name, tagged.name)

    upload_path = job.file_to_upload
    is_original = upload_path == job.source_path
    if is_original and step_error:
        job.fail(f"Tag failed: {step_error}", FailureKind.TAGGING)
        return

    if not is_original:
        job.destination_path = replace_file_name(job.destination_path, upload_path.name)

    logger.info("[Tag] %s: done -> will upload %s", name, upload_path.name)
    job.transition(Tagged())
