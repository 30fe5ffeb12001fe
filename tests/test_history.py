"""Tests for the job-history snapshot and restore rules."""

import json
from pathlib import Path

from vfx_upload.history import JobHistoryStore, PersistedJob
from vfx_upload.models import (
    ColorSpace,
    Completed,
    Failed,
    FailureKind,
    MuxingAudio,
    Pending,
    Tagged,
    Uploading,
)
from vfx_upload.planner import build_job

KEY = "base/MyShow_201_052_bluebird/03_VFX/MyShow_201_052_vfx_v001.mov"


def _job(make_render, catalog, name="MyShow_201_052_vfx_v001.mov"):
    job = build_job(make_render(name), catalog=catalog)
    job.destination_path = KEY
    return job


def test_snapshot_uses_camel_case_keys(tmp_path, make_render, catalog):
    job = _job(make_render, catalog)
    history = JobHistoryStore(tmp_path / "job-history.json")

    history.save_jobs([job])

    payload = json.loads((tmp_path / "job-history.json").read_text())
    assert payload == [{
        "id": job.id,
        "sourceURL": str(job.source_path),
        "fileName": "MyShow_201_052_vfx_v001.mov",
        "s3DestinationPath": KEY,
        "colorSpaceRawValue": "P3-D65-PQ",
        "status": "pending",
        "episodeNumber": 201,
        "failureMessage": None,
        "failureKind": None,
        "muxedFileURL": None,
        "taggedFileURL": None,
    }]


def test_round_trip_preserves_identity_and_statuses(tmp_path, make_render, catalog):
    done = _job(make_render, catalog, "MyShow_201_052_vfx_v001.mov")
    done.status = Completed()
    broken = _job(make_render, catalog, "MyShow_202_010_vfx_v002.mov")
    broken.color_space = ColorSpace.REC709
    broken.status = Failed("Tag failed: boom", FailureKind.TAGGING)
    history = JobHistoryStore(tmp_path / "job-history.json")

    history.save_jobs([done, broken])
    restored = history.load_jobs(catalog)

    assert [job.id for job in restored] == [done.id, broken.id]
    assert isinstance(restored[0].status, Completed)
    assert restored[0].destination_path == KEY
    assert restored[0].project.id == "myshow_201"
    assert restored[1].status == Failed("Tag failed: boom", FailureKind.TAGGING)
    assert restored[1].color_space is ColorSpace.REC709
    assert restored[1].parsed.episode_number == 202


def test_in_flight_statuses_are_stored_as_pending(make_render, catalog):
    for status in (MuxingAudio(), Uploading(0.4)):
        job = _job(make_render, catalog)
        job.status = status
        assert PersistedJob.from_job(job).status == "pending"


def test_tagged_without_artifacts_restores_as_pending(tmp_path, make_render, catalog):
    job = _job(make_render, catalog)
    muxed = tmp_path / "gone_muxed.mov"
    job.muxed_path = muxed
    job.status = Tagged()
    entry = PersistedJob.from_job(job)

    restored = entry.to_job(catalog)

    assert isinstance(restored.status, Pending)
    assert restored.muxed_path is None
    assert restored.file_to_upload == restored.source_path


def test_tagged_with_surviving_artifact_restores_as_tagged(make_render, catalog):
    job = _job(make_render, catalog)
    job.muxed_path = make_render("MyShow_201_052_vfx_v001_muxed.mov")
    job.status = Tagged()

    restored = PersistedJob.from_job(job).to_job(catalog)

    assert isinstance(restored.status, Tagged)
    assert restored.file_to_upload == job.muxed_path


def test_lost_artifact_restores_the_canonical_key_name(tmp_path, make_render, catalog):
    job = _job(make_render, catalog)
    job.muxed_path = tmp_path / "MyShow_201_052_vfx_v001_muxed.mov"
    job.destination_path = KEY.replace("v001.mov", "v001_muxed.mov")
    job.status = Tagged()

    restored = PersistedJob.from_job(job).to_job(catalog)

    assert isinstance(restored.status, Pending)
    assert restored.destination_path == KEY


def test_completed_entry_keeps_the_uploaded_key(tmp_path, make_render, catalog):
    job = _job(make_render, catalog)
    job.muxed_path = tmp_path / "MyShow_201_052_vfx_v001_muxed.mov"
    job.destination_path = KEY.replace("v001.mov", "v001_muxed.mov")
    job.status = Completed()

    restored = PersistedJob.from_job(job).to_job(catalog)

    assert isinstance(restored.status, Completed)
    assert restored.destination_path.endswith("_muxed.mov")
    assert restored.muxed_path is None


def test_failed_entry_without_message_gets_default():
    entry = PersistedJob.from_dict({
        "id": "abc",
        "sourceURL": "/renders/x.mov",
        "status": "failed",
        "failureKind": "nonsense",
    })
    status = entry.to_job(_EmptyCatalog()).status

    assert status == Failed("Unknown error", FailureKind.OTHER)


class _EmptyCatalog:
    def find_by_episode(self, episode):
        return None


def test_unreadable_history_yields_empty_list(tmp_path):
    path = tmp_path / "job-history.json"
    path.write_text("{not json")

    assert JobHistoryStore(path).load() == []
    assert JobHistoryStore(tmp_path / "missing.json").load() == []


def test_bad_entries_are_skipped(tmp_path):
    path = tmp_path / "job-history.json"
    path.write_text(json.dumps([
        {"id": "ok", "sourceURL": "/renders/a.mov", "status": "completed"},
        {"id": "no-source", "status": "pending"},
        {"id": "weird", "sourceURL": "/renders/b.mov", "status": "exploded"},
        "not an object",
    ]))

    entries = JobHistoryStore(path).load()

    assert [entry.id for entry in entries] == ["ok"]
    assert entries[0].file_name == "a.mov"
    assert entries[0].source_path == str(Path("/renders/a.mov"))
