"""End-to-end tests for UploadSession over the in-memory store and media tools."""

import json

import pytest

from conftest import BUCKET, EP201_BASE
from vfx_upload.models import Completed, Failed, FailureKind, Pending, ProbeResult, Tagged
from vfx_upload.storage import CredentialStatus

RESOLVED_KEY = f"{EP201_BASE}/MyShow_201_052_bluebird/03_VFX/MyShow_201_052_vfx_v001.mov"


def _labels(job):
    seen = ["pending"]
    job.add_listener(lambda j, old, new: seen.append(new.label) if new.label != seen[-1] else None)
    return seen


def test_full_pipeline_uploads_muxed_artifact(shot_052, make_session, make_render, tools):
    session = make_session()
    session.check_credentials()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")], resolve=False)
    seen = _labels(job)

    session.resolve_missing()
    assert job.destination_path == RESOLVED_KEY

    assert session.can_tag
    session.start_tagging()
    assert isinstance(job.status, Tagged)
    assert session.can_upload

    session.start_upload()

    assert seen == ["pending", "resolvingPath", "pending", "muxingAudio", "tagged", "uploading", "completed"]
    assert isinstance(job.status, Completed)
    [upload] = shot_052.uploads
    assert upload["local_path"] == job.source_path.with_name("MyShow_201_052_vfx_v001_muxed.mov")
    assert upload["key"] == f"{EP201_BASE}/MyShow_201_052_bluebird/03_VFX/MyShow_201_052_vfx_v001_muxed.mov"
    assert upload["bucket"] == BUCKET
    assert upload["metadata"] == {"color-space": "P3-D65-PQ"}
    assert job.remote_uri == f"s3://{BUCKET}/{upload['key']}"


def test_unparseable_name_waits_for_a_manual_path(make_session, make_render, store):
    session = make_session()
    session.check_credentials()

    [job] = session.add_files([make_render("random_render.mov")])

    assert isinstance(job.status, Pending)
    assert job.destination_path == ""
    assert store.list_calls == []
    assert not session.can_tag
    assert session.start_tagging() == []
    assert isinstance(job.status, Pending)


def test_missing_shot_folder_fails_resolution_and_can_be_fixed_by_hand(shot_052, make_session, make_render):
    session = make_session()
    session.check_credentials()

    [job] = session.add_files([make_render("MyShow_201_099_vfx_v001.mov")])

    assert job.status == Failed("Path resolution: No shot folder matching 'MyShow_201_099'", FailureKind.RESOLUTION)
    assert job.status.can_edit_path
    assert job.destination_path == ""

    session.set_destination(job, "/manual/shot_099/MyShow_201_099_vfx_v001.mov/")

    assert isinstance(job.status, Pending)
    assert job.destination_path == "manual/shot_099/MyShow_201_099_vfx_v001.mov"
    assert session.can_tag


def test_set_destination_rejects_jobs_in_progress(shot_052, make_session, make_render, tools):
    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()

    with pytest.raises(ValueError):
        session.set_destination(job, "elsewhere/x.mov")
    with pytest.raises(ValueError):
        session.set_destination(job, "  ")


def test_retry_re_resolves_after_resolution_failure(shot_052, make_session, make_render):
    session = make_session()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")], resolve=False)
    shot_052.listings[(BUCKET, f"{EP201_BASE}/")] = []
    session.resolve_missing()
    assert isinstance(job.status, Failed)

    shot_052.listings[(BUCKET, f"{EP201_BASE}/")] = ["MyShow_201_052_bluebird/"]
    session.manager.resolver.invalidate()
    session.retry(job)

    assert isinstance(job.status, Pending)
    assert job.destination_path == RESOLVED_KEY


def test_upload_failure_is_reported_and_retryable(shot_052, make_session, make_render, tools):
    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    session.check_credentials()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()
    shot_052.upload_error = RuntimeError("connection reset")

    session.start_upload()

    assert job.status == Failed("connection reset", FailureKind.UPLOAD)
    session.retry(job)
    assert isinstance(job.status, Pending)
    assert job.destination_path == RESOLVED_KEY


def test_retried_upload_names_the_file_actually_sent(shot_052, make_session, make_render, tools):
    session = make_session()
    session.check_credentials()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()
    assert job.destination_path.endswith("_muxed.mov")
    shot_052.upload_error = RuntimeError("connection reset")
    session.start_upload()
    assert job.status.kind is FailureKind.UPLOAD

    shot_052.upload_error = None
    session.retry(job)
    assert job.destination_path == RESOLVED_KEY

    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session.start_tagging()
    session.start_upload()

    assert isinstance(job.status, Completed)
    upload = shot_052.uploads[-1]
    assert upload["local_path"] == job.source_path
    assert upload["key"] == RESOLVED_KEY
    assert upload["key"].rpartition("/")[2] == upload["local_path"].name
    assert job.destination_path == RESOLVED_KEY


def test_gating_requires_valid_credentials(shot_052, make_session, make_render, store):
    session = make_session()
    session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    assert not session.can_tag

    store.credentials = CredentialStatus.expired()
    session.check_credentials()
    assert not session.can_tag
    assert session.can_quit


def test_milestones_are_persisted_and_restored(shot_052, make_session, make_render, tmp_path, tools):
    tools.probe_result = ProbeResult(False, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()

    history_file = tmp_path / "data" / "job-history.json"
    [entry] = json.loads(history_file.read_text())
    assert entry["status"] == "tagged"
    assert entry["muxedFileURL"] == str(job.muxed_path)

    restored = make_session()
    [again] = restored.restore()
    assert again.id == job.id
    assert isinstance(again.status, Tagged)
    assert again.file_to_upload == job.muxed_path


def test_clear_and_remove(shot_052, make_session, make_render, tools):
    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    session.check_credentials()
    done, kept = session.add_files([
        make_render("MyShow_201_052_vfx_v001.mov"),
        make_render("random_render.mov"),
    ])
    session.start_tagging()
    session.start_upload()
    assert isinstance(done.status, Completed)

    assert session.clear_completed() == 1
    assert session.jobs == [kept]

    session.remove_job(kept)
    assert session.jobs == []


def test_rename_and_delete_on_remote(shot_052, make_session, make_render, tools):
    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    session.check_credentials()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()
    session.start_upload()

    new_key = session.rename_on_remote(job, "final cut v2.mov")

    folder = f"{EP201_BASE}/MyShow_201_052_bluebird/03_VFX"
    assert new_key == f"{folder}/final_cut_v2.mov"
    assert shot_052.copies == [(BUCKET, RESOLVED_KEY, new_key)]
    assert shot_052.deletes == [(BUCKET, RESOLVED_KEY)]
    assert job.destination_path == new_key
    assert isinstance(job.status, Completed)

    session.delete_from_remote(job)
    assert (BUCKET, new_key) not in shot_052.objects
    assert session.jobs == []


def test_remote_actions_need_an_uploaded_object(make_session, make_render):
    session = make_session()
    [job] = session.add_files([make_render("random_render.mov")])

    assert session.remote_uri(job) is None
    with pytest.raises(ValueError):
        session.rename_on_remote(job, "x.mov")
    with pytest.raises(ValueError):
        session.delete_from_remote(job)


def test_find_by_id_prefix(make_session, make_render):
    session = make_session()
    [job] = session.add_files([make_render("random_render.mov")])

    assert session.find(job.id[:6]) is job
    assert session.find("zzzz") is None


def test_rename_refuses_to_overwrite_an_existing_object(shot_052, make_session, make_render, tools):
    tools.probe_result = ProbeResult(True, "smpte432", "smpte2084", "bt2020nc")
    session = make_session()
    session.check_credentials()
    [job] = session.add_files([make_render("MyShow_201_052_vfx_v001.mov")])
    session.start_tagging()
    session.start_upload()
    taken = RESOLVED_KEY.replace("v001.mov", "v002.mov")
    shot_052.objects[(BUCKET, taken)] = b"someone else's render"

    with pytest.raises(ValueError, match="already exists"):
        session.rename_on_remote(job, "MyShow_201_052_vfx_v002.mov")

    assert shot_052.copies == []
    assert shot_052.deletes == []
    assert shot_052.objects[(BUCKET, taken)] == b"someone else's render"
    assert job.destination_path == RESOLVED_KEY
