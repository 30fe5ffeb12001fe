"""Shared test fixtures and in-memory fakes for the store and media tools."""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from vfx_upload.errors import MediaToolError
from vfx_upload.history import JobHistoryStore
from vfx_upload.models import ProbeResult
from vfx_upload.muxing import AudioMuxingService
from vfx_upload.projects import ProjectCatalog
from vfx_upload.resolver import S3PathResolver
from vfx_upload.runner import UploadManager
from vfx_upload.session import UploadSession
from vfx_upload.storage import CredentialStatus, ObjectStore

EP201_BASE = "CLIENTS/Sync_Reed/03_MyShow/MYSHOW_S02/201/20_WORKING"
BUCKET = "sync-services"


class FakeStore(ObjectStore):
    """Object store held in dictionaries; records every call."""

    def __init__(self) -> None:
        self.listings: Dict[Tuple[str, str], List[str]] = {}
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.list_calls: List[Tuple[str, str]] = []
        self.uploads: List[dict] = []
        self.copies: List[Tuple[str, str, str]] = []
        self.deletes: List[Tuple[str, str]] = []
        self.list_delay = 0.0
        self.upload_error: Optional[Exception] = None
        self.credentials = CredentialStatus.valid("123456789012")
        self._lock = threading.Lock()

    def list_prefix(self, bucket, prefix):
        with self._lock:
            self.list_calls.append((bucket, prefix))
        if self.list_delay:
            time.sleep(self.list_delay)
        return list(self.listings.get((bucket, prefix), []))

    def upload_file(self, local_path, bucket, key, *, metadata=None, on_progress=None):
        if self.upload_error is not None:
            raise self.upload_error
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        with self._lock:
            self.uploads.append({
                "local_path": Path(local_path),
                "bucket": bucket,
                "key": key,
                "metadata": dict(metadata or {}),
            })
            self.objects[(bucket, key)] = Path(local_path).read_bytes()

    def download_file(self, bucket, key, local_path):
        Path(local_path).write_bytes(self.objects[(bucket, key)])

    def copy_object(self, bucket, source_key, destination_key):
        self.copies.append((bucket, source_key, destination_key))
        self.objects[(bucket, destination_key)] = self.objects.get((bucket, source_key), b"")

    def delete_object(self, bucket, key):
        self.deletes.append((bucket, key))
        self.objects.pop((bucket, key), None)

    def object_exists(self, bucket, key):
        return (bucket, key) in self.objects

    def check_credentials(self):
        return self.credentials


class FakeTools:
    """Stands in for MediaTools: writes placeholder outputs instead of running ffmpeg."""

    def __init__(self, probe_result: Optional[ProbeResult] = None) -> None:
        self.probe_result = probe_result or ProbeResult(has_audio_track=False)
        self.calls: List[tuple] = []
        self.fail_mux = False
        self.fail_tag = False

    def probe(self, path):
        self.calls.append(("probe", Path(path)))
        return self.probe_result

    def mix_audio(self, inputs, output):
        self.calls.append(("mix_audio", [Path(p).name for p in inputs], Path(output)))
        Path(output).write_bytes(b"mixed")
        return Path(output)

    def mux(self, video, audio, output, color_flags=None):
        self.calls.append(("mux", Path(video), Path(audio), Path(output), list(color_flags or [])))
        Path(output).write_bytes(b"partial")
        if self.fail_mux:
            raise MediaToolError(["ffmpeg"], 1, "mux exploded")
        return Path(output)

    def tag_color(self, source, output, color_flags):
        self.calls.append(("tag_color", Path(source), Path(output), list(color_flags)))
        if self.fail_tag:
            raise MediaToolError(["ffmpeg"], 1, "tag exploded")
        Path(output).write_bytes(b"tagged")
        return Path(output)

    def call_names(self):
        return [call[0] for call in self.calls]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> ProjectCatalog:
    return ProjectCatalog()


@pytest.fixture
def project(catalog):
    return catalog.find_by_episode(201)


@pytest.fixture
def resolver(store, clock) -> S3PathResolver:
    return S3PathResolver(store, clock=clock)


@pytest.fixture
def muxer(store, resolver, tools, tmp_path) -> AudioMuxingService:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return AudioMuxingService(store, resolver, tools, temp_dir=scratch)


@pytest.fixture
def renders_dir(tmp_path: Path) -> Path:
    d = tmp_path / "renders"
    d.mkdir()
    return d


@pytest.fixture
def make_render(renders_dir):
    """Factory fixture writing a placeholder render file."""

    def _make(name: str) -> Path:
        path = renders_dir / name
        path.write_bytes(b"render")
        return path

    return _make


@pytest.fixture
def shot_052(store):
    """Remote layout for shot 201_052 with a merged plate-audio stem."""

    store.listings[(BUCKET, f"{EP201_BASE}/")] = [
        "MyShow_201_051_owl/",
        "MyShow_201_052_bluebird/",
        "notes.txt",
    ]
    plates = f"{EP201_BASE}/MyShow_201_052_bluebird/01_Plates/"
    store.listings[(BUCKET, plates)] = ["MyShow_201_052_merged.wav", "MyShow_201_052_ref.jpg"]
    store.objects[(BUCKET, plates + "MyShow_201_052_merged.wav")] = b"wav"
    return store


@pytest.fixture
def make_session(store, tools, tmp_path):
    """Factory fixture for an UploadSession over the fakes."""

    def _make(**overrides) -> UploadSession:
        resolver = S3PathResolver(store)
        muxer = AudioMuxingService(store, resolver, tools)
        defaults = dict(
            store=store,
            catalog=ProjectCatalog(),
            history=JobHistoryStore.in_directory(tmp_path / "data"),
            manager=UploadManager(store, resolver, muxer, max_concurrent=3),
        )
        defaults.update(overrides)
        return UploadSession(**defaults)

    return _make
