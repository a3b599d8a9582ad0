from dataclasses import dataclass
from pathlib import Path

import huggingface_hub.constants
import pytest
from huggingface_hub.errors import DryRunError

from dictate.core import model_store
from dictate.core.model_store import available_models, ensure_model, format_size, resolve_repo_id


@dataclass
class FakeFileInfo:
    filename: str
    file_size: int
    will_download: bool


class FakeHub:
    def __init__(self, snapshot: Path, infos=None, offline=False, cached=True):
        self.snapshot = snapshot
        self.infos = infos or []
        self.offline = offline
        self.cached = cached
        self.downloaded = []

    def snapshot_download(self, **kwargs):
        if kwargs.get("dry_run"):
            if self.offline:
                raise DryRunError("Dry run cannot be performed as the repository cannot be accessed.")
            return self.infos
        assert kwargs["local_files_only"]
        if not self.cached:
            raise FileNotFoundError("no snapshot")
        return str(self.snapshot)

    def hf_hub_download(self, repo_id, filename, subfolder, tqdm_class, **kwargs):
        self.downloaded.append((filename, subfolder))
        size = next(info.file_size for info in self.infos if info.filename.endswith(filename))
        bar = tqdm_class(total=size, unit="B", unit_scale=True)
        bar.update(size)
        bar.close()
        return str(self.snapshot / filename)


@pytest.fixture
def hub(tmp_path, monkeypatch):
    fake = FakeHub(tmp_path / "snapshot")
    monkeypatch.setattr(model_store.huggingface_hub, "snapshot_download", fake.snapshot_download)
    monkeypatch.setattr(model_store.huggingface_hub, "hf_hub_download", fake.hf_hub_download)
    return fake


def test_catalog_contains_default_model():
    names = [model.name for model in available_models()]
    assert "small" in names
    assert len(names) == len(set(names))


@pytest.mark.parametrize(
    "size, expected",
    [(512, "512 B"), (75_000_000, "75.0 MB"), (1_530_000_000, "1.5 GB")],
)
def test_format_size(size, expected):
    assert format_size(size) == expected


def test_resolve_repo_id():
    assert resolve_repo_id("small") == "Systran/faster-whisper-small"
    assert resolve_repo_id("me/custom-model") == "me/custom-model"
    with pytest.raises(ValueError):
        resolve_repo_id("enormous")


def test_downloads_missing_files_with_progress(hub, tmp_path):
    hub.infos = [
        FakeFileInfo("config.json", 20, will_download=False),
        FakeFileInfo("model.bin", 60, will_download=True),
        FakeFileInfo("sub/vocabulary.txt", 20, will_download=True),
    ]
    reported = []

    path = ensure_model("small", tmp_path / "models", progress_callback=reported.append)

    assert path == tmp_path / "snapshot"
    assert hub.downloaded == [("model.bin", None), ("vocabulary.txt", "sub")]
    assert reported[0] == 20
    assert reported[-1] == 100
    assert reported == sorted(reported)


def test_fully_cached_model_reports_complete(hub, tmp_path):
    hub.infos = [FakeFileInfo("model.bin", 60, will_download=False)]
    reported = []

    ensure_model("small", tmp_path / "models", progress_callback=reported.append)

    assert hub.downloaded == []
    assert reported == [100]


def test_offline_uses_local_cache(hub, tmp_path):
    hub.offline = True
    reported = []

    assert ensure_model("small", tmp_path / "models", progress_callback=reported.append) == tmp_path / "snapshot"
    assert reported == [100]


def test_offline_without_cache_fails(hub, tmp_path):
    hub.offline = True
    hub.cached = False

    with pytest.raises(RuntimeError, match="no local cache"):
        ensure_model("small", tmp_path / "models")


def test_offline_hub_without_cache_reports_missing_cache(tmp_path, monkeypatch):
    # Real hub client, forced offline: the dry run itself fails.
    monkeypatch.setattr(huggingface_hub.constants, "HF_HUB_OFFLINE", True)

    with pytest.raises(RuntimeError, match="no local cache"):
        ensure_model("tiny", tmp_path / "models")
