from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable

import huggingface_hub
from huggingface_hub.errors import DryRunError, HfHubHTTPError
from faster_whisper.utils import _MODELS as FASTER_WHISPER_MODELS
from tqdm.auto import tqdm

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

ALLOW_PATTERNS = [
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
]


@dataclass(slots=True, frozen=True)
class ModelInfo:
    name: str
    size_bytes: int
    english_only: bool
    description: str


MODEL_CATALOG: tuple[ModelInfo, ...] = (
    ModelInfo("tiny", 75_000_000, False, "Fastest, lowest accuracy"),
    ModelInfo("tiny.en", 75_000_000, True, "Fastest, English only"),
    ModelInfo("base", 145_000_000, False, "Fast with fair accuracy"),
    ModelInfo("base.en", 145_000_000, True, "Fast, English only"),
    ModelInfo("small", 484_000_000, False, "Balanced speed and accuracy"),
    ModelInfo("small.en", 484_000_000, True, "Balanced, English only"),
    ModelInfo("medium", 1_530_000_000, False, "Accurate, slower"),
    ModelInfo("medium.en", 1_530_000_000, True, "Accurate, English only"),
    ModelInfo("large-v3", 3_090_000_000, False, "Most accurate, slowest"),
    ModelInfo("large-v3-turbo", 1_620_000_000, False, "Near large accuracy, much faster"),
)


def available_models() -> list[ModelInfo]:
    return list(MODEL_CATALOG)


def format_size(size_bytes: int) -> str:
    value = float(max(0, size_bytes))
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1000 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} GB"


def resolve_repo_id(model_name: str) -> str:
    if "/" in model_name:
        return model_name
    repo_id = FASTER_WHISPER_MODELS.get(model_name)
    if repo_id is None:
        raise ValueError(f"Unknown Whisper model: {model_name}")
    return repo_id


class _DownloadProgressTracker:
    """Aggregates per-file byte counts into one overall percentage."""

    def __init__(self, total_bytes: int, completed_bytes: int, callback: ProgressCallback | None) -> None:
        self.total_bytes = max(1, total_bytes)
        self.completed_bytes = max(0, min(completed_bytes, self.total_bytes))
        self.callback = callback
        self._last_emit = 0.0
        self._last_percent = -1

    def add_bytes(self, byte_count: float) -> None:
        if byte_count <= 0:
            return
        self.completed_bytes = min(self.total_bytes, self.completed_bytes + int(byte_count))
        self.emit(force=False)

    def finish(self) -> None:
        self.completed_bytes = self.total_bytes
        self.emit(force=True)

    def emit(self, force: bool) -> None:
        if self.callback is None:
            return
        percent = int(self.completed_bytes * 100 // self.total_bytes)
        now = time.monotonic()
        if percent == self._last_percent:
            return
        if not force and percent < 100 and (now - self._last_emit) < 0.2:
            return
        self.callback(percent)
        self._last_percent = percent
        self._last_emit = now

    def build_tqdm_class(self) -> type[tqdm]:
        tracker = self

        class CallbackTqdm(tqdm):
            def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
                # huggingface_hub passes a "name" kwarg some tqdm variants reject.
                kwargs.pop("name", None)
                kwargs["disable"] = True
                self._track_bytes = kwargs.get("unit") in {"B", "iB"} or bool(kwargs.get("unit_scale"))
                super().__init__(*args, **kwargs)

            def update(self, n=1) -> None:  # noqa: ANN001
                # A disabled bar does not advance self.n, so count here.
                super().update(n)
                if self._track_bytes and n:
                    tracker.add_bytes(float(n))

        return CallbackTqdm


class _SilentTqdm(tqdm):
    def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
        kwargs.pop("name", None)
        kwargs["disable"] = True
        super().__init__(*args, **kwargs)


def _split_remote_filename(remote_filename: str) -> tuple[str, str | None]:
    path = PurePosixPath(remote_filename)
    subfolder = str(path.parent) if str(path.parent) != "." else None
    return path.name, subfolder


def _load_local_snapshot(repo_id: str, cache_dir: Path) -> Path:
    return Path(
        huggingface_hub.snapshot_download(
            repo_id=repo_id,
            allow_patterns=ALLOW_PATTERNS,
            cache_dir=str(cache_dir),
            local_files_only=True,
            tqdm_class=_SilentTqdm,
        )
    )


def ensure_model(
    model_name: str,
    models_dir: Path,
    progress_callback: ProgressCallback | None = None,
) -> Path:
    """Make the named model available locally and return its snapshot directory.

    Missing files are fetched one by one so progress can be reported in bytes.
    When the hub is unreachable a complete local cache is used instead.
    """
    repo_id = resolve_repo_id(model_name)
    models_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Checking model {model_name} ({repo_id}) in {models_dir}")

    try:
        dry_run_infos = huggingface_hub.snapshot_download(
            repo_id=repo_id,
            allow_patterns=ALLOW_PATTERNS,
            cache_dir=str(models_dir),
            dry_run=True,
            local_files_only=False,
            tqdm_class=_SilentTqdm,
        )
    except (HfHubHTTPError, DryRunError, OSError) as exc:
        # An offline hub fails the dry run with DryRunError.
        logger.warning(f"Model hub unreachable, trying local cache: {exc}")
        try:
            model_path = _load_local_snapshot(repo_id, models_dir)
        except Exception as cache_error:  # noqa: BLE001
            raise RuntimeError(
                f"Unable to download Whisper model {model_name} and no local cache was found."
            ) from cache_error
        if progress_callback is not None:
            progress_callback(100)
        return model_path

    if isinstance(dry_run_infos, str):
        dry_run_infos = []

    total_bytes = sum(int(file_info.file_size) for file_info in dry_run_infos)
    cached_bytes = sum(int(file_info.file_size) for file_info in dry_run_infos if not file_info.will_download)
    files_to_download = [file_info for file_info in dry_run_infos if file_info.will_download]

    tracker = _DownloadProgressTracker(total_bytes, cached_bytes, progress_callback)
    if files_to_download:
        logger.info(f"Downloading {len(files_to_download)} model file(s)")
        tracker.emit(force=True)
        for file_info in files_to_download:
            filename, subfolder = _split_remote_filename(file_info.filename)
            logger.debug(f"Fetching {file_info.filename} ({format_size(int(file_info.file_size))})")
            huggingface_hub.hf_hub_download(
                repo_id=repo_id,
                filename=filename,
                subfolder=subfolder,
                cache_dir=str(models_dir),
                local_files_only=False,
                force_download=False,
                tqdm_class=tracker.build_tqdm_class(),
            )
    tracker.finish()

    model_path = _load_local_snapshot(repo_id, models_dir)
    logger.info(f"Model ready at {model_path}")
    return model_path
