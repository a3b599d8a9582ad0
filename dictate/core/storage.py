from __future__ import annotations

import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

TRANSCRIPT_SUFFIX = ".md"
RECORDING_SUFFIX = ".m4a"

_UNSAFE_CHARS = set('<>:"/\\|?*')


def sanitize_filename(name: str) -> str:
    return "".join("-" if ch in _UNSAFE_CHARS or ord(ch) < 32 or ord(ch) == 127 else ch for ch in name)


def iso_timestamp(moment: datetime | None = None) -> str:
    """Local time as ``YYYY-MM-DDTHH-MM-SS.mmm+zzzz``, safe for file names."""
    moment = moment or datetime.now().astimezone()
    if moment.tzinfo is None:
        moment = moment.astimezone()
    millis = moment.microsecond // 1000
    return f"{moment.strftime('%Y-%m-%dT%H-%M-%S')}.{millis:03d}{moment.strftime('%z')}"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def next_recording_paths(recordings_dir: Path, moment: datetime | None = None) -> tuple[Path, Path]:
    ensure_dir(recordings_dir)
    stem = sanitize_filename(iso_timestamp(moment))
    return recordings_dir / f"{stem}{RECORDING_SUFFIX}", recordings_dir / f"{stem}{TRANSCRIPT_SUFFIX}"


def transcript_path_for_input(input_path: Path) -> Path:
    return input_path.parent / f"{sanitize_filename(input_path.stem)}{TRANSCRIPT_SUFFIX}"


def transcript_path_for_output_dir(input_path: Path, output_dir: Path) -> Path:
    return output_dir / f"{sanitize_filename(input_path.stem)}{TRANSCRIPT_SUFFIX}"


def processed_path_for_input(input_path: Path, processed_dir: Path) -> Path:
    stem = sanitize_filename(input_path.stem)
    extension = sanitize_filename(input_path.suffix)
    candidate = processed_dir / f"{stem}{extension}"
    if candidate.exists():
        suffix = sanitize_filename(iso_timestamp())
        candidate = processed_dir / f"{stem}_{suffix}{extension}"
    return candidate


def write_transcript(path: Path, text: str) -> None:
    ensure_dir(path.parent)
    handle = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    try:
        with handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(handle.name, path)
    except BaseException:
        Path(handle.name).unlink(missing_ok=True)
        raise


def move_to_processed(source: Path, destination: Path) -> Path:
    ensure_dir(destination.parent)
    return Path(shutil.move(str(source), str(destination)))
