from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union


class JobKind(str, Enum):
    HOTKEY = "hotkey"
    AUTO = "auto"


class AppState(str, Enum):
    IDLE = "Idle"
    RECORDING = "Recording"
    TRANSCRIBING = "Transcribing"
    DOWNLOADING = "Downloading"


@dataclass(slots=True, frozen=True)
class HotkeyJob:
    audio_path: Path
    text_path: Path

    @property
    def kind(self) -> JobKind:
        return JobKind.HOTKEY


@dataclass(slots=True, frozen=True)
class AutoJob:
    input_path: Path
    output_path: Path
    processed_path: Path

    @property
    def kind(self) -> JobKind:
        return JobKind.AUTO


Job = Union[HotkeyJob, AutoJob]


@dataclass(slots=True, frozen=True)
class AutoJobSpec:
    input_path: Path
    output_dir: Path
    processed_dir: Path


def derive_app_state(
    recording: bool,
    hotkey_pending: bool,
    active_kind: JobKind | None,
    downloading_model: bool,
) -> AppState:
    if recording:
        return AppState.RECORDING
    if hotkey_pending or active_kind is not None:
        return AppState.TRANSCRIBING
    if downloading_model:
        return AppState.DOWNLOADING
    return AppState.IDLE
