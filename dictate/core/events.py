from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from dictate.core.jobs import AutoJobSpec, HotkeyJob


@dataclass(slots=True, frozen=True)
class ModelReady:
    path: Path


@dataclass(slots=True, frozen=True)
class ModelProgress:
    percent: int


@dataclass(slots=True, frozen=True)
class ModelError:
    message: str


@dataclass(slots=True, frozen=True)
class HotkeyRecordingReady:
    job: HotkeyJob


@dataclass(slots=True, frozen=True)
class HotkeyRecordingError:
    message: str


@dataclass(slots=True, frozen=True)
class AutoFileDetected:
    spec: AutoJobSpec


@dataclass(slots=True, frozen=True)
class TranscriptionProgress:
    percent: int


@dataclass(slots=True, frozen=True)
class HotkeyTranscriptionDone:
    text: str


@dataclass(slots=True, frozen=True)
class HotkeyTranscriptionError:
    message: str


@dataclass(slots=True, frozen=True)
class AutoTranscriptionDone:
    input_path: Path


@dataclass(slots=True, frozen=True)
class AutoTranscriptionError:
    input_path: Path
    message: str


@dataclass(slots=True, frozen=True)
class WatcherError:
    message: str


WorkerEvent = Union[
    ModelReady,
    ModelProgress,
    ModelError,
    HotkeyRecordingReady,
    HotkeyRecordingError,
    AutoFileDetected,
    TranscriptionProgress,
    HotkeyTranscriptionDone,
    HotkeyTranscriptionError,
    AutoTranscriptionDone,
    AutoTranscriptionError,
    WatcherError,
]

EventSink = Callable[[WorkerEvent], None]


@dataclass(slots=True, frozen=True)
class ToggleRecording:
    pass


@dataclass(slots=True, frozen=True)
class SelectMicrophone:
    name: str | None


@dataclass(slots=True, frozen=True)
class Quit:
    pass


MenuAction = Union[ToggleRecording, SelectMicrophone, Quit]
