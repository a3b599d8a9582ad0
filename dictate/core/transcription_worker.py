from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Protocol

from dictate.core.events import (
    AutoTranscriptionDone,
    AutoTranscriptionError,
    EventSink,
    HotkeyTranscriptionDone,
    HotkeyTranscriptionError,
    TranscriptionProgress,
)
from dictate.core.jobs import AutoJob, HotkeyJob, Job
from dictate.core.storage import move_to_processed, write_transcript
from dictate.core.whisper_service import ProgressCallback, WhisperService

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    def transcribe_file(
        self,
        media_path: Path,
        progress_callback: ProgressCallback | None = None,
        prompt: str | None = None,
        language: str | None = None,
    ) -> str: ...


class JobLauncher(Protocol):
    def launch(self, job: Job, model_path: Path) -> None: ...


class TranscriptionWorker:
    """Runs one job to completion and reports the outcome as a single event."""

    def __init__(
        self,
        transcriber: Transcriber,
        post_event: EventSink,
        prompt: str | None = None,
        language: str | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._post_event = post_event
        self._prompt = prompt
        self._language = language

    def run(self, job: Job) -> None:
        if isinstance(job, HotkeyJob):
            self._run_hotkey(job)
        else:
            self._run_auto(job)

    def _transcribe(self, media_path: Path) -> str:
        return self._transcriber.transcribe_file(
            media_path,
            progress_callback=self._on_progress,
            prompt=self._prompt,
            language=self._language,
        )

    def _run_hotkey(self, job: HotkeyJob) -> None:
        try:
            text = self._transcribe(job.audio_path)
            write_transcript(job.text_path, text)
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Hotkey transcription failed for {job.audio_path.name}")
            self._post_event(HotkeyTranscriptionError(str(exc)))
            return
        logger.info(f"Hotkey transcript written to {job.text_path}")
        self._post_event(HotkeyTranscriptionDone(text))

    def _run_auto(self, job: AutoJob) -> None:
        try:
            text = self._transcribe(job.input_path)
            write_transcript(job.output_path, text)
            # Only move once the transcript is durable.
            move_to_processed(job.input_path, job.processed_path)
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Auto transcription failed for {job.input_path.name}")
            self._post_event(AutoTranscriptionError(job.input_path, str(exc)))
            return
        logger.info(f"Transcribed {job.input_path.name} -> {job.output_path}")
        self._post_event(AutoTranscriptionDone(job.input_path))

    def _on_progress(self, percent: int) -> None:
        self._post_event(TranscriptionProgress(percent))


class ThreadJobLauncher:
    """Starts every job on a dedicated daemon thread."""

    def __init__(
        self,
        post_event: EventSink,
        prompt: str | None = None,
        language: str | None = None,
        transcriber_factory: Callable[[Path], Transcriber] = WhisperService,
    ) -> None:
        self._post_event = post_event
        self._prompt = prompt
        self._language = language
        self._transcriber_factory = transcriber_factory
        self._transcribers: dict[Path, Transcriber] = {}

    def launch(self, job: Job, model_path: Path) -> None:
        transcriber = self._transcribers.get(model_path)
        if transcriber is None:
            transcriber = self._transcriber_factory(model_path)
            self._transcribers[model_path] = transcriber
        worker = TranscriptionWorker(transcriber, self._post_event, prompt=self._prompt, language=self._language)
        thread = threading.Thread(target=worker.run, args=(job,), name=f"transcribe-{job.kind.value}", daemon=True)
        thread.start()
