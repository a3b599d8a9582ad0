from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol

import pyperclip
from PySide6.QtCore import QObject, QTimer, Signal

from dictate.config import IDLE_REFRESH_INTERVAL_S, TICK_INTERVAL_MS
from dictate.core.auto_ingest import is_supported_audio
from dictate.core.events import (
    AutoFileDetected,
    AutoTranscriptionDone,
    AutoTranscriptionError,
    HotkeyRecordingError,
    HotkeyRecordingReady,
    HotkeyTranscriptionDone,
    HotkeyTranscriptionError,
    MenuAction,
    ModelError,
    ModelProgress,
    ModelReady,
    Quit,
    SelectMicrophone,
    ToggleRecording,
    TranscriptionProgress,
    WatcherError,
    WorkerEvent,
)
from dictate.core.job_queue import JobQueue
from dictate.core.jobs import AppState, AutoJob, HotkeyJob, Job, JobKind, derive_app_state
from dictate.core.model_store import ensure_model
from dictate.core.recording import RecordedAudio, encode_m4a
from dictate.core.settings_store import Settings, SettingsStore
from dictate.core.storage import (
    ensure_dir,
    next_recording_paths,
    processed_path_for_input,
    transcript_path_for_output_dir,
)
from dictate.core.transcription_worker import JobLauncher

logger = logging.getLogger(__name__)


class Recording(Protocol):
    def stop(self) -> RecordedAudio: ...


class Recorder(Protocol):
    def list_devices(self) -> list[str]: ...

    def default_device_name(self) -> str | None: ...

    def start_recording(self, device_name: str | None) -> Recording: ...


def _spawn_daemon(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


class Orchestrator(QObject):
    """Owns all session state and reacts to queued stimuli on the GUI thread.

    Other threads never touch this state directly. Hotkey presses, tray
    clicks, menu actions and worker events are posted to separate inboxes
    that ``process_events`` drains in that fixed order on every tick.
    """

    state_changed = Signal(object, object)
    transcript_ready = Signal(str)
    microphones_changed = Signal(object, object, object)
    idle_refresh_requested = Signal()
    quit_requested = Signal()

    def __init__(
        self,
        settings: Settings,
        settings_store: SettingsStore | None,
        recorder: Recorder,
        job_launcher: JobLauncher,
        beep: Callable[[], None] | None = None,
        copy_to_clipboard: Callable[[str], None] = pyperclip.copy,
        encoder: Callable[[RecordedAudio, Path], Path] = encode_m4a,
        spawn: Callable[[Callable[[], None]], None] = _spawn_daemon,
        model_path: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._settings = settings
        self._settings_store = settings_store
        self._recorder = recorder
        self._job_launcher = job_launcher
        self._beep = beep
        self._copy_to_clipboard = copy_to_clipboard
        self._encoder = encoder
        self._spawn = spawn
        self._clock = clock

        self._queue = JobQueue()
        self._in_flight: set[Path] = set()
        self._recording: Recording | None = None
        self._hotkey_pending = False
        self._model_path = model_path
        self._downloading_model = False
        self._download_percent: int | None = None
        self._transcription_percent: int | None = None

        self._hotkey_inbox: queue.SimpleQueue[None] = queue.SimpleQueue()
        self._tray_inbox: queue.SimpleQueue[None] = queue.SimpleQueue()
        self._menu_inbox: queue.SimpleQueue[MenuAction] = queue.SimpleQueue()
        self._worker_inbox: queue.SimpleQueue[WorkerEvent] = queue.SimpleQueue()

        self._timer: QTimer | None = None
        self._last_status: tuple[AppState, int | None] | None = None
        self._last_idle_refresh = float("-inf")

        self._event_handlers: dict[type, Callable[[Any], None]] = {
            ModelReady: self._on_model_ready,
            ModelProgress: self._on_model_progress,
            ModelError: self._on_model_error,
            HotkeyRecordingReady: self._on_recording_ready,
            HotkeyRecordingError: self._on_recording_error,
            AutoFileDetected: self._on_auto_file_detected,
            TranscriptionProgress: self._on_transcription_progress,
            HotkeyTranscriptionDone: self._on_hotkey_done,
            HotkeyTranscriptionError: self._on_hotkey_error,
            AutoTranscriptionDone: self._on_auto_done,
            AutoTranscriptionError: self._on_auto_error,
            WatcherError: self._on_watcher_error,
        }

    # Thread-safe entry points.

    def post_hotkey(self) -> None:
        self._hotkey_inbox.put(None)

    def post_tray_click(self) -> None:
        self._tray_inbox.put(None)

    def post_menu_action(self, action: MenuAction) -> None:
        self._menu_inbox.put(action)

    def post_event(self, event: WorkerEvent) -> None:
        self._worker_inbox.put(event)

    # Lifecycle.

    def start(self) -> None:
        if self._timer is None:
            self._timer = QTimer(self)
            self._timer.setInterval(TICK_INTERVAL_MS)
            self._timer.timeout.connect(self.process_events)
        self._timer.start()
        self._update_status()

    def shutdown(self) -> None:
        if self._timer is not None:
            self._timer.stop()
        if self._recording is not None:
            handle, self._recording = self._recording, None
            try:
                handle.stop()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to stop recording during shutdown")

    def start_model_download(
        self,
        model_name: str,
        models_dir: Path,
        ensure: Callable[..., Path] = ensure_model,
    ) -> None:
        self._downloading_model = True
        self._download_percent = 0
        self._update_status()

        def download() -> None:
            try:
                path = ensure(model_name, models_dir, progress_callback=self._post_model_progress)
            except Exception as exc:  # noqa: BLE001
                logger.exception(f"Model {model_name} could not be prepared")
                self.post_event(ModelError(str(exc)))
                return
            self.post_event(ModelReady(path))

        self._spawn(download)

    def _post_model_progress(self, percent: int) -> None:
        self.post_event(ModelProgress(percent))

    # Read-only views.

    @property
    def job_queue(self) -> JobQueue:
        return self._queue

    @property
    def in_flight(self) -> frozenset[Path]:
        return frozenset(self._in_flight)

    @property
    def is_recording(self) -> bool:
        return self._recording is not None

    @property
    def model_path(self) -> Path | None:
        return self._model_path

    def app_state(self) -> AppState:
        return derive_app_state(
            recording=self._recording is not None,
            hotkey_pending=self._hotkey_pending,
            active_kind=self._queue.active_kind(),
            downloading_model=self._downloading_model,
        )

    # Tick.

    def process_events(self) -> None:
        self._drain(self._hotkey_inbox, lambda _: self._handle_hotkey())
        self._drain(self._tray_inbox, lambda _: self._handle_tray_click())
        self._drain(self._menu_inbox, self._handle_menu_action)
        self._drain(self._worker_inbox, self._handle_worker_event)
        self._update_status()
        self._maybe_refresh_idle_icon()

    def _drain(self, inbox: queue.SimpleQueue, handler: Callable[[Any], None]) -> None:
        while True:
            try:
                item = inbox.get_nowait()
            except queue.Empty:
                return
            try:
                handler(item)
            except Exception:  # noqa: BLE001
                logger.exception(f"Failed to handle {item!r}")

    def _maybe_refresh_idle_icon(self) -> None:
        if self.app_state() != AppState.IDLE:
            return
        now = self._clock()
        if now - self._last_idle_refresh < IDLE_REFRESH_INTERVAL_S:
            return
        self._last_idle_refresh = now
        self.idle_refresh_requested.emit()

    def _update_status(self) -> None:
        state = self.app_state()
        if state == AppState.TRANSCRIBING:
            progress = self._transcription_percent
        elif state == AppState.DOWNLOADING:
            progress = self._download_percent
        else:
            progress = None
        status = (state, progress)
        if status == self._last_status:
            return
        self._last_status = status
        self.state_changed.emit(state, progress)

    # Stimuli.

    def _handle_hotkey(self) -> None:
        if self._recording is not None:
            self._stop_recording()
            return
        if self._downloading_model or self._model_path is None:
            logger.info("Model is not ready yet, ignoring hotkey")
            return
        if not self._queue.begin_hotkey_session():
            logger.info("A hotkey transcription is still in progress, ignoring hotkey")
            return

        if self._beep is not None:
            self._beep()
        try:
            self._recording = self._recorder.start_recording(self._settings.selected_mic)
        except Exception:  # noqa: BLE001
            logger.exception("Unable to start recording")
            self._queue.cancel_hotkey_session()
            return
        logger.info("Recording started")

    def _stop_recording(self) -> None:
        handle, self._recording = self._recording, None
        self._hotkey_pending = True
        recordings_dir = self._settings.recordings_dir
        logger.info("Recording stopped")
        self._spawn(lambda: self._finalize_recording(handle, recordings_dir))

    def _finalize_recording(self, handle: Recording, recordings_dir: Path) -> None:
        try:
            recorded = handle.stop()
            audio_path, text_path = next_recording_paths(recordings_dir)
            self._encoder(recorded, audio_path)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to save recording")
            self.post_event(HotkeyRecordingError(str(exc)))
            return
        self.post_event(HotkeyRecordingReady(HotkeyJob(audio_path=audio_path, text_path=text_path)))

    def _handle_tray_click(self) -> None:
        self.refresh_microphones()

    def refresh_microphones(self) -> None:
        try:
            devices = self._recorder.list_devices()
            default_name = self._recorder.default_device_name()
        except Exception:  # noqa: BLE001
            logger.exception("Unable to list microphones")
            return
        self.microphones_changed.emit(devices, self._settings.selected_mic, default_name)

    def _handle_menu_action(self, action: MenuAction) -> None:
        if isinstance(action, ToggleRecording):
            self._handle_hotkey()
        elif isinstance(action, SelectMicrophone):
            self._settings.selected_mic = action.name
            if self._settings_store is not None:
                self._settings_store.set_selected_mic(action.name)
            logger.info(f"Microphone set to {action.name or 'system default'}")
            self.refresh_microphones()
        elif isinstance(action, Quit):
            self.quit_requested.emit()

    def _handle_worker_event(self, event: WorkerEvent) -> None:
        handler = self._event_handlers.get(type(event))
        if handler is None:
            logger.warning(f"Unhandled worker event {event!r}")
            return
        handler(event)

    # Worker events.

    def _on_model_ready(self, event: ModelReady) -> None:
        self._model_path = event.path
        self._downloading_model = False
        self._download_percent = None
        logger.info(f"Model loaded from {event.path}")
        self._maybe_start_transcription()

    def _on_model_progress(self, event: ModelProgress) -> None:
        self._download_percent = event.percent

    def _on_model_error(self, event: ModelError) -> None:
        self._downloading_model = False
        self._download_percent = None
        logger.error(f"Model unavailable: {event.message}")

    def _on_recording_ready(self, event: HotkeyRecordingReady) -> None:
        if not self._queue.enqueue_hotkey(event.job):
            logger.warning(f"Hotkey job already pending, dropping {event.job.audio_path.name}")
        self._maybe_start_transcription()

    def _on_recording_error(self, event: HotkeyRecordingError) -> None:
        logger.error(f"Recording failed: {event.message}")
        self._queue.cancel_hotkey_session()
        self._hotkey_pending = False

    def _on_auto_file_detected(self, event: AutoFileDetected) -> None:
        detected = event.spec
        if not is_supported_audio(detected.input_path):
            logger.debug(f"Ignoring unsupported file {detected.input_path.name}")
            return
        if detected.input_path in self._in_flight:
            logger.debug(f"{detected.input_path.name} is already queued")
            return

        ensure_dir(detected.processed_dir)
        job = AutoJob(
            input_path=detected.input_path,
            output_path=transcript_path_for_output_dir(detected.input_path, detected.output_dir),
            processed_path=processed_path_for_input(detected.input_path, detected.processed_dir),
        )
        self._in_flight.add(detected.input_path)
        self._queue.enqueue_auto(job)
        logger.info(f"Queued {detected.input_path.name} ({self._queue.auto_queue_len()} waiting)")
        self._maybe_start_transcription()

    def _on_transcription_progress(self, event: TranscriptionProgress) -> None:
        self._transcription_percent = event.percent

    def _on_hotkey_done(self, event: HotkeyTranscriptionDone) -> None:
        self._transcription_percent = None
        self._queue.complete_active(JobKind.HOTKEY)
        try:
            self._copy_to_clipboard(event.text)
        except Exception:  # noqa: BLE001
            logger.exception("Unable to copy transcript to the clipboard")
        self.transcript_ready.emit(event.text)
        self._maybe_start_transcription()

    def _on_hotkey_error(self, event: HotkeyTranscriptionError) -> None:
        logger.error(f"Hotkey transcription failed: {event.message}")
        self._transcription_percent = None
        self._queue.complete_active(JobKind.HOTKEY)
        self._maybe_start_transcription()

    def _on_auto_done(self, event: AutoTranscriptionDone) -> None:
        self._transcription_percent = None
        self._in_flight.discard(event.input_path)
        self._queue.complete_active(JobKind.AUTO)
        self._maybe_start_transcription()

    def _on_auto_error(self, event: AutoTranscriptionError) -> None:
        logger.error(f"Transcription of {event.input_path.name} failed: {event.message}")
        self._transcription_percent = None
        self._in_flight.discard(event.input_path)
        self._queue.complete_active(JobKind.AUTO)
        self._maybe_start_transcription()

    def _on_watcher_error(self, event: WatcherError) -> None:
        logger.warning(event.message)

    # Dispatch.

    def _maybe_start_transcription(self) -> None:
        if self._model_path is None:
            return
        job = self._queue.next_job()
        if job is None:
            return
        if job.kind == JobKind.HOTKEY:
            self._hotkey_pending = False
        else:
            logger.info(f"Processing {job.input_path.name} (1 of {self._queue.auto_queue_len() + 1})")
        self._transcription_percent = 0
        try:
            self._job_launcher.launch(job, self._model_path)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unable to start transcription worker")
            self.post_event(self._launch_failure(job, str(exc)))

    @staticmethod
    def _launch_failure(job: Job, message: str) -> WorkerEvent:
        if isinstance(job, HotkeyJob):
            return HotkeyTranscriptionError(message)
        return AutoTranscriptionError(job.input_path, message)
