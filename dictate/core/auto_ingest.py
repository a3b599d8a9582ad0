from __future__ import annotations

import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from dictate.core.events import AutoFileDetected, EventSink, WatcherError
from dictate.core.jobs import AutoJobSpec
from dictate.core.settings_store import WatchPair
from dictate.core.storage import ensure_dir

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".m4a", ".mp3", ".wav", ".flac"})
STABILITY_POLLS = 3
STABILITY_INTERVAL_S = 0.2


def is_supported_audio(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def wait_for_stable_file(
    path: Path,
    polls: int = STABILITY_POLLS,
    interval: float = STABILITY_INTERVAL_S,
    sleep: Callable[[float], object] = time.sleep,
) -> bool:
    """True once ``polls`` consecutive size readings agree.

    A file that disappears or changes size between readings is reported as
    unstable; the next filesystem event for it triggers a fresh check.
    """
    sizes: list[int] = []
    for index in range(polls):
        if index:
            sleep(interval)
        try:
            sizes.append(path.stat().st_size)
        except FileNotFoundError:
            return False
        if sizes[-1] != sizes[0]:
            return False
    return True


def candidate_path(event: FileSystemEvent) -> Path | None:
    if event.is_directory:
        return None
    if event.event_type in (EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED):
        return Path(os.fsdecode(event.src_path))
    if event.event_type == EVENT_TYPE_MOVED:
        return Path(os.fsdecode(event.dest_path))
    return None


class _AudioEventHandler(FileSystemEventHandler):
    def __init__(self, input_dir: Path, submit: Callable[[Path], None]) -> None:
        super().__init__()
        self._input_dir = input_dir
        self._submit = submit

    def on_any_event(self, event: FileSystemEvent) -> None:
        path = candidate_path(event)
        if path is None or path.parent != self._input_dir:
            return
        if not is_supported_audio(path):
            return
        self._submit(path)


class AutoIngestWatcher:
    """Watches each input folder on its own thread and reports stable audio files."""

    def __init__(
        self,
        watches: list[WatchPair],
        post_event: EventSink,
        stability_polls: int = STABILITY_POLLS,
        stability_interval: float = STABILITY_INTERVAL_S,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self._watches = list(watches)
        self._post_event = post_event
        self._stability_polls = stability_polls
        self._stability_interval = stability_interval
        self._observer_factory = observer_factory
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for index, watch in enumerate(self._watches):
            thread = threading.Thread(
                target=self._run_pair,
                args=(watch,),
                name=f"auto-ingest-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()

    def _run_pair(self, watch: WatchPair) -> None:
        observer = None
        try:
            input_dir = ensure_dir(watch.input_dir).resolve()
            ensure_dir(watch.output_dir)
            ensure_dir(watch.processed_dir)

            pending: queue.Queue[Path] = queue.Queue()
            candidate = self._observer_factory()
            candidate.schedule(_AudioEventHandler(input_dir, pending.put), str(input_dir), recursive=False)
            candidate.start()
            observer = candidate
            logger.info(f"Watching {input_dir} for audio files")

            for path in sorted(input_dir.iterdir()):
                if path.is_file() and is_supported_audio(path):
                    pending.put(path)

            while not self._stop_event.is_set():
                try:
                    path = pending.get(timeout=0.25)
                except queue.Empty:
                    continue
                self._consider(path, watch)
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Watcher for {watch.input_dir} stopped")
            self._post_event(WatcherError(f"Watcher for {watch.input_dir} stopped: {exc}"))
        finally:
            if observer is not None:
                observer.stop()
                observer.join(timeout=1.0)

    def _consider(self, path: Path, watch: WatchPair) -> None:
        stable = wait_for_stable_file(
            path,
            polls=self._stability_polls,
            interval=self._stability_interval,
            sleep=self._stop_event.wait,
        )
        if not stable or self._stop_event.is_set():
            return
        logger.debug(f"Detected stable audio file {path.name}")
        self._post_event(
            AutoFileDetected(
                AutoJobSpec(
                    input_path=path,
                    output_dir=watch.output_dir,
                    processed_dir=watch.processed_dir,
                )
            )
        )
