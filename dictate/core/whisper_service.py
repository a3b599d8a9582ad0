from __future__ import annotations

import gc
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable

import numpy as np
from faster_whisper import WhisperModel

from dictate.config import DEFAULT_LANGUAGE, gpu_enabled
from dictate.core import audio_pipeline

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
ModelFactory = Callable[[str, bool], Any]

AUTO_LANGUAGE = "auto"
BACKEND_LOGGERS = ("faster_whisper",)

_runtime_lock = Lock()
_runtime_initialized = False


class _BackendNoiseFilter(logging.Filter):
    """Drops the backend's per-file INFO chatter unless debugging."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return logging.getLogger("dictate").isEnabledFor(logging.DEBUG)


def init_whisper_runtime() -> bool:
    """One-time process setup for the recognition backend.

    Returns True on the call that performed the setup, False afterwards.
    """
    global _runtime_initialized
    with _runtime_lock:
        if _runtime_initialized:
            return False
        for name in BACKEND_LOGGERS:
            logging.getLogger(name).addFilter(_BackendNoiseFilter())
        _runtime_initialized = True
        logger.debug("Whisper runtime initialized")
        return True


def default_model_factory(model_path: str, use_gpu: bool) -> WhisperModel:
    cpu_threads = os.cpu_count() or 0
    if use_gpu:
        return WhisperModel(model_path, device="auto", compute_type="default", cpu_threads=cpu_threads)
    return WhisperModel(model_path, device="cpu", compute_type="int8", cpu_threads=cpu_threads)


def normalize_prompt(prompt: str | None) -> str | None:
    if prompt is None:
        return None
    prompt = prompt.strip()
    return prompt or None


def resolve_language(language: str | None) -> str | None:
    """Map a configured language to a backend code; None means auto-detect."""
    if language is None or not language.strip():
        return DEFAULT_LANGUAGE
    language = language.strip()
    if language.lower() == AUTO_LANGUAGE:
        return None
    return language


class ProgressReporter:
    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._last_percent = -1
        self._lock = Lock()

    def report(self, percent: float) -> None:
        if self._callback is None:
            return
        value = max(0, min(100, int(percent)))
        with self._lock:
            if value <= self._last_percent:
                return
            self._last_percent = value
        self._callback(value)


@dataclass(slots=True, frozen=True)
class InferenceResult:
    text: str
    segment_count: int
    used_gpu: bool


class WhisperService:
    TEMPERATURES = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0)

    def __init__(
        self,
        model_path: Path,
        model_factory: ModelFactory | None = None,
        prefer_gpu: bool | None = None,
    ) -> None:
        init_whisper_runtime()
        self._model_path = Path(model_path)
        self._model_factory = model_factory or default_model_factory
        self._prefer_gpu = gpu_enabled() if prefer_gpu is None else prefer_gpu

    @property
    def model_path(self) -> Path:
        return self._model_path

    def transcribe_file(
        self,
        media_path: Path,
        progress_callback: ProgressCallback | None = None,
        prompt: str | None = None,
        language: str | None = None,
    ) -> str:
        samples = audio_pipeline.condition_audio(media_path)
        if samples.size == 0:
            logger.info(f"No speech detected in {media_path.name}, skipping inference")
            if progress_callback is not None:
                progress_callback(100)
            return ""
        result = self.transcribe_samples(
            samples,
            progress_callback=progress_callback,
            prompt=prompt,
            language=language,
        )
        return result.text

    def transcribe_samples(
        self,
        samples: np.ndarray,
        progress_callback: ProgressCallback | None = None,
        prompt: str | None = None,
        language: str | None = None,
    ) -> InferenceResult:
        reporter = ProgressReporter(progress_callback)
        options = self._transcribe_options(normalize_prompt(prompt), resolve_language(language))

        if not self._prefer_gpu:
            return self._run(samples, use_gpu=False, reporter=reporter, options=options)

        try:
            result = self._run(samples, use_gpu=True, reporter=reporter, options=options)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Accelerated inference failed, retrying on CPU: {exc}")
            return self._run(samples, use_gpu=False, reporter=reporter, options=options)

        if result.segment_count == 0:
            # Zero segments may be genuine silence, but some accelerated builds
            # return nothing instead of failing, so CPU gets the final say.
            logger.debug("Accelerated inference returned no segments, retrying on CPU")
            return self._run(samples, use_gpu=False, reporter=reporter, options=options)
        return result

    def _transcribe_options(self, initial_prompt: str | None, language: str | None) -> dict[str, Any]:
        return {
            "task": "transcribe",
            "language": language,
            "initial_prompt": initial_prompt,
            "beam_size": 5,
            "patience": 1.0,
            "temperature": list(self.TEMPERATURES),
            "log_prob_threshold": -1.0,
            "compression_ratio_threshold": 2.4,
            "no_speech_threshold": 0.6,
            "suppress_blank": True,
            "vad_filter": False,
            "word_timestamps": False,
        }

    def _run(
        self,
        samples: np.ndarray,
        use_gpu: bool,
        reporter: ProgressReporter,
        options: dict[str, Any],
    ) -> InferenceResult:
        device = "accelerated" if use_gpu else "cpu"
        logger.debug(f"Running inference on {device} ({len(samples)} samples)")
        model = self._model_factory(str(self._model_path), use_gpu)
        try:
            segments, info = model.transcribe(samples, **options)
            duration = float(getattr(info, "duration", 0.0) or 0.0)
            pieces: list[str] = []
            for segment in segments:
                pieces.append(segment.text)
                if duration > 0:
                    reporter.report(float(segment.end) / duration * 100.0)
            reporter.report(100)
        finally:
            del model
            gc.collect()

        text = "".join(pieces).strip()
        logger.info(f"Inference finished on {device}: {len(pieces)} segment(s)")
        return InferenceResult(text=text, segment_count=len(pieces), used_gpu=use_gpu)
