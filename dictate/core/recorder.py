from __future__ import annotations

import logging
import threading

import numpy as np
import sounddevice as sd

from dictate.core.recording import RecordedAudio, RecordingError

logger = logging.getLogger(__name__)


class RecordingHandle:
    """A live input stream; ``stop`` closes it and returns what was captured."""

    def __init__(self, device: int | None, sample_rate: int, channels: int) -> None:
        self._sample_rate = sample_rate
        self._channels = channels
        self._chunks: list[np.ndarray] = []
        self._lock = threading.Lock()
        self._stream = sd.InputStream(
            device=device,
            channels=channels,
            samplerate=sample_rate,
            dtype="float32",
            callback=self._callback,
        )
        self._stream.start()

    def _callback(self, indata: np.ndarray, frames: int, time_info, status: sd.CallbackFlags) -> None:  # noqa: ANN001
        if status:
            logger.debug(f"Input stream status: {status}")
        with self._lock:
            self._chunks.append(indata.copy())

    def stop(self) -> RecordedAudio:
        try:
            self._stream.stop()
        finally:
            self._stream.close()
        with self._lock:
            chunks, self._chunks = self._chunks, []
        if chunks:
            samples = np.concatenate(chunks, axis=0)
        else:
            samples = np.zeros((0, self._channels), dtype=np.float32)
        return RecordedAudio(samples=samples, sample_rate=self._sample_rate, channels=self._channels)


class SoundDeviceRecorder:
    @staticmethod
    def list_devices() -> list[str]:
        names: list[str] = []
        for device in sd.query_devices():
            if device["max_input_channels"] > 0 and device["name"] not in names:
                names.append(device["name"])
        return names

    @staticmethod
    def default_device_name() -> str | None:
        try:
            device = sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError):
            return None
        return device["name"]

    def _resolve_device(self, device_name: str | None) -> int | None:
        if not device_name:
            return None
        for index, device in enumerate(sd.query_devices()):
            if device["name"] == device_name and device["max_input_channels"] > 0:
                return index
        logger.warning(f"Microphone {device_name!r} not found, using the default input")
        return None

    def start_recording(self, device_name: str | None) -> RecordingHandle:
        device = self._resolve_device(device_name)
        try:
            info = sd.query_devices(device, "input") if device is not None else sd.query_devices(kind="input")
            sample_rate = int(info["default_samplerate"])
            channels = max(1, min(int(info["max_input_channels"]), 2))
            handle = RecordingHandle(device, sample_rate, channels)
        except (sd.PortAudioError, ValueError) as exc:
            raise RecordingError(f"Unable to open microphone: {exc}") from exc
        logger.info(f"Recording from {info['name']} at {sample_rate} Hz, {channels} channel(s)")
        return handle
