from __future__ import annotations

import logging
import threading

import numpy as np
import sounddevice as sd

logger = logging.getLogger(__name__)

BEEP_SAMPLE_RATE = 44_100
WARMUP_MS = 120
TONE_MS = 180
TONE_HZ = 880.0
VOLUME = 0.2


def build_beep(sample_rate: int = BEEP_SAMPLE_RATE) -> np.ndarray:
    # Leading silence lets the output device wake up before the tone.
    warmup = np.zeros(sample_rate * WARMUP_MS // 1000, dtype=np.float32)
    t = np.arange(sample_rate * TONE_MS // 1000, dtype=np.float32) / sample_rate
    tone = (VOLUME * np.sin(2 * np.pi * TONE_HZ * t)).astype(np.float32)
    return np.concatenate([warmup, tone])


class BeepPlayer:
    def __init__(self, sample_rate: int = BEEP_SAMPLE_RATE) -> None:
        self._sample_rate = sample_rate
        self._buffer = build_beep(sample_rate)

    def play(self) -> None:
        threading.Thread(target=self._play, name="beep", daemon=True).start()

    def _play(self) -> None:
        try:
            sd.play(self._buffer, self._sample_rate)
            sd.wait()
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning(f"Unable to play start beep: {exc}")
