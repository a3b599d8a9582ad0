from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path

import av
import numpy as np

logger = logging.getLogger(__name__)

AAC_BIT_RATE = 128_000


class RecordingError(RuntimeError):
    pass


@dataclass(slots=True, frozen=True)
class RecordedAudio:
    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0


def encode_m4a(recorded: RecordedAudio, path: Path) -> Path:
    """Write the recording as mono AAC in an MPEG-4 container."""
    samples = recorded.samples
    if samples.ndim == 2:
        samples = samples.mean(axis=1) if samples.shape[1] > 1 else samples[:, 0]
    if samples.size == 0:
        raise RecordingError("Recording contains no audio")

    mono = np.ascontiguousarray(samples, dtype=np.float32)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with av.open(str(path), mode="w", format="mp4") as container:
            stream = container.add_stream("aac", rate=recorded.sample_rate)
            stream.codec_context.layout = "mono"
            stream.codec_context.bit_rate = AAC_BIT_RATE

            frame = av.AudioFrame.from_ndarray(mono[None, :], format="fltp", layout="mono")
            frame.sample_rate = recorded.sample_rate
            frame.pts = 0
            frame.time_base = Fraction(1, recorded.sample_rate)

            for packet in stream.encode(frame):
                container.mux(packet)
            for packet in stream.encode(None):
                container.mux(packet)
    except (av.error.FFmpegError, OSError) as exc:
        raise RecordingError(f"Unable to encode {path}: {exc}") from exc

    logger.debug(f"Encoded {recorded.duration:.2f}s of audio to {path}")
    return path
