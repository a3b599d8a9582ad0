"""Audio conditioning applied before a clip reaches the recognition backend.

Clips are decoded to mono float32, resampled to 16 kHz and then cleaned in
two energy-based passes: ``prefilter_speech`` removes interior non-speech
and ``trim_silence`` strips what is left of leading and trailing dead air.
Both passes estimate a per-clip noise floor from the 10th percentile of
20 ms frame energies, so the thresholds adapt to each recording.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from fractions import Fraction
from functools import lru_cache
from pathlib import Path

import av
import numpy as np
from scipy import signal

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16_000

SINC_ZERO_CROSSINGS = 64
SINC_CUTOFF = 0.95
SINC_WINDOW = "blackmanharris"

FRAME_MS = 20
NOISE_PERCENTILE = 0.1
SPEECH_THRESHOLD_RATIO = 2.5
MIN_SPEECH_THRESHOLD = 0.002
TAIL_WINDOW_MS = 800
TAIL_THRESHOLD_RATIO = 2.0
MIN_TAIL_THRESHOLD = 0.0015
FLAT_SPREAD_RATIO = 0.01

MIN_SPEECH_MS = 200
PAD_MS = 240
KEEP_SILENCE_MS = 800
INSERT_SILENCE_MS = 120

DYNAMIC_TAIL_WINDOW_MS = 200
DYNAMIC_TAIL_MIN_MS = 300
DYNAMIC_TAIL_DROP_RATIO = 0.25
MIN_SPEECH_FRAMES_FOR_MEDIAN = 3

MIN_LEADING_SILENCE_MS = 300
MIN_TRAILING_SILENCE_MS = 400
PAD_BEFORE_MS = 200
PAD_AFTER_MS = 240


class AudioDecodeError(RuntimeError):
    pass


@dataclass(slots=True, frozen=True)
class PrefilterStats:
    removed_samples: int
    kept_samples: int
    segments: int
    threshold: float
    noise_floor: float


@dataclass(slots=True, frozen=True)
class TrimStats:
    trimmed_leading_samples: int
    trimmed_trailing_samples: int
    threshold: float
    noise_floor: float
    leading_frames: int
    trailing_frames: int

    @property
    def trimmed_samples(self) -> int:
        return self.trimmed_leading_samples + self.trimmed_trailing_samples


def _ms_to_frames(ms: int) -> int:
    return -(-ms // FRAME_MS)


def _frame_len(sample_rate: int) -> int:
    return sample_rate * FRAME_MS // 1000


def _frame_to_mono(frame: av.AudioFrame) -> np.ndarray:
    # Planar float frames come out as (channels, samples).
    array = frame.to_ndarray()
    if array.ndim == 1:
        return array.astype(np.float32, copy=False)
    if array.shape[0] == 1:
        return array[0].astype(np.float32, copy=False)
    return array.mean(axis=0).astype(np.float32)


def decode_to_mono(path: Path) -> tuple[np.ndarray, int]:
    chunks: list[np.ndarray] = []
    try:
        with av.open(str(path)) as container:
            if not container.streams.audio:
                raise AudioDecodeError(f"No audio track in {path}")
            stream = container.streams.audio[0]
            sample_rate = int(stream.codec_context.sample_rate or 0)
            if sample_rate <= 0:
                raise AudioDecodeError(f"Missing sample rate in {path}")

            resampler = av.AudioResampler(format="fltp")
            for frame in container.decode(stream):
                for converted in resampler.resample(frame):
                    chunks.append(_frame_to_mono(converted))
            for converted in resampler.resample(None):
                chunks.append(_frame_to_mono(converted))
    except (av.error.FFmpegError, OSError) as exc:
        raise AudioDecodeError(f"Unable to decode {path}: {exc}") from exc

    if not chunks:
        return np.zeros(0, dtype=np.float32), sample_rate
    return np.concatenate(chunks), sample_rate


@lru_cache(maxsize=8)
def _sinc_taps(up: int, down: int) -> np.ndarray:
    max_rate = max(up, down)
    half_len = SINC_ZERO_CROSSINGS * max_rate
    return signal.firwin(2 * half_len + 1, SINC_CUTOFF / max_rate, window=SINC_WINDOW)


def resample_to_16k(samples: np.ndarray, sample_rate: int) -> np.ndarray:
    if sample_rate == TARGET_SAMPLE_RATE:
        return samples
    if sample_rate <= 0:
        raise AudioDecodeError(f"Invalid sample rate: {sample_rate}")
    if samples.size == 0:
        return samples.astype(np.float32)

    ratio = Fraction(TARGET_SAMPLE_RATE, sample_rate)
    up, down = ratio.numerator, ratio.denominator
    resampled = signal.resample_poly(samples, up, down, window=_sinc_taps(up, down))
    return resampled.astype(np.float32)


def frame_energies(samples: np.ndarray, frame_len: int) -> np.ndarray:
    num_frames = -(-len(samples) // frame_len)
    padded = np.zeros(num_frames * frame_len, dtype=np.float64)
    padded[: len(samples)] = np.abs(samples)
    sums = padded.reshape(num_frames, frame_len).sum(axis=1)
    counts = np.full(num_frames, frame_len, dtype=np.float64)
    counts[-1] = len(samples) - (num_frames - 1) * frame_len
    return sums / counts


def noise_floor(energies: np.ndarray) -> float:
    ordered = np.sort(energies)
    index = int(math.floor((len(ordered) - 1) * NOISE_PERCENTILE + 0.5))
    return float(ordered[min(index, len(ordered) - 1)])


def speech_median(energies: np.ndarray, threshold: float) -> float | None:
    speech = np.sort(energies[energies >= threshold])
    if len(speech) < MIN_SPEECH_FRAMES_FOR_MEDIAN:
        return None
    return float(speech[len(speech) // 2])


def find_dynamic_tail_start(energies: np.ndarray, speech_ref: float) -> int | None:
    """Frame index where the clip settles below a fraction of its speech level.

    Scans backwards for the last 200 ms window whose mean energy still
    reaches ``DYNAMIC_TAIL_DROP_RATIO`` of the median speech energy; the tail
    starts right after it and must last at least ``DYNAMIC_TAIL_MIN_MS``.
    """
    num_frames = len(energies)
    if num_frames == 0 or speech_ref <= 0.0:
        return None

    window_frames = min(max(_ms_to_frames(DYNAMIC_TAIL_WINDOW_MS), 3), num_frames)
    min_tail_frames = _ms_to_frames(DYNAMIC_TAIL_MIN_MS)
    if num_frames < window_frames + min_tail_frames:
        return None

    prefix = np.concatenate(([0.0], np.cumsum(energies)))
    threshold = speech_ref * DYNAMIC_TAIL_DROP_RATIO
    tail_start: int | None = None
    for index in range(num_frames - window_frames, -1, -1):
        average = (prefix[index + window_frames] - prefix[index]) / window_frames
        if average >= threshold:
            tail_start = index + window_frames
            break

    if tail_start is None or num_frames - tail_start < min_tail_frames:
        return None
    return tail_start


@dataclass(slots=True)
class _EnergyProfile:
    energies: np.ndarray
    noise_floor: float
    threshold: float
    tail_threshold: float
    tail_start: int
    dynamic_tail_start: int | None

    @property
    def num_frames(self) -> int:
        return len(self.energies)

    def loud_frames(self) -> np.ndarray:
        thresholds = np.full(self.num_frames, self.threshold)
        thresholds[self.tail_start :] = self.tail_threshold
        return self.energies >= thresholds

    def is_flat(self, loud: np.ndarray) -> bool:
        # Uniform loud signal: every frame carries the same energy, at or
        # above the absolute speech minimum. Noise with no speech is not flat.
        if loud.any() or self.noise_floor < MIN_SPEECH_THRESHOLD:
            return False
        spread = float(self.energies.max() - self.energies.min())
        return spread <= self.noise_floor * FLAT_SPREAD_RATIO


def _analyze(samples: np.ndarray, frame_len: int) -> _EnergyProfile:
    energies = frame_energies(samples, frame_len)
    floor = noise_floor(energies)
    threshold = max(floor * SPEECH_THRESHOLD_RATIO, MIN_SPEECH_THRESHOLD)
    speech_ref = speech_median(energies, threshold)
    dynamic_tail_start = (
        find_dynamic_tail_start(energies, speech_ref) if speech_ref is not None else None
    )
    return _EnergyProfile(
        energies=energies,
        noise_floor=floor,
        threshold=threshold,
        tail_threshold=max(floor * TAIL_THRESHOLD_RATIO, MIN_TAIL_THRESHOLD),
        tail_start=max(len(energies) - _ms_to_frames(TAIL_WINDOW_MS), 0),
        dynamic_tail_start=dynamic_tail_start,
    )


def _loud_runs(loud: np.ndarray) -> list[tuple[int, int]]:
    runs: list[tuple[int, int]] = []
    start: int | None = None
    for index, is_loud in enumerate(loud):
        if is_loud:
            if start is None:
                start = index
        elif start is not None:
            runs.append((start, index - 1))
            start = None
    if start is not None:
        runs.append((start, len(loud) - 1))
    return runs


def prefilter_speech(samples: np.ndarray, sample_rate: int) -> tuple[np.ndarray, PrefilterStats | None]:
    """Drop interior non-speech. Returns the input unchanged with ``None`` on a no-op."""
    if samples.size == 0 or sample_rate <= 0:
        return samples, None
    frame_len = _frame_len(sample_rate)
    original_len = len(samples)
    if frame_len == 0 or original_len < frame_len * 2:
        return samples, None

    profile = _analyze(samples, frame_len)
    loud = profile.loud_frames()
    if profile.is_flat(loud):
        return samples, None

    num_frames = profile.num_frames
    min_speech_frames = _ms_to_frames(MIN_SPEECH_MS)
    raw_runs = [(start, end) for start, end in _loud_runs(loud) if end + 1 - start >= min_speech_frames]
    if not raw_runs:
        return np.zeros(0, dtype=np.float32), PrefilterStats(
            removed_samples=original_len,
            kept_samples=0,
            segments=0,
            threshold=profile.threshold,
            noise_floor=profile.noise_floor,
        )

    pad_frames = _ms_to_frames(PAD_MS)
    keep_silence_frames = _ms_to_frames(KEEP_SILENCE_MS)
    merged: list[list[int]] = []
    for start, end in raw_runs:
        start = max(start - pad_frames, 0)
        end = min(end + pad_frames, num_frames - 1)
        if merged and start <= merged[-1][1] + keep_silence_frames:
            merged[-1][1] = max(merged[-1][1], end)
            continue
        merged.append([start, end])

    if profile.dynamic_tail_start is not None:
        last = merged[-1]
        tail_start = max(profile.dynamic_tail_start, last[1] + 1)
        if tail_start > last[1] + 1:
            last[1] = min(tail_start - 1, num_frames - 1)

    if len(merged) == 1 and merged[0][0] == 0 and merged[0][1] + 1 >= num_frames:
        return samples, None

    gap = np.zeros(sample_rate * INSERT_SILENCE_MS // 1000, dtype=np.float32)
    pieces: list[np.ndarray] = []
    for index, (start_frame, end_frame) in enumerate(merged):
        start_sample = min(start_frame * frame_len, original_len)
        end_sample = min((end_frame + 1) * frame_len, original_len)
        if start_sample >= end_sample:
            continue
        pieces.append(samples[start_sample:end_sample])
        if index + 1 < len(merged) and gap.size:
            pieces.append(gap)

    filtered = np.concatenate(pieces).astype(np.float32, copy=False) if pieces else np.zeros(0, dtype=np.float32)
    removed = original_len - len(filtered)
    if removed <= 0:
        return samples, None
    return filtered, PrefilterStats(
        removed_samples=removed,
        kept_samples=len(filtered),
        segments=len(merged),
        threshold=profile.threshold,
        noise_floor=profile.noise_floor,
    )


def trim_silence(samples: np.ndarray, sample_rate: int) -> tuple[np.ndarray, TrimStats | None]:
    """Strip leading and trailing silence only. Returns ``None`` stats on a no-op."""
    if samples.size == 0 or sample_rate <= 0:
        return samples, None
    frame_len = _frame_len(sample_rate)
    if frame_len == 0:
        return samples, None

    original_len = len(samples)
    profile = _analyze(samples, frame_len)
    num_frames = profile.num_frames
    loud = profile.loud_frames()
    if profile.is_flat(loud):
        return samples, None

    loud_indices = np.flatnonzero(loud)
    if loud_indices.size == 0:
        return np.zeros(0, dtype=np.float32), TrimStats(
            trimmed_leading_samples=original_len,
            trimmed_trailing_samples=0,
            threshold=profile.threshold,
            noise_floor=profile.noise_floor,
            leading_frames=num_frames,
            trailing_frames=0,
        )

    first_loud = int(loud_indices[0])
    last_loud = int(loud_indices[-1])
    min_leading_frames = _ms_to_frames(MIN_LEADING_SILENCE_MS)
    min_trailing_frames = _ms_to_frames(MIN_TRAILING_SILENCE_MS)
    pad_before_frames = _ms_to_frames(PAD_BEFORE_MS)
    pad_after_frames = _ms_to_frames(PAD_AFTER_MS)

    leading_frames = first_loud
    trailing_frames = num_frames - (last_loud + 1)

    start_frame = max(first_loud - pad_before_frames, 0) if leading_frames >= min_leading_frames else 0
    if trailing_frames >= min_trailing_frames:
        end_frame = min(last_loud + 1 + pad_after_frames, num_frames)
    else:
        end_frame = num_frames

    if profile.dynamic_tail_start is not None:
        tail_start = max(profile.dynamic_tail_start, last_loud + 1)
        tail_frames = num_frames - tail_start
        if tail_frames >= min_trailing_frames:
            trailing_frames = tail_frames
            end_frame = min(tail_start + pad_after_frames, num_frames)

    if start_frame == 0 and end_frame == num_frames:
        return samples, None

    start_sample = min(start_frame * frame_len, original_len)
    end_sample = min(end_frame * frame_len, original_len)
    if start_sample >= end_sample:
        return np.zeros(0, dtype=np.float32), TrimStats(
            trimmed_leading_samples=original_len,
            trimmed_trailing_samples=0,
            threshold=profile.threshold,
            noise_floor=profile.noise_floor,
            leading_frames=leading_frames,
            trailing_frames=trailing_frames,
        )

    return samples[start_sample:end_sample].copy(), TrimStats(
        trimmed_leading_samples=start_sample,
        trimmed_trailing_samples=original_len - end_sample,
        threshold=profile.threshold,
        noise_floor=profile.noise_floor,
        leading_frames=leading_frames,
        trailing_frames=trailing_frames,
    )


def condition_audio(path: Path) -> np.ndarray:
    logger.debug(f"Decoding audio {path}")
    samples, sample_rate = decode_to_mono(path)
    raw_duration = len(samples) / sample_rate if sample_rate else 0.0
    logger.debug(f"Decoded {len(samples)} samples at {sample_rate} Hz ({raw_duration:.2f}s)")

    samples = resample_to_16k(samples, sample_rate)
    logger.debug(f"Resampled to {len(samples)} samples ({len(samples) / TARGET_SAMPLE_RATE:.2f}s)")

    samples, vad = prefilter_speech(samples, TARGET_SAMPLE_RATE)
    if vad is not None:
        logger.debug(
            f"Prefiltered non-speech: removed {vad.removed_samples / TARGET_SAMPLE_RATE:.2f}s, "
            f"kept {vad.kept_samples} samples in {vad.segments} segment(s) "
            f"(threshold={vad.threshold:.5f}, noise_floor={vad.noise_floor:.5f})"
        )

    samples, trim = trim_silence(samples, TARGET_SAMPLE_RATE)
    if trim is not None:
        logger.debug(
            f"Trimmed silence: {trim.trimmed_leading_samples} leading, "
            f"{trim.trimmed_trailing_samples} trailing samples "
            f"(threshold={trim.threshold:.5f}, noise_floor={trim.noise_floor:.5f})"
        )
    return samples
