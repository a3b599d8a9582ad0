import wave

import numpy as np
import pytest

from dictate.core import audio_pipeline
from dictate.core.audio_pipeline import (
    AudioDecodeError,
    condition_audio,
    decode_to_mono,
    prefilter_speech,
    resample_to_16k,
    trim_silence,
)

RATE = 16_000
FRAME = 320


def frames(*parts: tuple[int, float]) -> np.ndarray:
    """Build a clip from (frame_count, amplitude) runs of constant mean |x|."""
    chunks = []
    for count, amplitude in parts:
        n = count * FRAME
        chunks.append(amplitude * np.where(np.arange(n) % 2 == 0, 1.0, -1.0))
    return np.concatenate(chunks).astype(np.float32)


def write_wav(path, samples: np.ndarray, rate: int = RATE) -> None:
    # Two-dimensional input is (frames, channels) and is written interleaved.
    pcm = np.round(samples * 32768).clip(-32768, 32767).astype("<i2")
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(1 if samples.ndim == 1 else samples.shape[1])
        handle.setsampwidth(2)
        handle.setframerate(rate)
        handle.writeframes(pcm.tobytes())


def room_noise(seconds: float = 3.0, sigma: float = 0.005) -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.normal(0.0, sigma, int(RATE * seconds)).astype(np.float32)


class TestResample:
    def test_identity_at_target_rate(self):
        samples = frames((10, 0.5))
        assert resample_to_16k(samples, RATE) is samples

    @pytest.mark.parametrize("rate", [48_000, 44_100, 8_000])
    def test_output_length_follows_rate_ratio(self, rate):
        samples = np.zeros(rate, dtype=np.float32)
        resampled = resample_to_16k(samples, rate)
        assert len(resampled) == RATE
        assert resampled.dtype == np.float32

    def test_in_band_tone_keeps_amplitude(self):
        t = np.arange(48_000) / 48_000
        tone = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
        resampled = resample_to_16k(tone, 48_000)
        assert np.max(np.abs(resampled[2000:-2000])) == pytest.approx(0.5, abs=0.02)

    def test_invalid_rate(self):
        with pytest.raises(AudioDecodeError):
            resample_to_16k(np.zeros(10, dtype=np.float32), 0)


class TestPrefilter:
    def test_silence_only_becomes_empty(self):
        filtered, stats = prefilter_speech(np.zeros(RATE, dtype=np.float32), RATE)
        assert filtered.size == 0
        assert stats is not None
        assert stats.kept_samples == 0
        assert stats.removed_samples == RATE

    def test_uniform_full_scale_is_left_alone(self):
        samples = np.ones(RATE, dtype=np.float32)
        filtered, stats = prefilter_speech(samples, RATE)
        assert filtered is samples
        assert stats is None

    def test_noise_without_speech_becomes_empty(self):
        samples = room_noise()
        filtered, stats = prefilter_speech(samples, RATE)
        assert filtered.size == 0
        assert stats.removed_samples == len(samples)

    def test_clip_shorter_than_two_frames_is_left_alone(self):
        samples = frames((1, 0.5))
        filtered, stats = prefilter_speech(samples, RATE)
        assert filtered is samples
        assert stats is None

    def test_single_run_covering_clip_is_a_no_op(self):
        samples = frames((10, 0.0), (35, 0.5), (5, 0.0))
        filtered, stats = prefilter_speech(samples, RATE)
        assert filtered is samples
        assert stats is None

    def test_distant_runs_are_joined_with_short_gap(self):
        samples = frames((10, 0.0), (20, 0.5), (70, 0.0), (20, 0.5), (10, 0.0))
        filtered, stats = prefilter_speech(samples, RATE)

        # Two padded runs of 42 frames plus 120 ms of inserted silence.
        assert len(filtered) == 84 * FRAME + 1920
        assert stats.segments == 2
        assert stats.removed_samples == len(samples) - len(filtered)

    def test_quiet_tail_in_final_window_is_kept(self):
        samples = frames((100, 0.0), (50, 0.5), (25, 0.0), (15, 0.0018))
        filtered, stats = prefilter_speech(samples, RATE)

        assert len(filtered) == 102 * FRAME
        assert stats.segments == 1
        assert np.allclose(np.abs(filtered[-FRAME:]), 0.0018)

    def test_quiet_run_outside_final_window_is_dropped(self):
        samples = frames((100, 0.0), (50, 0.5), (25, 0.0), (15, 0.0018), (50, 0.0))
        filtered, _ = prefilter_speech(samples, RATE)

        assert len(filtered) == 74 * FRAME
        assert not np.any(np.isclose(np.abs(filtered), 0.0018))

    def test_trailing_decay_extends_last_run(self):
        samples = frames((50, 0.0), (50, 0.006), (40, 0.0019), (60, 0.0))
        filtered, _ = prefilter_speech(samples, RATE)

        # Padding alone would stop at frame 111; the decay runs to frame 139.
        assert len(filtered) == 104 * FRAME
        assert np.isclose(np.abs(filtered[100 * FRAME]), 0.0019)


class TestTrim:
    def test_silence_only_becomes_empty(self):
        trimmed, stats = trim_silence(np.zeros(RATE, dtype=np.float32), RATE)
        assert trimmed.size == 0
        assert stats.trimmed_samples == RATE

    def test_uniform_full_scale_is_left_alone(self):
        samples = np.ones(RATE, dtype=np.float32)
        trimmed, stats = trim_silence(samples, RATE)
        assert trimmed is samples
        assert stats is None

    def test_noise_without_speech_becomes_empty(self):
        samples = room_noise()
        trimmed, stats = trim_silence(samples, RATE)
        assert trimmed.size == 0
        assert stats.trimmed_samples == len(samples)

    def test_constant_quiet_tone_is_left_alone(self):
        samples = frames((60, 0.01))
        trimmed, stats = trim_silence(samples, RATE)
        assert trimmed is samples
        assert stats is None

    def test_long_leading_silence_is_trimmed_with_padding(self):
        samples = frames((30, 0.0), (50, 0.5), (5, 0.0))
        trimmed, stats = trim_silence(samples, RATE)

        assert stats.trimmed_leading_samples == 20 * FRAME
        assert stats.trimmed_trailing_samples == 0
        assert len(trimmed) == len(samples) - 20 * FRAME

    def test_leading_silence_at_threshold_is_trimmed(self):
        samples = frames((15, 0.0), (50, 0.5), (5, 0.0))
        trimmed, stats = trim_silence(samples, RATE)
        assert stats.trimmed_leading_samples == 5 * FRAME

    def test_leading_silence_below_threshold_is_kept(self):
        samples = frames((14, 0.0), (50, 0.5), (5, 0.0))
        trimmed, stats = trim_silence(samples, RATE)
        assert trimmed is samples
        assert stats is None

    def test_trailing_silence_keeps_settling_window(self):
        samples = frames((50, 0.5), (30, 0.0))
        trimmed, stats = trim_silence(samples, RATE)

        # The energy settles at frame 57; 240 ms of padding follows.
        assert len(trimmed) == 69 * FRAME
        assert stats.trimmed_leading_samples == 0
        assert stats.trimmed_trailing_samples == 11 * FRAME

    def test_interior_silence_is_untouched(self):
        samples = frames((5, 0.0), (20, 0.5), (40, 0.0), (20, 0.5), (5, 0.0))
        trimmed, stats = trim_silence(samples, RATE)
        assert trimmed is samples
        assert stats is None


class TestDecode:
    def test_missing_file(self, tmp_path):
        with pytest.raises(AudioDecodeError):
            decode_to_mono(tmp_path / "missing.wav")

    def test_not_audio(self, tmp_path):
        path = tmp_path / "notes.wav"
        path.write_text("definitely not audio")
        with pytest.raises(AudioDecodeError):
            decode_to_mono(path)

    def test_wav_decodes_to_float_mono(self, tmp_path):
        path = tmp_path / "clip.wav"
        samples = frames((10, 0.5))
        write_wav(path, samples)

        decoded, rate = decode_to_mono(path)

        assert rate == RATE
        assert decoded.dtype == np.float32
        assert np.allclose(decoded, samples, atol=1e-4)

    def test_stereo_wav_is_averaged_per_frame(self, tmp_path):
        path = tmp_path / "stereo.wav"
        t = np.arange(RATE // 2) / RATE
        left = 0.4 * np.sin(2 * np.pi * 300 * t)
        right = 0.2 * np.sin(2 * np.pi * 1100 * t)
        write_wav(path, np.stack([left, right], axis=1))

        decoded, rate = decode_to_mono(path)

        assert rate == RATE
        assert decoded.shape == left.shape
        assert np.allclose(decoded, (left + right) / 2, atol=1e-3)


def test_condition_audio_runs_every_stage(tmp_path):
    path = tmp_path / "clip.wav"
    write_wav(path, frames((50, 0.0), (50, 0.5), (50, 0.0)))

    conditioned = condition_audio(path)

    assert len(conditioned) == 74 * FRAME


def test_condition_audio_resamples_before_filtering(tmp_path, monkeypatch):
    seen = {}

    def fake_decode(path):
        return np.zeros(48_000, dtype=np.float32), 48_000

    def fake_prefilter(samples, rate):
        seen["length"] = len(samples)
        seen["rate"] = rate
        return samples, None

    monkeypatch.setattr(audio_pipeline, "decode_to_mono", fake_decode)
    monkeypatch.setattr(audio_pipeline, "prefilter_speech", fake_prefilter)

    condition_audio(tmp_path / "any.wav")

    assert seen == {"length": RATE, "rate": RATE}


def test_condition_audio_empties_noise_only_clip(tmp_path):
    path = tmp_path / "room.wav"
    write_wav(path, room_noise())

    assert condition_audio(path).size == 0
