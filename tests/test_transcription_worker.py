import threading
from pathlib import Path

from dictate.core.events import (
    AutoTranscriptionDone,
    AutoTranscriptionError,
    HotkeyTranscriptionDone,
    HotkeyTranscriptionError,
    TranscriptionProgress,
)
from dictate.core.jobs import AutoJob, HotkeyJob
from dictate.core.transcription_worker import ThreadJobLauncher, TranscriptionWorker


class FakeTranscriber:
    def __init__(self, text="transcribed text", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe_file(self, media_path, progress_callback=None, prompt=None, language=None):
        self.calls.append((media_path, prompt, language))
        if progress_callback is not None:
            progress_callback(50)
        if self.error is not None:
            raise self.error
        return self.text


def auto_job(tmp_path: Path) -> AutoJob:
    source = tmp_path / "in" / "talk.wav"
    source.parent.mkdir()
    source.write_bytes(b"audio")
    return AutoJob(
        input_path=source,
        output_path=tmp_path / "out" / "talk.md",
        processed_path=tmp_path / "done" / "talk.wav",
    )


def test_hotkey_job_writes_transcript(tmp_path):
    events = []
    transcriber = FakeTranscriber()
    job = HotkeyJob(audio_path=tmp_path / "rec.m4a", text_path=tmp_path / "rec.md")

    TranscriptionWorker(transcriber, events.append, prompt="Vocabulary: Qt", language="auto").run(job)

    assert (tmp_path / "rec.md").read_text(encoding="utf-8") == "transcribed text"
    assert transcriber.calls == [(job.audio_path, "Vocabulary: Qt", "auto")]
    assert events == [TranscriptionProgress(50), HotkeyTranscriptionDone("transcribed text")]


def test_hotkey_job_failure_is_reported(tmp_path):
    events = []
    job = HotkeyJob(audio_path=tmp_path / "rec.m4a", text_path=tmp_path / "rec.md")

    TranscriptionWorker(FakeTranscriber(error=RuntimeError("boom")), events.append).run(job)

    assert events[-1] == HotkeyTranscriptionError("boom")
    assert not job.text_path.exists()


def test_auto_job_writes_then_moves(tmp_path):
    events = []
    job = auto_job(tmp_path)

    TranscriptionWorker(FakeTranscriber(), events.append).run(job)

    assert job.output_path.read_text(encoding="utf-8") == "transcribed text"
    assert job.processed_path.read_bytes() == b"audio"
    assert not job.input_path.exists()
    assert events[-1] == AutoTranscriptionDone(job.input_path)


def test_auto_job_failure_leaves_input_in_place(tmp_path):
    events = []
    job = auto_job(tmp_path)

    TranscriptionWorker(FakeTranscriber(error=RuntimeError("decode failed")), events.append).run(job)

    assert job.input_path.exists()
    assert not job.output_path.exists()
    assert events[-1] == AutoTranscriptionError(job.input_path, "decode failed")


def test_launcher_runs_job_on_thread_and_reuses_transcriber(tmp_path):
    done = threading.Event()
    events = []
    created = []

    def post(event):
        events.append(event)
        if isinstance(event, HotkeyTranscriptionDone):
            done.set()

    def factory(model_path):
        created.append(model_path)
        return FakeTranscriber(text="hi")

    launcher = ThreadJobLauncher(post, transcriber_factory=factory)
    model = Path("/models/small")
    for name in ("one", "two"):
        done.clear()
        launcher.launch(HotkeyJob(tmp_path / f"{name}.m4a", tmp_path / f"{name}.md"), model)
        assert done.wait(5.0)

    assert created == [model]
    assert (tmp_path / "two.md").read_text(encoding="utf-8") == "hi"
