import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dictate.core import storage
from dictate.core.storage import (
    iso_timestamp,
    move_to_processed,
    next_recording_paths,
    processed_path_for_input,
    sanitize_filename,
    transcript_path_for_input,
    transcript_path_for_output_dir,
    write_transcript,
)


def test_sanitize_filename_replaces_reserved_characters():
    assert sanitize_filename('a<b>c:d"e/f\\g|h?i*j') == "a-b-c-d-e-f-g-h-i-j"
    assert sanitize_filename("tab\there\x7f") == "tab-here-"
    assert sanitize_filename("plain name.m4a") == "plain name.m4a"


def test_iso_timestamp_format():
    moment = datetime(2024, 3, 5, 14, 7, 9, 42_000, tzinfo=timezone(timedelta(hours=-5)))
    assert iso_timestamp(moment) == "2024-03-05T14-07-09.042-0500"


def test_iso_timestamp_defaults_to_local_time():
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d-\d\d-\d\d\.\d{3}[+-]\d{4}", iso_timestamp())


def test_next_recording_paths_share_a_stem(tmp_path):
    moment = datetime(2024, 1, 2, 3, 4, 5, 6_000, tzinfo=timezone.utc)
    audio, text = next_recording_paths(tmp_path / "recordings", moment)

    assert audio == tmp_path / "recordings" / "2024-01-02T03-04-05.006+0000.m4a"
    assert text == tmp_path / "recordings" / "2024-01-02T03-04-05.006+0000.md"
    assert (tmp_path / "recordings").is_dir()


def test_transcript_paths():
    source = Path("/inbox/meeting.final.wav")
    assert transcript_path_for_input(source) == Path("/inbox/meeting.final.md")
    assert transcript_path_for_output_dir(source, Path("/out")) == Path("/out/meeting.final.md")


def test_derived_paths_replace_reserved_characters(tmp_path):
    source = Path("/inbox/meet:ing?.wav")

    assert transcript_path_for_input(source) == Path("/inbox/meet-ing-.md")
    assert transcript_path_for_output_dir(source, tmp_path) == tmp_path / "meet-ing-.md"
    assert processed_path_for_input(source, tmp_path) == tmp_path / "meet-ing-.wav"

    (tmp_path / "meet-ing-.wav").write_bytes(b"old")
    collided = processed_path_for_input(source, tmp_path)
    assert collided.name.startswith("meet-ing-_")
    assert collided.suffix == ".wav"


def test_processed_path_without_collision(tmp_path):
    assert processed_path_for_input(Path("/inbox/a.mp3"), tmp_path) == tmp_path / "a.mp3"


def test_processed_path_with_collision_gets_suffix(tmp_path, monkeypatch):
    (tmp_path / "a.mp3").write_bytes(b"old")
    monkeypatch.setattr(storage, "iso_timestamp", lambda: "2024-01-02T03-04-05.006+0000")

    assert processed_path_for_input(Path("/inbox/a.mp3"), tmp_path) == (
        tmp_path / "a_2024-01-02T03-04-05.006+0000.mp3"
    )


def test_write_transcript_replaces_atomically(tmp_path):
    target = tmp_path / "out" / "a.md"
    write_transcript(target, "first")
    write_transcript(target, "second")

    assert target.read_text(encoding="utf-8") == "second"
    assert [p.name for p in target.parent.iterdir()] == ["a.md"]


def test_move_to_processed(tmp_path):
    source = tmp_path / "in" / "a.wav"
    source.parent.mkdir()
    source.write_bytes(b"audio")

    moved = move_to_processed(source, tmp_path / "done" / "a.wav")

    assert moved == tmp_path / "done" / "a.wav"
    assert moved.read_bytes() == b"audio"
    assert not source.exists()
