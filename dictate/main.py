from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from tqdm import tqdm

from dictate.config import APP_NAME, APP_ORG, GPU_ENV_FLAG, gpu_enabled, models_dir

if not gpu_enabled():
    # Keep the backend from probing CUDA when acceleration is switched off.
    os.environ.setdefault("CUDA_VISIBLE_DEVICES", "-1")

logger = logging.getLogger("dictate")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose, rich_tracebacks=True)],
    )
    # huggingface_hub and urllib3 log every request at DEBUG.
    for name in ("urllib3", "huggingface_hub", "filelock"):
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="dictate", description="Hotkey dictation and folder transcription.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the tray app (default)")
    run_parser.add_argument("--model", help="Whisper model name, saved for later runs")
    run_parser.add_argument("--recordings-dir", type=Path, help="Where hotkey recordings are stored")

    transcribe_parser = subparsers.add_parser("transcribe", help="Transcribe one audio file and exit")
    transcribe_parser.add_argument("--input", type=Path, required=True, help="Audio file to transcribe")
    transcribe_parser.add_argument("--model", help="Whisper model name")
    transcribe_parser.add_argument("--language", help='Language code, or "auto" to detect')

    subparsers.add_parser("models", help="List available Whisper models")
    return parser.parse_args(argv)


def list_models() -> int:
    from dictate.core.model_store import available_models, format_size

    table = Table(title="Whisper models")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Languages")
    table.add_column("Notes")
    for model in available_models():
        table.add_row(
            model.name,
            format_size(model.size_bytes),
            "English" if model.english_only else "Multilingual",
            model.description,
        )
    Console().print(table)
    return 0


def transcribe_once(input_path: Path, model_name: str | None, language: str | None) -> int:
    from dictate.core.model_store import ensure_model
    from dictate.core.settings_store import SettingsStore, vocabulary_prompt
    from dictate.core.storage import transcript_path_for_input, write_transcript
    from dictate.core.whisper_service import WhisperService

    if not input_path.is_file():
        logger.error(f"Input file not found: {input_path}")
        return 1

    settings = SettingsStore().load()
    model_name = model_name or settings.model_name
    language = language or settings.language

    with tqdm(total=100, desc=f"Downloading {model_name}", unit="%") as bar:
        model_path = ensure_model(model_name, models_dir(), progress_callback=lambda pct: bar.update(pct - bar.n))

    service = WhisperService(model_path)
    with tqdm(total=100, desc=f"Transcribing {input_path.name}", unit="%") as bar:
        text = service.transcribe_file(
            input_path,
            progress_callback=lambda pct: bar.update(pct - bar.n),
            prompt=vocabulary_prompt(settings.vocabulary),
            language=language,
        )

    output_path = transcript_path_for_input(input_path)
    write_transcript(output_path, text)
    logger.info(f"Transcript written to {output_path}")
    print(text)
    return 0


def run_app(model_name: str | None, recordings_dir: Path | None) -> int:
    from PySide6.QtWidgets import QApplication

    from dictate.core.auto_ingest import AutoIngestWatcher
    from dictate.core.beep import BeepPlayer
    from dictate.core.hotkey import HotkeyListener
    from dictate.core.orchestrator import Orchestrator
    from dictate.core.recorder import SoundDeviceRecorder
    from dictate.core.settings_store import SettingsStore, vocabulary_prompt
    from dictate.core.transcription_worker import ThreadJobLauncher
    from dictate.ui.tray import TrayController

    app = QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(APP_ORG)
    app.setQuitOnLastWindowClosed(False)

    store = SettingsStore()
    if model_name:
        store.set_model_name(model_name)
    if recordings_dir:
        store.set_recordings_dir(recordings_dir.expanduser().resolve())
    settings = store.load()
    settings.recordings_dir = settings.recordings_dir.expanduser().resolve()

    logger.info(f"Starting {APP_NAME} with model {settings.model_name}")
    logger.debug(f"Accelerated inference {'enabled' if gpu_enabled() else 'disabled'} ({GPU_ENV_FLAG})")

    beep = BeepPlayer()
    orchestrator: Orchestrator | None = None

    def post_event(event) -> None:  # noqa: ANN001
        orchestrator.post_event(event)

    launcher = ThreadJobLauncher(
        post_event,
        prompt=vocabulary_prompt(settings.vocabulary),
        language=settings.language,
    )
    orchestrator = Orchestrator(
        settings=settings,
        settings_store=store,
        recorder=SoundDeviceRecorder(),
        job_launcher=launcher,
        beep=beep.play,
    )

    tray = TrayController()
    orchestrator.state_changed.connect(tray.set_state)
    orchestrator.microphones_changed.connect(tray.set_microphones)
    orchestrator.idle_refresh_requested.connect(tray.sync_idle_theme)
    orchestrator.transcript_ready.connect(
        lambda text: tray.show_message(APP_NAME, text or "No speech detected.")
    )
    orchestrator.quit_requested.connect(app.quit)
    tray.action_triggered.connect(orchestrator.post_menu_action)
    tray.clicked.connect(orchestrator.post_tray_click)

    watcher = AutoIngestWatcher(settings.watches, orchestrator.post_event)
    hotkey = HotkeyListener(orchestrator.post_hotkey)

    tray.show()
    orchestrator.refresh_microphones()
    orchestrator.start()
    orchestrator.start_model_download(settings.model_name, models_dir())
    watcher.start()
    hotkey.start()

    try:
        return app.exec()
    finally:
        hotkey.stop()
        watcher.stop()
        orchestrator.shutdown()
        tray.hide()
        logger.info("Stopped")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "models":
        return list_models()
    if args.command == "transcribe":
        return transcribe_once(args.input, args.model, args.language)
    return run_app(getattr(args, "model", None), getattr(args, "recordings_dir", None))


if __name__ == "__main__":
    raise SystemExit(main())
