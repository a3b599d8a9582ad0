from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "Dictate"
APP_ORG = "Dictate"
DEFAULT_MODEL_NAME = "small"
DEFAULT_RECORDINGS_DIR = Path(".recordings")
DEFAULT_MODELS_DIR = Path(".models")
DEFAULT_LANGUAGE = "en"

HOTKEY_COMBINATION = "<alt>+<space>"
HOTKEY_LABEL = "Option+Space"

TICK_INTERVAL_MS = 50
IDLE_REFRESH_INTERVAL_S = 1.0

GPU_ENV_FLAG = "DICTATE_USE_GPU"


def gpu_enabled() -> bool:
    return os.environ.get(GPU_ENV_FLAG, "1").strip().lower() in {"1", "true", "yes", "on"}


def models_dir() -> Path:
    return (Path.cwd() / DEFAULT_MODELS_DIR).resolve()
