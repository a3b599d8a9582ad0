from __future__ import annotations

import logging
from typing import Callable

from pynput import keyboard

from dictate.config import HOTKEY_COMBINATION

logger = logging.getLogger(__name__)


class HotkeyListener:
    """Global hotkey on a pynput thread; presses are forwarded to ``on_press``."""

    def __init__(self, on_press: Callable[[], None], combination: str = HOTKEY_COMBINATION) -> None:
        self._on_press = on_press
        self._combination = combination
        self._listener: keyboard.GlobalHotKeys | None = None

    def start(self) -> None:
        if self._listener is not None:
            return
        self._listener = keyboard.GlobalHotKeys({self._combination: self._on_press})
        self._listener.start()
        logger.info(f"Listening for hotkey {self._combination}")

    def stop(self) -> None:
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
