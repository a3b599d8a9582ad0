from __future__ import annotations

import logging

from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QAction, QActionGroup
from PySide6.QtWidgets import QMenu, QSystemTrayIcon

from dictate.config import APP_NAME, HOTKEY_LABEL
from dictate.core.events import Quit, SelectMicrophone, ToggleRecording
from dictate.core.jobs import AppState
from dictate.ui.icons import is_dark_theme, state_icon

logger = logging.getLogger(__name__)


class TrayController(QObject):
    action_triggered = Signal(object)
    clicked = Signal()

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._state = AppState.IDLE
        self._progress: int | None = None
        self._dark_theme = is_dark_theme()

        self._menu = QMenu()
        self._status_action = QAction("Status: Idle", self._menu)
        self._status_action.setEnabled(False)
        self._menu.addAction(self._status_action)
        self._menu.addSeparator()

        self._toggle_action = QAction(f"Start Recording ({HOTKEY_LABEL})", self._menu)
        self._toggle_action.triggered.connect(lambda: self.action_triggered.emit(ToggleRecording()))
        self._menu.addAction(self._toggle_action)

        self._mic_menu = self._menu.addMenu("Microphone")
        self._mic_group = QActionGroup(self._mic_menu)
        self._mic_group.setExclusive(True)
        self._menu.addSeparator()

        quit_action = QAction("Quit", self._menu)
        quit_action.triggered.connect(lambda: self.action_triggered.emit(Quit()))
        self._menu.addAction(quit_action)

        self._tray = QSystemTrayIcon(self)
        self._tray.setContextMenu(self._menu)
        self._tray.activated.connect(self._on_activated)
        self._apply_icon()

    def show(self) -> None:
        if not QSystemTrayIcon.isSystemTrayAvailable():
            logger.warning("System tray is not available on this system")
        self._tray.show()

    def hide(self) -> None:
        self._tray.hide()

    def set_state(self, state: AppState, progress: int | None) -> None:
        self._state = state
        self._progress = progress
        label = state.value if progress is None else f"{state.value} {progress}%"
        self._status_action.setText(f"Status: {label}")
        recording = state == AppState.RECORDING
        self._toggle_action.setText(f"{'Stop' if recording else 'Start'} Recording ({HOTKEY_LABEL})")
        self._apply_icon()

    def set_microphones(self, devices: list[str], selected: str | None, default_name: str | None) -> None:
        self._mic_menu.clear()
        for action in self._mic_group.actions():
            self._mic_group.removeAction(action)

        default_label = f"System Default ({default_name})" if default_name else "System Default"
        self._add_mic_action(default_label, None, checked=selected is None or selected not in devices)
        self._mic_menu.addSeparator()
        for name in devices:
            self._add_mic_action(name, name, checked=name == selected)

    def _add_mic_action(self, label: str, name: str | None, checked: bool) -> None:
        action = QAction(label, self._mic_menu)
        action.setCheckable(True)
        action.setChecked(checked)
        action.triggered.connect(lambda _checked=False, mic=name: self.action_triggered.emit(SelectMicrophone(mic)))
        self._mic_group.addAction(action)
        self._mic_menu.addAction(action)

    def sync_idle_theme(self) -> None:
        dark_theme = is_dark_theme()
        if dark_theme == self._dark_theme:
            return
        self._dark_theme = dark_theme
        if self._state == AppState.IDLE:
            self._apply_icon()

    def show_message(self, title: str, message: str) -> None:
        self._tray.showMessage(title, message, QSystemTrayIcon.MessageIcon.Information, 3000)

    def _apply_icon(self) -> None:
        self._tray.setIcon(state_icon(self._state, self._progress, self._dark_theme))
        label = self._state.value if self._progress is None else f"{self._state.value} {self._progress}%"
        self._tray.setToolTip(f"{APP_NAME} ({label})")

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason in (QSystemTrayIcon.ActivationReason.Trigger, QSystemTrayIcon.ActivationReason.Context):
            self.clicked.emit()
