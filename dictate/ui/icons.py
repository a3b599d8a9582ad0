from __future__ import annotations

from PySide6.QtCore import QRectF, Qt
from PySide6.QtGui import QBrush, QColor, QGuiApplication, QIcon, QImage, QPainter, QPen, QPixmap

from dictate.core.jobs import AppState

ICON_SIZE = 64

STATE_COLORS = {
    AppState.RECORDING: "#e5484d",
    AppState.TRANSCRIBING: "#3e63dd",
    AppState.DOWNLOADING: "#f5a524",
}
IDLE_LIGHT_COLOR = "#1c2024"
IDLE_DARK_COLOR = "#edeef0"


def is_dark_theme() -> bool:
    app = QGuiApplication.instance()
    if app is None:
        return False
    return QGuiApplication.styleHints().colorScheme() == Qt.ColorScheme.Dark


def state_color(state: AppState, dark_theme: bool) -> QColor:
    if state == AppState.IDLE:
        return QColor(IDLE_DARK_COLOR if dark_theme else IDLE_LIGHT_COLOR)
    return QColor(STATE_COLORS[state])


def render_state_image(
    state: AppState,
    progress: int | None = None,
    dark_theme: bool = False,
    size: int = ICON_SIZE,
) -> QImage:
    """Draw the tray glyph: a solid disc, or a ring with a progress wedge."""
    image = QImage(size, size, QImage.Format.Format_ARGB32)
    image.fill(Qt.GlobalColor.transparent)

    color = state_color(state, dark_theme)
    margin = size * 0.1
    rect = QRectF(margin, margin, size - 2 * margin, size - 2 * margin)

    painter = QPainter(image)
    painter.setRenderHint(QPainter.RenderHint.Antialiasing)
    if progress is None or state not in (AppState.TRANSCRIBING, AppState.DOWNLOADING):
        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(QBrush(color))
        painter.drawEllipse(rect)
    else:
        painter.setPen(QPen(color, max(2.0, size * 0.08)))
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawEllipse(rect)

        percent = max(0, min(100, progress))
        if percent > 0:
            painter.setPen(Qt.PenStyle.NoPen)
            painter.setBrush(QBrush(color))
            # Qt angles are in 1/16th of a degree, counter-clockwise from 3 o'clock.
            painter.drawPie(rect, 90 * 16, -int(percent * 360 * 16 / 100))
    painter.end()
    return image


def state_icon(state: AppState, progress: int | None = None, dark_theme: bool = False) -> QIcon:
    return QIcon(QPixmap.fromImage(render_state_image(state, progress, dark_theme)))
