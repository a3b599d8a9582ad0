from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from PySide6.QtCore import QSettings

from dictate.config import APP_NAME, APP_ORG, DEFAULT_MODEL_NAME, DEFAULT_RECORDINGS_DIR


@dataclass(slots=True, frozen=True)
class WatchPair:
    input_dir: Path
    output_dir: Path
    processed_dir: Path


@dataclass(slots=True)
class Settings:
    selected_mic: str | None = None
    model_name: str = DEFAULT_MODEL_NAME
    recordings_dir: Path = DEFAULT_RECORDINGS_DIR
    vocabulary: list[str] = field(default_factory=list)
    language: str | None = None
    watches: list[WatchPair] = field(default_factory=list)


def vocabulary_prompt(words: list[str]) -> str | None:
    cleaned = [word.strip() for word in words if word.strip()]
    if not cleaned:
        return None
    return f"Vocabulary: {', '.join(cleaned)}"


class SettingsStore:
    SELECTED_MIC_KEY = "selected_mic"
    MODEL_KEY = "model_name"
    RECORDINGS_DIR_KEY = "recordings_dir"
    LANGUAGE_KEY = "language"
    VOCABULARY_KEY = "vocabulary"
    WORD_KEY = "word"
    WATCHES_KEY = "watches"

    def __init__(self, path: Path | None = None) -> None:
        if path is None:
            self._settings = QSettings(APP_ORG, APP_NAME)
        else:
            self._settings = QSettings(str(path), QSettings.Format.IniFormat)

    def load(self) -> Settings:
        return Settings(
            selected_mic=self._optional_str(self.SELECTED_MIC_KEY),
            model_name=self._settings.value(self.MODEL_KEY, DEFAULT_MODEL_NAME, type=str) or DEFAULT_MODEL_NAME,
            recordings_dir=Path(
                self._settings.value(self.RECORDINGS_DIR_KEY, str(DEFAULT_RECORDINGS_DIR), type=str)
            ).expanduser(),
            vocabulary=self._read_vocabulary(),
            language=self._optional_str(self.LANGUAGE_KEY),
            watches=self._read_watches(),
        )

    def save(self, settings: Settings) -> None:
        self._write_optional(self.SELECTED_MIC_KEY, settings.selected_mic)
        self._settings.setValue(self.MODEL_KEY, settings.model_name)
        self._settings.setValue(self.RECORDINGS_DIR_KEY, str(settings.recordings_dir))
        self._write_optional(self.LANGUAGE_KEY, settings.language)

        self._settings.remove(self.VOCABULARY_KEY)
        self._settings.beginWriteArray(self.VOCABULARY_KEY, len(settings.vocabulary))
        for index, word in enumerate(settings.vocabulary):
            self._settings.setArrayIndex(index)
            self._settings.setValue(self.WORD_KEY, word)
        self._settings.endArray()

        self._settings.remove(self.WATCHES_KEY)
        self._settings.beginWriteArray(self.WATCHES_KEY, len(settings.watches))
        for index, watch in enumerate(settings.watches):
            self._settings.setArrayIndex(index)
            self._settings.setValue("input_dir", str(watch.input_dir))
            self._settings.setValue("output_dir", str(watch.output_dir))
            self._settings.setValue("processed_dir", str(watch.processed_dir))
        self._settings.endArray()
        self._settings.sync()

    def set_selected_mic(self, name: str | None) -> None:
        self._write_optional(self.SELECTED_MIC_KEY, name)
        self._settings.sync()

    def set_model_name(self, model_name: str) -> None:
        self._settings.setValue(self.MODEL_KEY, model_name)
        self._settings.sync()

    def set_recordings_dir(self, recordings_dir: Path) -> None:
        self._settings.setValue(self.RECORDINGS_DIR_KEY, str(recordings_dir))
        self._settings.sync()

    def _optional_str(self, key: str) -> str | None:
        value = self._settings.value(key, "", type=str)
        return value or None

    def _write_optional(self, key: str, value: str | None) -> None:
        if value:
            self._settings.setValue(key, value)
        else:
            self._settings.remove(key)

    def _read_vocabulary(self) -> list[str]:
        words: list[str] = []
        count = self._settings.beginReadArray(self.VOCABULARY_KEY)
        for index in range(count):
            self._settings.setArrayIndex(index)
            word = self._settings.value(self.WORD_KEY, "", type=str)
            if word:
                words.append(word)
        self._settings.endArray()
        return words

    def _read_watches(self) -> list[WatchPair]:
        watches: list[WatchPair] = []
        count = self._settings.beginReadArray(self.WATCHES_KEY)
        for index in range(count):
            self._settings.setArrayIndex(index)
            input_dir = self._settings.value("input_dir", "", type=str)
            output_dir = self._settings.value("output_dir", "", type=str)
            processed_dir = self._settings.value("processed_dir", "", type=str)
            if input_dir and output_dir and processed_dir:
                watches.append(
                    WatchPair(
                        input_dir=Path(input_dir).expanduser(),
                        output_dir=Path(output_dir).expanduser(),
                        processed_dir=Path(processed_dir).expanduser(),
                    )
                )
        self._settings.endArray()
        return watches
