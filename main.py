"""Application entrypoint."""

from __future__ import annotations

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler

from config import JsonConfigStore, RealtimeSettings, remember_api_key, resolve_api_key
from errors import ConnectError, ErrorFeed
from models import AudioFormat, ConnectionState, RecordingState, Transcript
from recognizer import RealtimeTranscriptionLink
from recorder import SoundDeviceRecorder
from session_controller import SessionCoordinator

try:
    from PySide6.QtCore import QObject, QTimer, Signal
    from PySide6.QtWidgets import (
        QApplication,
        QHBoxLayout,
        QLabel,
        QLineEdit,
        QProgressBar,
        QPushButton,
        QTextEdit,
        QVBoxLayout,
        QWidget,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

COLOR_CONNECTED = "#4CAF50"
COLOR_DISCONNECTED = "#FF5252"
COLOR_RECORDING = "#DC3545"
COLOR_IDLE = "#007ACC"
LEVEL_DECAY = 5


def setup_logging(config_store: JsonConfigStore, level: int = logging.INFO) -> None:
    log_file = config_store.path.parent / "voicestream.log"
    file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=2, encoding="utf-8")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(), file_handler],
    )
    logging.getLogger("websocket").setLevel(logging.WARNING)


class UIBridge(QObject):
    connection_signal = Signal(str)
    recording_signal = Signal(str)
    transcript_signal = Signal(str)
    level_signal = Signal(float)
    status_signal = Signal(str)
    error_signal = Signal(str)


class MainWindow(QWidget):
    def __init__(self, config_store: JsonConfigStore) -> None:
        super().__init__()
        self.setWindowTitle("Voice Stream")
        self.resize(640, 480)
        self.config_store = config_store
        self.transcript = Transcript()
        self.errors = ErrorFeed()

        self.api_key_edit = QLineEdit()
        self.api_key_edit.setPlaceholderText("OpenAI API key")
        self.api_key_edit.setEchoMode(QLineEdit.Password)
        self.api_key_edit.setText(resolve_api_key(config_store))
        self.api_key_edit.textChanged.connect(self._save_api_key)

        self.connect_button = QPushButton("Connect")
        self.record_button = QPushButton("Start Recording")
        self.record_button.setEnabled(False)
        self.clear_button = QPushButton("Clear")

        self.status_label = QLabel("Disconnected")
        self.level_bar = QProgressBar()
        self.level_bar.setRange(0, 100)
        self.level_bar.setTextVisible(False)

        self.transcript_edit = QTextEdit()
        self.transcript_edit.setPlaceholderText("Your transcribed text will appear here...")

        self.error_label = QLabel("")
        self.error_label.setWordWrap(True)
        self.error_label.setStyleSheet("color: #FF5252;")
        self.error_label.hide()

        top = QHBoxLayout()
        top.addWidget(self.api_key_edit, 1)
        top.addWidget(self.connect_button)
        controls = QHBoxLayout()
        controls.addWidget(self.record_button)
        controls.addWidget(self.clear_button)
        controls.addWidget(self.level_bar, 1)
        controls.addWidget(self.status_label)

        layout = QVBoxLayout()
        layout.addLayout(top)
        layout.addLayout(controls)
        layout.addWidget(self.transcript_edit, 1)
        layout.addWidget(self.error_label)
        self.setLayout(layout)
        self._set_status_color(COLOR_DISCONNECTED)

    def _save_api_key(self, value: str) -> None:
        remember_api_key(self.config_store, value)

    def _set_status_color(self, color: str) -> None:
        self.status_label.setStyleSheet(f"color: {color}; font-weight: bold;")

    def show_connection(self, state: str) -> None:
        connected = state == ConnectionState.OPEN.value
        self.status_label.setText("Connected" if connected else state.capitalize())
        self._set_status_color(COLOR_CONNECTED if connected else COLOR_DISCONNECTED)
        self.connect_button.setText("Disconnect" if connected else "Connect")
        self.connect_button.setEnabled(state != ConnectionState.CONNECTING.value)
        self.record_button.setEnabled(connected)

    def show_recording(self, state: str) -> None:
        capturing = state == RecordingState.CAPTURING.value
        self.record_button.setText("Stop Recording" if capturing else "Start Recording")
        color = COLOR_RECORDING if capturing else COLOR_IDLE
        self.record_button.setStyleSheet(f"background: {color}; color: white;")

    def append_transcript(self, fragment: str) -> None:
        if self.transcript_edit.toPlainText() != self.transcript.text:
            # User edits win verbatim; keep appending after them.
            self.transcript.reset(self.transcript_edit.toPlainText())
        self.transcript_edit.setPlainText(self.transcript.append(fragment))
        scrollbar = self.transcript_edit.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())

    def clear_transcript(self) -> None:
        self.transcript.clear()
        self.transcript_edit.clear()
        self.clear_errors()

    def show_error(self, message: str) -> None:
        self.errors.push(message)
        self.error_label.setText(self.errors.text())
        self.error_label.show()

    def clear_errors(self) -> None:
        self.errors.clear()
        self.error_label.clear()
        self.error_label.hide()

    def decay_level(self) -> None:
        self.level_bar.setValue(max(0, self.level_bar.value() - LEVEL_DECAY))


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        setup_logging(self.config_store)
        self.window = MainWindow(self.config_store)
        self.ui = UIBridge()
        self.ui.connection_signal.connect(self.window.show_connection)
        self.ui.recording_signal.connect(self.window.show_recording)
        self.ui.transcript_signal.connect(self.window.append_transcript)
        self.ui.level_signal.connect(lambda level: self.window.level_bar.setValue(int(level)))
        self.ui.status_signal.connect(self.window.status_label.setToolTip)
        self.ui.error_signal.connect(self.window.show_error)

        self.coordinator = SessionCoordinator(
            recorder=SoundDeviceRecorder(audio_format=AudioFormat()),
            link=RealtimeTranscriptionLink(RealtimeSettings.from_env()),
            on_connection_change=self._on_connection_change,
            on_recording_change=self._on_recording_change,
            on_transcript=self.ui.transcript_signal.emit,
            on_level=self.ui.level_signal.emit,
            on_status=self.ui.status_signal.emit,
            on_error=self._on_error,
        )

        self.window.connect_button.clicked.connect(self._toggle_connection)
        self.window.record_button.clicked.connect(self._toggle_recording)
        self.window.clear_button.clicked.connect(self.window.clear_transcript)

        self._level_timer = QTimer()
        self._level_timer.setInterval(100)
        self._level_timer.timeout.connect(self._tick_level)
        self._level_timer.start()
        self.app.aboutToQuit.connect(self.quit)

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_connection_change(self, state: ConnectionState) -> None:
        self.ui.connection_signal.emit(state.value)

    def _on_recording_change(self, state: RecordingState) -> None:
        self.ui.recording_signal.emit(state.value)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    # ------------------------------------------------------------------
    # UI intents
    # ------------------------------------------------------------------

    def _toggle_connection(self) -> None:
        if self.coordinator.connection_state == ConnectionState.OPEN:
            threading.Thread(target=self.coordinator.disconnect, daemon=True).start()
            return
        api_key = self.window.api_key_edit.text().strip()
        if not api_key:
            self.window.show_error("Please enter a valid OpenAI API key")
            return
        self.window.clear_errors()
        threading.Thread(target=self._connect, args=(api_key,), daemon=True).start()

    def _connect(self, api_key: str) -> None:
        try:
            self.coordinator.connect(api_key)
        except ConnectError:
            # Already reported through on_error.
            return
        remember_api_key(self.config_store, api_key)

    def _toggle_recording(self) -> None:
        if self.coordinator.recording_state == RecordingState.CAPTURING:
            # stop_recording waits for the flush, keep it off the Qt thread
            threading.Thread(target=self.coordinator.stop_recording, daemon=True).start()
            return
        self.window.clear_errors()
        self.coordinator.start_recording()

    def _tick_level(self) -> None:
        if self.coordinator.recording_state != RecordingState.CAPTURING:
            self.window.decay_level()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.window.show()
        return self.app.exec()

    def quit(self) -> None:
        self._level_timer.stop()
        self.coordinator.disconnect()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
