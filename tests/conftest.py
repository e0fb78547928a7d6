"""Pytest configuration and fixtures for VoiceNotes tests."""

import pytest
import time
import uuid
import wave
import logging
from unittest.mock import Mock, patch
from typing import Callable, List, Optional

import numpy as np
from pubsub import pub

from voicenotes.errors import InvalidStateError, RecordingError, SubmitError
from voicenotes.storage.file_manager import FileManager
from voicenotes.transcription.base import (
    AbstractTranscriptionStream,
    AbstractBatchTranscriber,
    ListeningConfig,
)


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without audio hardware or network")
    config.addinivalue_line("markers", "integration: tests wiring several components together")


@pytest.fixture
def temp_data_dir(tmp_path):
    """Create temporary directory for test data."""
    return str(tmp_path / "data")


@pytest.fixture
def file_manager(temp_data_dir):
    return FileManager(temp_data_dir)


@pytest.fixture
def topic_root():
    """Unique pub/sub topic prefix so tests never see each other's messages."""
    return "t" + uuid.uuid4().hex


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # 1024 samples of a 440 Hz sine at 16 kHz
    sample_rate = 16000
    duration = 1024 / sample_rate
    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * 440 * t)
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def sample_audio_file(tmp_path, sample_audio_chunk):
    """Create a sample WAV file for testing."""
    file_path = tmp_path / "test_audio.wav"
    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        for _ in range(100):  # ~6.4 seconds of audio
            wf.writeframes(sample_audio_chunk)
    return str(file_path)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        def read_silence(*args, **kwargs):
            time.sleep(0.01)
            return b'\x00' * 2048

        mock_stream.read.side_effect = read_silence
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_sample_size.return_value = 2

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


class FakePublisher:
    """Topic names of a recorder, without the audio stack behind them."""

    def __init__(self, root: str):
        self.audio_topic = f"{root}_rec.frame"
        self.tick_topic = f"{root}_rec.tick"
        self.playback_topic = f"{root}_rec.playback_finished"


class FakeRecorder:
    """Stands in for AudioRecorder; writes a short silent WAV instead of recording."""

    def __init__(self, root: str):
        self.publisher = FakePublisher(root)
        self.is_recording = False
        self.elapsed_ms = 0
        self.started_paths: List[str] = []
        self.take_frames = 1600
        self.play_calls: List[str] = []
        self.playing = False
        self.released = False
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.play_error: Optional[Exception] = None
        self.poll_error: Optional[Exception] = None
        self.on_start: Optional[Callable[[], None]] = None
        self.on_stop: Optional[Callable[[], None]] = None

    def start(self, path: str) -> None:
        if self.is_recording:
            raise InvalidStateError("A recording is already active")
        if self.on_start:
            self.on_start()
        if self.start_error:
            raise self.start_error
        with wave.open(path, 'wb') as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(16000)
            wf.writeframes(b'\x00' * 2 * self.take_frames)
        self.started_paths.append(path)
        self.elapsed_ms = 0
        self.is_recording = True

    def stop(self) -> str:
        if not self.is_recording:
            raise InvalidStateError("No recording in progress")
        if self.on_stop:
            self.on_stop()
        self.is_recording = False
        if self.stop_error:
            raise self.stop_error
        return self.started_paths[-1]

    def tick(self, elapsed_ms: int) -> None:
        self.elapsed_ms = elapsed_ms
        pub.sendMessage(self.publisher.tick_topic, elapsed_ms=elapsed_ms)

    def poll(self) -> None:
        if self.is_recording and self.poll_error:
            raise self.poll_error

    def play(self, path: str) -> None:
        if self.play_error:
            raise self.play_error
        self.play_calls.append(path)
        self.playing = True

    def finish_playback(self) -> None:
        self.playing = False
        pub.sendMessage(self.publisher.playback_topic, file_path=self.play_calls[-1])

    def pause_play(self) -> None:
        self.playing = False

    def stop_play(self) -> None:
        self.playing = False

    def release(self) -> None:
        self.released = True
        self.playing = False
        if self.is_recording:
            try:
                self.stop()
            except RecordingError:
                pass


class FakeStreamingStream(AbstractTranscriptionStream):
    """Streaming engine driven by the test through emit()."""

    def __init__(self, root: str, available: bool = True):
        super().__init__(topic=f"{root}_stt.utterance")
        self.available = available
        self.availability_checks = 0
        self.configs: List[ListeningConfig] = []
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.poll_error: Optional[Exception] = None
        self.final_text = ""
        self.cleaned_up = False

    def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    def start_listening(self, config: ListeningConfig) -> None:
        if self.start_error:
            raise self.start_error
        self.configs.append(config)
        self.is_listening = True

    def stop_listening(self) -> str:
        self.is_listening = False
        if self.stop_error:
            raise self.stop_error
        return self.final_text

    def poll(self) -> int:
        if self.poll_error:
            error, self.poll_error = self.poll_error, None
            raise error
        return 0

    def emit(self, text: str, is_final: bool = False) -> None:
        self.publish_utterance(text, is_final)

    def cleanup(self) -> None:
        self.cleaned_up = True


class FakeBatchTranscriber(AbstractBatchTranscriber):
    """Batch engine returning a fixed text."""

    def __init__(self, root: str, text: str = "", available: bool = True):
        super().__init__(topic=f"{root}_batch.utterance")
        self.text = text
        self.available = available
        self.error: Optional[Exception] = None
        self.files: List[str] = []

    def is_available(self) -> bool:
        return self.available

    def transcribe_file(self, file_path: str) -> str:
        self.files.append(file_path)
        if self.error:
            raise self.error
        return self.text


class FakeUploadService:
    """Records submitted results; fails with error_reason when set."""

    def __init__(self):
        self.results = []
        self.error_reason: Optional[str] = None

    def submit(self, result):
        if self.error_reason is not None:
            raise SubmitError(self.error_reason)
        self.results.append(result)
        return {"id": f"note-{len(self.results)}", "title": result.title}


@pytest.fixture
def fake_recorder(topic_root):
    return FakeRecorder(topic_root)


@pytest.fixture
def fake_stream(topic_root):
    return FakeStreamingStream(topic_root)


@pytest.fixture
def fake_uploader():
    return FakeUploadService()


class SessionEvents:
    """Collects a capture session's state, error and transcript messages."""

    def __init__(self):
        self.states = []
        self.errors = []
        self.transcripts = []

    def attach(self, session) -> None:
        pub.subscribe(self.on_state, session.state_topic)
        pub.subscribe(self.on_error, session.error_topic)
        pub.subscribe(self.on_transcript, session.transcript_topic)

    def on_state(self, state):
        self.states.append(state)

    def on_error(self, error):
        self.errors.append(error)

    def on_transcript(self, full_text, live_text):
        self.transcripts.append((full_text, live_text))


@pytest.fixture
def session_events():
    return SessionEvents()


@pytest.fixture
def make_batch_engine(topic_root):
    def make(text: str = "", available: bool = True) -> FakeBatchTranscriber:
        return FakeBatchTranscriber(topic_root, text=text, available=available)
    return make
