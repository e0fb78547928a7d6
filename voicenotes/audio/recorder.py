"""Audio recorder: exclusive microphone capture, elapsed-time ticks and playback."""

import time
import wave
import logging
from typing import Optional, Callable

from .audio_pub import AudioPublisher
from .capture import AudioCapture
from .player import AudioPlayer
from ..config import VoiceNotesConfig
from ..errors import InvalidStateError, RecordingError
from ..models.audio import AudioStats

logger = logging.getLogger(__name__)

PermissionGate = Callable[[], bool]


class AudioRecorder:
    """Owns the microphone for one capture session.

    Only one recording can be active at a time. Events (ticks, end of
    playback) are published from ``poll()`` so that listeners run on the
    caller's thread rather than on the capture thread.
    """

    def __init__(self,
                 sample_rate: int = 16000,
                 chunk_size: int = 1024,
                 channels: int = 1,
                 tick_interval_seconds: float = 1.0,
                 publisher: Optional[AudioPublisher] = None,
                 permission_gate: Optional[PermissionGate] = None):
        """Initialize recorder.

        Args:
            sample_rate: Audio sample rate
            chunk_size: Samples per captured chunk
            channels: Number of audio channels
            tick_interval_seconds: Minimum time between elapsed-time ticks
            publisher: Publisher for frames, ticks and playback events
            permission_gate: Platform permission prompt; returning False denies the microphone
        """
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.tick_interval_seconds = tick_interval_seconds
        self.publisher = publisher or AudioPublisher()
        self.permission_gate = permission_gate

        self.capture: Optional[AudioCapture] = None
        self.player = AudioPlayer(chunk_size=chunk_size)
        self.is_recording = False
        self._started_monotonic: Optional[float] = None
        self._stopped_monotonic: Optional[float] = None
        self._last_tick: Optional[float] = None

    @classmethod
    def from_config(cls, config: VoiceNotesConfig,
                    permission_gate: Optional[PermissionGate] = None) -> "AudioRecorder":
        return cls(
            sample_rate=config.get('audio.sample_rate', 16000),
            chunk_size=config.get('audio.chunk_size', 1024),
            channels=config.get('audio.channels', 1),
            tick_interval_seconds=config.get('recorder.tick_interval_seconds', 1.0),
            permission_gate=permission_gate,
        )

    @property
    def elapsed_ms(self) -> int:
        if self._started_monotonic is None:
            return 0
        end = self._stopped_monotonic if self._stopped_monotonic is not None else time.monotonic()
        return int((end - self._started_monotonic) * 1000)

    @property
    def is_playing(self) -> bool:
        return self.player.is_playing

    def start(self, path: str) -> None:
        """Acquire the microphone and start recording into path.

        Raises:
            InvalidStateError: If a recording is already active
            RecordingError: If permission is denied or the device/file cannot be opened
        """
        if self.is_recording:
            raise InvalidStateError("A recording is already active")

        if self.permission_gate is not None and not self.permission_gate():
            raise RecordingError("Microphone permission denied")

        self.player.stop()
        capture = AudioCapture(
            callback=self.publisher.publish_audio_event,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            channels=self.channels,
        )
        try:
            capture.start_recording(path)
        except (OSError, wave.Error) as e:
            logger.error(f"Could not start recording: {e}")
            raise RecordingError(f"Could not start recording: {e}") from e

        self.capture = capture
        self.is_recording = True
        self._started_monotonic = time.monotonic()
        self._stopped_monotonic = None
        self._last_tick = self._started_monotonic
        logger.info(f"Recording started: {path}")

    def stop(self) -> str:
        """Stop recording and release the microphone.

        Returns:
            Path of the recorded file

        Raises:
            InvalidStateError: If not recording
            RecordingError: If capture failed; the microphone is released regardless
        """
        if not self.is_recording or self.capture is None:
            raise InvalidStateError("No recording in progress")

        capture = self.capture
        try:
            path = capture.stop_recording()
        except (OSError, wave.Error) as e:
            raise RecordingError(f"Could not finish recording: {e}") from e
        finally:
            self.is_recording = False
            self._stopped_monotonic = time.monotonic()

        self.publisher.publish_tick(self.elapsed_ms)
        if capture.error is not None:
            raise RecordingError(f"Recording failed: {capture.error}")

        logger.info(f"Recording stopped after {self.elapsed_ms} ms: {path}")
        return path

    def poll(self) -> None:
        """Publish due ticks and playback completion.

        Raises:
            RecordingError: If the capture thread failed
        """
        if self.is_recording and self.capture is not None:
            if self.capture.error is not None:
                raise RecordingError(f"Recording failed: {self.capture.error}")
            now = time.monotonic()
            if now - self._last_tick >= self.tick_interval_seconds:
                self._last_tick = now
                self.publisher.publish_tick(self.elapsed_ms)

        if self.player.consume_finished():
            self.publisher.publish_playback_finished(self.player.file_path)

    def play(self, path: str) -> None:
        """Play (or resume) a recorded file.

        Raises:
            InvalidStateError: While recording
            RecordingError: If the file cannot be opened
        """
        if self.is_recording:
            raise InvalidStateError("Cannot play while recording")
        try:
            self.player.play(path)
        except (OSError, wave.Error) as e:
            raise RecordingError(f"Could not play {path}: {e}") from e

    def pause_play(self) -> None:
        self.player.pause()

    def stop_play(self) -> None:
        self.player.stop()

    def get_recording_stats(self) -> Optional[AudioStats]:
        """Get current recording statistics."""
        if self.capture:
            return self.capture.get_recording_stats()
        return None

    def release(self) -> None:
        """Release microphone and speaker. Errors are logged, not raised."""
        self.stop_play()
        if self.is_recording:
            try:
                self.stop()
            except RecordingError as e:
                logger.warning(f"Error releasing recorder: {e.reason}")
