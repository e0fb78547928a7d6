"""Microphone capture into a WAV file with frame event publishing."""

import pyaudio
import wave
import time
import logging
from threading import Thread, Event
from typing import Optional, Callable
from datetime import datetime

import numpy as np

from ..models.audio import AudioStats, AudioEvent

logger = logging.getLogger(__name__)


class AudioCapture:
    """Continuous microphone capture written to a WAV file on a background thread."""

    def __init__(
        self,
        callback: Optional[Callable[[AudioEvent], None]] = None,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callback: Called on the capture thread with every AudioEvent
            sample_rate: Audio sample rate (16kHz suits speech engines)
            chunk_size: Size of each audio chunk in samples
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
        """
        self.audio_event_callback = callback
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.format = format

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False
        self.error: Optional[Exception] = None

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.stop_time: Optional[datetime] = None
        self.total_chunks = 0
        self.peak_level = 0.0
        self.file_path: Optional[str] = None

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self.wave_file: Optional[wave.Wave_write] = None

    def start_recording(self, file_path: str) -> None:
        """Open the microphone and the output file, then record in a background thread.

        Device and file errors are raised here, in the caller's thread, after
        anything already opened has been released.
        """
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        logger.info(f"Starting audio recording to {file_path}")
        try:
            self.pyaudio_instance = pyaudio.PyAudio()
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.chunk_size,
            )
            self.wave_file = wave.open(file_path, 'wb')
            self.wave_file.setnchannels(self.channels)
            self.wave_file.setsampwidth(self.pyaudio_instance.get_sample_size(self.format))
            self.wave_file.setframerate(self.sample_rate)
        except Exception:
            self._release()
            raise

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, {self.chunk_size} samples/chunk")
        self.file_path = file_path
        self.stop_event.clear()
        self.error = None
        self.start_time = datetime.now()
        self.stop_time = None
        self.total_chunks = 0
        self.peak_level = 0.0

        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.is_recording = True
        self.recording_thread.start()

    def stop_recording(self) -> Optional[str]:
        """Stop recording, release the microphone and close the file.

        Returns:
            Path of the written file
        """
        if not self.is_recording:
            logger.warning("No recording in progress")
            return self.file_path

        logger.info("Stopping audio recording")
        self.stop_event.set()

        try:
            if self.recording_thread and self.recording_thread.is_alive():
                self.recording_thread.join(timeout=2.0)
                if self.recording_thread.is_alive():
                    logger.warning("Recording thread did not stop cleanly")
        finally:
            self.is_recording = False
            self.stop_time = datetime.now()
            self._release()

        logger.info(f"Recording stopped. Total chunks: {self.total_chunks}")
        return self.file_path

    def _read_audio_chunk(self) -> bytes:
        audio_chunk = self.stream.read(self.chunk_size, exception_on_overflow=False)
        self.total_chunks += 1
        return audio_chunk

    def _publish_audio_event(self, audio_chunk: bytes, final: bool = False) -> None:
        if not self.audio_event_callback:
            return
        audio_event = AudioEvent(
            chunk_id=f"chunk_{self.total_chunks}",
            audio_data=audio_chunk,
            timestamp=time.time(),
            sequence_number=self.total_chunks,
            sample_rate=self.sample_rate,
            channels=self.channels,
            final=final,
        )
        self.audio_event_callback(audio_event)

    def _update_peak_level(self, audio_chunk: bytes) -> None:
        samples = np.frombuffer(audio_chunk, dtype=np.int16)
        if samples.size:
            self.peak_level = float(np.abs(samples.astype(np.int32)).max()) / 32768.0

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        try:
            while not self.stop_event.is_set():
                audio_chunk = self._read_audio_chunk()
                self.wave_file.writeframes(audio_chunk)
                self._update_peak_level(audio_chunk)
                self._publish_audio_event(audio_chunk)
            # Final empty event, so consumers know we are done
            self._publish_audio_event(b"", final=True)
        except Exception as e:
            logger.error(f"Audio capture failed: {e}")
            self.error = e

    def _release(self) -> None:
        """Close stream, PyAudio and file; each step independent of the others."""
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
            self.stream = None
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
        if self.wave_file is not None:
            try:
                self.wave_file.close()
            except (OSError, wave.Error) as e:
                logger.warning(f"Error closing audio file: {e}")
            self.wave_file = None

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        elapsed_ms = 0
        if self.start_time:
            end_time = self.stop_time or datetime.now()
            elapsed_ms = int((end_time - self.start_time).total_seconds() * 1000)

        return AudioStats(
            is_recording=self.is_recording,
            elapsed_ms=elapsed_ms,
            sample_rate=self.sample_rate,
            chunk_size=self.chunk_size,
            total_chunks=self.total_chunks,
            peak_level=self.peak_level,
            file_path=self.file_path,
        )
