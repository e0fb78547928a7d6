"""Playback of recorded WAV files."""

import pyaudio
import wave
import logging
from threading import Thread, Event
from typing import Optional

logger = logging.getLogger(__name__)


class AudioPlayer:
    """Plays a WAV file on a PyAudio output stream in a background thread."""

    def __init__(self, chunk_size: int = 1024):
        self.chunk_size = chunk_size
        self.file_path: Optional[str] = None
        self.playback_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.resume_event = Event()
        self.finished_event = Event()
        self.error: Optional[Exception] = None

    @property
    def is_playing(self) -> bool:
        return (self.playback_thread is not None and self.playback_thread.is_alive()
                and self.resume_event.is_set())

    @property
    def is_paused(self) -> bool:
        return (self.playback_thread is not None and self.playback_thread.is_alive()
                and not self.resume_event.is_set())

    def play(self, file_path: str) -> None:
        """Start playing file_path, or resume it if it is paused."""
        if self.is_paused and file_path == self.file_path:
            logger.info(f"Resuming playback of {file_path}")
            self.resume_event.set()
            return

        self.stop()
        wave_file = wave.open(file_path, 'rb')
        self.file_path = file_path
        self.stop_event.clear()
        self.finished_event.clear()
        self.resume_event.set()
        self.error = None

        self.playback_thread = Thread(target=self._play_continuously, args=(wave_file,), daemon=True)
        self.playback_thread.name = "AudioPlaybackThread"
        self.playback_thread.start()
        logger.info(f"Started playback of {file_path}")

    def pause(self) -> None:
        if self.is_playing:
            self.resume_event.clear()
            logger.info("Playback paused")

    def stop(self) -> None:
        """Stop playback. Does nothing if nothing is playing."""
        if self.playback_thread is None:
            return
        self.stop_event.set()
        self.resume_event.set()
        if self.playback_thread.is_alive():
            self.playback_thread.join(timeout=2.0)
            if self.playback_thread.is_alive():
                logger.warning("Playback thread did not stop cleanly")
        self.playback_thread = None

    def _play_continuously(self, wave_file: wave.Wave_read) -> None:
        """Internal method: playback loop in background thread."""
        pyaudio_instance = pyaudio.PyAudio()
        stream = None
        try:
            stream = pyaudio_instance.open(
                format=pyaudio_instance.get_format_from_width(wave_file.getsampwidth()),
                channels=wave_file.getnchannels(),
                rate=wave_file.getframerate(),
                output=True,
            )
            data = wave_file.readframes(self.chunk_size)
            while data and not self.stop_event.is_set():
                self.resume_event.wait()
                if self.stop_event.is_set():
                    break
                stream.write(data)
                data = wave_file.readframes(self.chunk_size)
            if not self.stop_event.is_set():
                self.finished_event.set()
        except Exception as e:
            logger.error(f"Playback failed: {e}")
            self.error = e
        finally:
            if stream is not None:
                stream.stop_stream()
                stream.close()
            pyaudio_instance.terminate()
            wave_file.close()

    def consume_finished(self) -> bool:
        """True once after a file has played to its end."""
        if self.finished_event.is_set():
            self.finished_event.clear()
            return True
        return False
