"""File management module for audio recordings."""

import logging
import random
import string
import wave
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List

from ..errors import RecordingError


logger = logging.getLogger(__name__)


class FileManager:
    """Manages file storage and organization for audio recordings."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.recordings_dir = self.data_dir / "recordings"
        self.logs_dir = self.data_dir / "logs"

        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.recordings_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def new_recording_path(self) -> str:
        """Allocate a unique path for the next recording.

        Returns:
            Path like recordings/recording_YYYYMMDD_HHMMSS_xxxx.wav
        """
        # Include random suffix to ensure uniqueness
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
        path = self.recordings_dir / f"recording_{timestamp}_{random_suffix}.wav"
        logger.debug(f"Allocated recording path: {path}")
        return str(path)

    def delete_recording(self, file_path: str) -> bool:
        """Delete a recording inside the recordings directory.

        Returns:
            True if a file was deleted
        """
        path = Path(file_path)
        if path.resolve().parent != self.recordings_dir.resolve():
            logger.warning(f"Refusing to delete file outside recordings directory: {path}")
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted recording: {path}")
        return True

    def list_recordings(self) -> List[Dict[str, Any]]:
        """List recordings, newest first.

        Returns:
            List of dictionaries with file path, size and modification time
        """
        recordings = []
        for path in self.recordings_dir.glob("recording_*.wav"):
            stat = path.stat()
            recordings.append({
                "file_path": str(path),
                "file_size_bytes": stat.st_size,
                "modified_at": datetime.fromtimestamp(stat.st_mtime),
            })
        recordings.sort(key=lambda r: r["modified_at"], reverse=True)
        return recordings

    def join_recordings(self, file_paths: List[str], output_path: str) -> str:
        """Write the audio of several WAV recordings, in order, into one file.

        The inputs are left in place. All inputs must share channels, sample
        width and sample rate.

        Returns:
            output_path

        Raises:
            RecordingError: If an input cannot be read or the formats differ
        """
        try:
            with wave.open(output_path, 'wb') as out:
                params = None
                for file_path in file_paths:
                    with wave.open(file_path, 'rb') as wf:
                        current = (wf.getnchannels(), wf.getsampwidth(), wf.getframerate())
                        if params is None:
                            params = current
                            out.setnchannels(current[0])
                            out.setsampwidth(current[1])
                            out.setframerate(current[2])
                        elif current != params:
                            raise RecordingError(f"Cannot join {file_path}: audio format {current} differs from {params}")
                        out.writeframes(wf.readframes(wf.getnframes()))
        except (OSError, EOFError, wave.Error) as e:
            raise RecordingError(f"Could not join recordings: {e}") from e
        logger.info(f"Joined {len(file_paths)} recordings into {output_path}")
        return output_path
