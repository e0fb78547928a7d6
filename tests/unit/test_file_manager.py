"""Unit tests for FileManager class."""

import pytest
import os
import time
import wave
from pathlib import Path
from unittest.mock import patch

from voicenotes.errors import RecordingError
from voicenotes.storage.file_manager import FileManager


@pytest.mark.unit
class TestFileManager:
    """Test cases for FileManager class."""

    def test_initialization(self, temp_data_dir):
        """Test FileManager initialization."""
        fm = FileManager(temp_data_dir)

        assert fm.data_dir == Path(temp_data_dir)
        assert fm.recordings_dir == Path(temp_data_dir) / "recordings"
        assert fm.logs_dir == Path(temp_data_dir) / "logs"

        assert fm.data_dir.exists()
        assert fm.recordings_dir.exists()
        assert fm.logs_dir.exists()

    def test_initialization_default_path(self):
        """Test FileManager initialization with default path."""
        with patch.object(Path, 'mkdir') as mock_mkdir:
            fm = FileManager()

            assert fm.data_dir == Path("./data")
            assert mock_mkdir.call_count == 3

    def test_new_recording_path(self, temp_data_dir):
        """Test the name and location of a new recording path."""
        fm = FileManager(temp_data_dir)

        path = Path(fm.new_recording_path())

        assert path.parent == fm.recordings_dir
        assert path.suffix == ".wav"
        # recording_YYYYMMDD_HHMMSS_XXXX
        assert path.stem.startswith("recording_")
        assert len(path.stem) == len("recording_") + 20
        assert not path.exists()

    def test_new_recording_paths_are_unique(self, temp_data_dir):
        """Test that paths allocated in the same second differ."""
        fm = FileManager(temp_data_dir)

        paths = {fm.new_recording_path() for _ in range(20)}

        assert len(paths) == 20

    def test_delete_recording(self, temp_data_dir):
        """Test deleting a recording."""
        fm = FileManager(temp_data_dir)
        path = fm.new_recording_path()
        Path(path).write_bytes(b"RIFF")

        assert fm.delete_recording(path) is True
        assert not os.path.exists(path)

    def test_delete_missing_recording(self, temp_data_dir):
        """Test deleting a recording that does not exist."""
        fm = FileManager(temp_data_dir)

        assert fm.delete_recording(fm.new_recording_path()) is False

    def test_delete_refuses_files_outside_recordings(self, temp_data_dir, tmp_path):
        """Test that files outside recordings/ are never deleted."""
        fm = FileManager(temp_data_dir)
        outside = tmp_path / "important.wav"
        outside.write_bytes(b"keep me")

        assert fm.delete_recording(str(outside)) is False
        assert outside.exists()

    def test_list_recordings_newest_first(self, temp_data_dir):
        """Test listing recordings."""
        fm = FileManager(temp_data_dir)
        older = fm.recordings_dir / "recording_20240101_100000_aaaa.wav"
        newer = fm.recordings_dir / "recording_20240101_110000_bbbb.wav"
        older.write_bytes(b"1")
        newer.write_bytes(b"22")
        now = time.time()
        os.utime(older, (now - 60, now - 60))
        os.utime(newer, (now, now))
        (fm.recordings_dir / "notes.txt").write_text("ignored")

        recordings = fm.list_recordings()

        assert [r["file_path"] for r in recordings] == [str(newer), str(older)]
        assert recordings[0]["file_size_bytes"] == 2

    def test_join_recordings(self, temp_data_dir, sample_audio_file):
        """Test joining two recordings into one file."""
        fm = FileManager(temp_data_dir)
        output = fm.new_recording_path()

        assert fm.join_recordings([sample_audio_file, sample_audio_file], output) == output

        with wave.open(sample_audio_file, 'rb') as source, wave.open(output, 'rb') as joined:
            assert joined.getnframes() == 2 * source.getnframes()
            assert joined.getframerate() == source.getframerate()
            assert joined.readframes(source.getnframes()) == source.readframes(source.getnframes())
        assert os.path.exists(sample_audio_file)

    def test_join_recordings_with_different_formats(self, temp_data_dir, sample_audio_file, tmp_path):
        """Test that recordings with different sample rates are not joined."""
        fm = FileManager(temp_data_dir)
        other = tmp_path / "other.wav"
        with wave.open(str(other), 'wb') as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(8000)
            wf.writeframes(b'\x00' * 320)

        with pytest.raises(RecordingError):
            fm.join_recordings([sample_audio_file, str(other)], fm.new_recording_path())

    def test_join_unreadable_recording(self, temp_data_dir, sample_audio_file, tmp_path):
        """Test joining a file that is not a WAV recording."""
        fm = FileManager(temp_data_dir)
        broken = tmp_path / "broken.wav"
        broken.write_bytes(b"not a wav file")

        with pytest.raises(RecordingError):
            fm.join_recordings([str(broken), sample_audio_file], fm.new_recording_path())
