"""Session-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


class SessionState(Enum):
    """Lifecycle states of a capture session."""
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    TRANSCRIBING = "transcribing"
    READY = "ready"
    SUBMITTING = "submitting"


@dataclass
class RecordingSession:
    """Information about the capture in progress."""
    session_id: str
    state: SessionState = SessionState.IDLE
    audio_file_path: Optional[str] = None
    elapsed_seconds: int = 0
    started_at: Optional[datetime] = None
    title: str = ""
    # Seconds of all finished takes; a resumed take counts on from here
    recorded_seconds: int = 0
    # Every file on disk that belongs to this session
    recording_paths: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CaptureResult:
    """Immutable snapshot handed to the upload service at submit time."""
    title: str
    transcript_text: str
    audio_file_path: Optional[str]
    duration_seconds: int
    language: str

    def to_upload_meta(self) -> Dict[str, Any]:
        """Metadata part of the voice-note upload request."""
        return {
            "title": self.title,
            "transcriptText": self.transcript_text,
            "durationInSeconds": self.duration_seconds,
            "language": self.language,
        }


@dataclass
class CaptureStatus:
    """Status information for display."""
    session_id: Optional[str] = None
    state: SessionState = SessionState.IDLE
    elapsed_seconds: int = 0
    live_text: str = ""
    transcript: str = ""
    audio_file_path: Optional[str] = None
    is_playing: bool = False
    listening_available: bool = True
    last_error: Optional[str] = None
