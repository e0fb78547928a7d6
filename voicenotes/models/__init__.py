"""Data models for the VoiceNotes application."""

from .audio import AudioStats, AudioEvent
from .transcription import Utterance, TranscriptBuffer
from .session import SessionState, RecordingSession, CaptureResult, CaptureStatus

__all__ = [
    "AudioStats",
    "AudioEvent",
    "Utterance",
    "TranscriptBuffer",
    "SessionState",
    "RecordingSession",
    "CaptureResult",
    "CaptureStatus",
]
