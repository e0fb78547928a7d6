"""Audio capture, playback and recording module."""

from .capture import AudioCapture
from .player import AudioPlayer
from .recorder import AudioRecorder

__all__ = [
    'AudioCapture',
    'AudioPlayer',
    'AudioRecorder',
]
