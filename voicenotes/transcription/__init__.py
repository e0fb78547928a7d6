"""Transcription module for VoiceNotes."""

from .base import (
    AbstractTranscriptionStream,
    AbstractBatchTranscriber,
    ListeningConfig,
    TranscriptionMode,
    UtteranceSubscription,
)
from .reconciler import TranscriptReconciler, reconcile, commit, is_reset

__all__ = [
    "AbstractTranscriptionStream",
    "AbstractBatchTranscriber",
    "ListeningConfig",
    "TranscriptionMode",
    "UtteranceSubscription",
    "TranscriptReconciler",
    "reconcile",
    "commit",
    "is_reset",
]
