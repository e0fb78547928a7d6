"""VoiceNotes - voice capture with live transcript reconciliation."""

__version__ = "0.1.0"
