"""Exception hierarchy for VoiceNotes.

Every error raised by the capture engine derives from VoiceNotesError and
carries a human readable ``reason`` that the session surfaces to the user.
"""


class VoiceNotesError(Exception):
    """Base exception for all VoiceNotes errors."""

    def __init__(self, reason: str = "An unexpected error occurred"):
        self.reason = reason
        super().__init__(reason)


class RecordingError(VoiceNotesError):
    """Microphone, permission or audio file I/O failure."""

    def __init__(self, reason: str = "Recording failed"):
        super().__init__(reason)


class EngineUnavailable(VoiceNotesError):
    """Speech engine is absent, misconfigured or was denied."""

    def __init__(self, reason: str = "Speech recognition is not available"):
        super().__init__(reason)


class InvalidStateError(VoiceNotesError):
    """Operation called in a state that does not allow it (e.g. overlapping start/stop)."""

    def __init__(self, reason: str = "Operation not allowed in the current state"):
        super().__init__(reason)


class TranscriptionError(VoiceNotesError):
    """Speech engine failed while transcribing."""

    def __init__(self, reason: str = "Transcription failed"):
        super().__init__(reason)


class SubmitError(VoiceNotesError):
    """Upload collaborator rejected or failed the submission."""

    def __init__(self, reason: str = "Upload failed"):
        super().__init__(reason)
