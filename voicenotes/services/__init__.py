"""Services layer for VoiceNotes application logic."""

from .capture_session import CaptureSession
from .upload_service import UploadService

__all__ = [
    "CaptureSession",
    "UploadService"
]
