"""Builds the speech engine selected in the configuration."""

import logging
from typing import Optional

from .base import AbstractTranscriptionStream
from .google_backend import GoogleStreamingTranscriptionStream, GoogleBatchTranscriber
from ..config import VoiceNotesConfig

logger = logging.getLogger(__name__)


def create_transcription_stream(config: VoiceNotesConfig,
                                audio_topic: str = "audio.frame") -> Optional[AbstractTranscriptionStream]:
    """Create the configured engine, or None when transcription.mode is 'none'."""
    mode = str(config.get('transcription.mode', 'streaming')).lower()
    language = config.get('transcription.language', 'en-US')
    credentials_path = config.get_google_credentials_path()
    use_enhanced = config.get('google_cloud.use_enhanced_model', True)
    enable_punctuation = config.get('google_cloud.enable_automatic_punctuation', True)

    logger.debug(f"Config: mode={mode}, language={language}, enhanced={use_enhanced}, punctuation={enable_punctuation}")

    if mode == 'none':
        logger.info("Transcription disabled, transcripts are entered manually")
        return None
    if mode == 'batch':
        return GoogleBatchTranscriber(
            credentials_path=credentials_path,
            language=language,
            use_enhanced=use_enhanced,
            enable_automatic_punctuation=enable_punctuation,
        )
    if mode == 'streaming':
        return GoogleStreamingTranscriptionStream(
            credentials_path=credentials_path,
            audio_topic=audio_topic,
            language=language,
            sample_rate=config.get('audio.sample_rate', 16000),
            use_enhanced=use_enhanced,
            enable_automatic_punctuation=enable_punctuation,
        )
    raise ValueError(f"Unknown transcription mode: {mode}")
