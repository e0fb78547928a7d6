"""Google Speech-to-Text engines (streaming and batch)."""

import queue
import logging
import threading
import wave
from typing import Optional, List, Tuple, Union

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account
from pubsub import pub

from .base import AbstractTranscriptionStream, AbstractBatchTranscriber, ListeningConfig
from ..errors import EngineUnavailable, InvalidStateError, TranscriptionError
from ..models.audio import AudioEvent

logger = logging.getLogger(__name__)

# Synchronous recognize only accepts about a minute of audio.
SYNC_RECOGNIZE_MAX_SECONDS = 55.0


def create_speech_client(credentials_path: Optional[str]) -> speech.SpeechClient:
    """Build a SpeechClient from a service account file.

    Raises:
        EngineUnavailable: If credentials are missing or invalid
    """
    if not credentials_path:
        raise EngineUnavailable("Google credentials path is not configured")
    try:
        logger.info(f"Loading Google credentials from: {credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(credentials_path)
        client = speech.SpeechClient(credentials=credentials)
    except (OSError, ValueError, auth_exceptions.GoogleAuthError) as e:
        raise EngineUnavailable(f"Google Speech client could not be created: {e}") from e
    logger.info(f"Using Google Cloud project: {credentials.project_id}")
    return client


def _join_results(results) -> str:
    return " ".join(
        result.alternatives[0].transcript.strip()
        for result in results
        if result.alternatives and result.alternatives[0].transcript.strip()
    )


def response_utterances(response) -> List[Tuple[str, bool]]:
    """Turn one streaming response into whole utterances.

    Google splits an interim hypothesis into consecutive results (a stable
    prefix followed by unstable tails), so the results of a response are
    joined into one utterance. Leading final results are emitted first as a
    final utterance, and the interim results after them as a second one.

    Returns:
        List of (text, is_final) pairs, at most one of each kind
    """
    results = list(response.results)
    split = 0
    while split < len(results) and results[split].is_final:
        split += 1

    utterances: List[Tuple[str, bool]] = []
    final_text = _join_results(results[:split])
    if final_text:
        utterances.append((final_text, True))
    interim_text = _join_results(results[split:])
    if interim_text:
        utterances.append((interim_text, False))
    return utterances


class GoogleStreamingTranscriptionStream(AbstractTranscriptionStream):
    """Streams microphone frames to Google and publishes interim results.

    Audio arrives as AudioEvents on ``audio_topic`` (published by the recorder's
    capture thread). Recognition runs on a background thread; its results are
    queued and published from ``poll()`` on the caller's thread.
    """

    def __init__(self,
                 credentials_path: Optional[str],
                 audio_topic: str = "audio.frame",
                 topic: str = "transcription.utterance",
                 language: str = "en-US",
                 sample_rate: int = 16000,
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 client: Optional[speech.SpeechClient] = None):
        """Initialize Google streaming engine.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            audio_topic: Pub/sub topic carrying AudioEvents from the recorder
            topic: Pub/sub topic for raw utterances
            language: Language code (e.g., 'en-US', 'es-ES')
            sample_rate: Sample rate of the recorded audio
            use_enhanced: Whether to use the enhanced model
            enable_automatic_punctuation: Enable automatic punctuation
            client: Pre-built client (skips credential loading)
        """
        super().__init__(topic=topic, language=language)
        self.credentials_path = credentials_path
        self.audio_topic = audio_topic
        self.sample_rate = sample_rate
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.client = client
        self.service_name = "Google Speech-to-Text (streaming)"

        self._audio_queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._results: "queue.Queue[Union[Tuple[str, bool], Exception]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def is_available(self) -> bool:
        try:
            self._ensure_client()
            return True
        except EngineUnavailable as e:
            logger.warning(f"{self.service_name} unavailable: {e.reason}")
            return False

    def _ensure_client(self) -> speech.SpeechClient:
        if self.client is None:
            self.client = create_speech_client(self.credentials_path)
        return self.client

    def _streaming_config(self, config: ListeningConfig) -> speech.StreamingRecognitionConfig:
        recognition_config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=self.sample_rate,
            language_code=config.language or self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )
        return speech.StreamingRecognitionConfig(
            config=recognition_config,
            interim_results=config.interim_results,
            single_utterance=not config.continuous,
        )

    def start_listening(self, config: ListeningConfig) -> None:
        if self.is_listening:
            raise InvalidStateError("Already listening")

        client = self._ensure_client()
        streaming_config = self._streaming_config(config)

        self._audio_queue = queue.Queue()
        self._results = queue.Queue()
        pub.subscribe(self._on_audio_frame, self.audio_topic)

        self._thread = threading.Thread(
            target=self._run_recognition, args=(client, streaming_config), daemon=True
        )
        self._thread.name = "GoogleStreamingThread"
        self._thread.start()
        self.is_listening = True
        logger.info(f"Started {self.service_name} ({streaming_config.config.language_code})")

    def _on_audio_frame(self, event: AudioEvent) -> None:
        """Called on the capture thread for every recorded frame."""
        if event.audio_data:
            self._audio_queue.put(event.audio_data)

    def _request_stream(self):
        while True:
            chunk = self._audio_queue.get()
            if chunk is None:
                return
            yield speech.StreamingRecognizeRequest(audio_content=chunk)

    def _run_recognition(self, client: speech.SpeechClient,
                         streaming_config: speech.StreamingRecognitionConfig) -> None:
        """Internal method: recognition loop in background thread."""
        try:
            responses = client.streaming_recognize(config=streaming_config, requests=self._request_stream())
            for response in responses:
                for item in response_utterances(response):
                    self._results.put(item)
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google streaming recognition failed: {e}")
            self._results.put(TranscriptionError(f"Google Speech API error: {e}"))

    def poll(self) -> int:
        published = 0
        while True:
            try:
                item = self._results.get_nowait()
            except queue.Empty:
                return published
            if isinstance(item, Exception):
                raise item
            text, is_final = item
            self.publish_utterance(text, is_final)
            published += 1

    def stop_listening(self) -> str:
        if not self.is_listening:
            return ""

        pub.unsubscribe(self._on_audio_frame, self.audio_topic)
        self._audio_queue.put(None)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("Google streaming thread did not stop cleanly")
        self._thread = None
        self.is_listening = False

        final_text = self._drain_pending_text()
        logger.info(f"Stopped {self.service_name}; trailing text: '{final_text}'")
        return final_text

    def _drain_pending_text(self) -> str:
        """Collapse unpublished utterances into one string.

        Queued items are whole responses (see response_utterances). An interim
        utterance is superseded by the next one; a final utterance closes its
        segment.
        """
        segments: List[Tuple[str, bool]] = []
        while True:
            try:
                item = self._results.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, Exception):
                logger.warning(f"Discarding engine error at stop: {item}")
                continue
            if segments and not segments[-1][1]:
                segments[-1] = item
            else:
                segments.append(item)
        return " ".join(text.strip() for text, _ in segments if text.strip())

    def cleanup(self) -> None:
        self.stop_listening()


class GoogleBatchTranscriber(AbstractBatchTranscriber):
    """Sends a finished WAV recording to Google in one request."""

    def __init__(self,
                 credentials_path: Optional[str],
                 topic: str = "transcription.utterance",
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 client: Optional[speech.SpeechClient] = None):
        super().__init__(topic=topic, language=language)
        self.credentials_path = credentials_path
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.client = client
        self.service_name = "Google Speech-to-Text (batch)"

    def is_available(self) -> bool:
        try:
            self._ensure_client()
            return True
        except EngineUnavailable as e:
            logger.warning(f"{self.service_name} unavailable: {e.reason}")
            return False

    def _ensure_client(self) -> speech.SpeechClient:
        if self.client is None:
            self.client = create_speech_client(self.credentials_path)
        return self.client

    def transcribe_file(self, file_path: str) -> str:
        try:
            with wave.open(file_path, 'rb') as wf:
                sample_rate = wf.getframerate()
                frame_count = wf.getnframes()
                content = wf.readframes(frame_count)
        except (OSError, wave.Error) as e:
            raise TranscriptionError(f"Could not read recording {file_path}: {e}") from e

        if not content:
            logger.info(f"Recording {file_path} is empty, nothing to transcribe")
            return ""

        try:
            client = self._ensure_client()
        except EngineUnavailable as e:
            raise TranscriptionError(e.reason) from e

        config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=sample_rate,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )
        audio = speech.RecognitionAudio(content=content)
        duration = frame_count / float(sample_rate)

        logger.info(f"Transcribing {file_path} ({duration:.1f}s) with {self.service_name}")
        try:
            if duration > SYNC_RECOGNIZE_MAX_SECONDS:
                response = client.long_running_recognize(config=config, audio=audio).result()
            else:
                response = client.recognize(config=config, audio=audio)
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google STT API call error for {file_path}: {e}")
            raise TranscriptionError(f"Google Speech API error: {e}") from e

        transcripts = [r.alternatives[0].transcript.strip() for r in response.results if r.alternatives]
        text = " ".join(t for t in transcripts if t)
        logger.debug(f"Batch transcription of {file_path}: '{text}'")
        return text
