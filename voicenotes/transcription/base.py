"""Abstract base classes for speech-to-text engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import logging

from pubsub import pub

from ..errors import InvalidStateError

logger = logging.getLogger(__name__)

UtteranceListener = Callable[[str, bool], None]


class TranscriptionMode(Enum):
    """How an engine delivers text."""
    STREAMING = "streaming"  # partial utterances while the microphone is open
    BATCH = "batch"          # one result for a finished audio file


@dataclass(frozen=True)
class ListeningConfig:
    """Options passed to an engine when listening starts."""
    language: str = "en-US"
    interim_results: bool = True
    continuous: bool = True


class UtteranceSubscription:
    """Delivery of one listening span's utterances to a single listener.

    A subscription cannot be restarted once cancelled; each listening span
    gets a new one.
    """

    def __init__(self, topic: str, listener: UtteranceListener):
        self.topic = topic
        self._listener = listener
        self.active = True
        pub.subscribe(self._deliver, topic)

    def _deliver(self, text: str, is_final: bool = False) -> None:
        if self.active:
            self._listener(text, is_final)

    def cancel(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        pub.unsubscribe(self._deliver, self.topic)


class AbstractTranscriptionStream(ABC):
    """Abstract base class for speech-to-text engines."""

    mode = TranscriptionMode.STREAMING
    supports_file_transcription = False

    def __init__(self, topic: str = "transcription.utterance", language: str = "en-US"):
        """Initialize engine.

        Args:
            topic: Pub/sub topic on which raw utterances are published
            language: Default language code
        """
        self.topic = topic
        self.language = language
        self.is_listening = False

    def subscribe(self, listener: UtteranceListener) -> UtteranceSubscription:
        """Subscribe to raw utterances of the next listening span."""
        return UtteranceSubscription(self.topic, listener)

    def publish_utterance(self, text: str, is_final: bool = False) -> None:
        """Publish one raw utterance to subscribers."""
        pub.sendMessage(self.topic, text=text, is_final=is_final)

    @abstractmethod
    def is_available(self) -> bool:
        """Capability check done once at session start."""
        pass

    @abstractmethod
    def start_listening(self, config: ListeningConfig) -> None:
        """Open the engine for the current listening span.

        Raises:
            EngineUnavailable: If the engine cannot be started
            InvalidStateError: If already listening
        """
        pass

    @abstractmethod
    def stop_listening(self) -> str:
        """Close the engine and return the final text not yet published as an utterance."""
        pass

    def poll(self) -> int:
        """Publish results produced on engine threads. Returns the number published."""
        return 0

    def transcribe_file(self, file_path: str) -> str:
        """Transcribe a finished recording (batch engines only)."""
        raise NotImplementedError(f"{type(self).__name__} does not support file transcription")

    def cleanup(self) -> None:
        """Clean up engine resources."""
        pass


class AbstractBatchTranscriber(AbstractTranscriptionStream):
    """Engine that transcribes a finished recording in one request.

    Listening is a no-op: no utterances are published while recording.
    """

    mode = TranscriptionMode.BATCH
    supports_file_transcription = True

    def start_listening(self, config: ListeningConfig) -> None:
        if self.is_listening:
            raise InvalidStateError("Already listening")
        self.is_listening = True

    def stop_listening(self) -> str:
        self.is_listening = False
        return ""

    @abstractmethod
    def transcribe_file(self, file_path: str) -> str:
        """Transcribe the whole file.

        Raises:
            TranscriptionError: If the engine fails
        """
        pass
