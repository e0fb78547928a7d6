"""Audio publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.audio import AudioEvent

logger = logging.getLogger(__name__)


class AudioPublisher:
    """Publishes audio frames and recorder events using pubsub.pub."""

    def __init__(self,
                 audio_topic: str = "audio.frame",
                 tick_topic: str = "recorder.tick",
                 playback_topic: str = "recorder.playback_finished"):
        """Initialize audio publisher.

        Args:
            audio_topic: Topic for AudioEvents (published on the capture thread)
            tick_topic: Topic for elapsed-time ticks while recording
            playback_topic: Topic for end-of-playback notifications
        """
        self.audio_topic = audio_topic
        self.tick_topic = tick_topic
        self.playback_topic = playback_topic
        logger.info(f"AudioPublisher initialized with topics: {audio_topic}, {tick_topic}, {playback_topic}")

    def publish_audio_event(self, audio_event: AudioEvent) -> None:
        """Publish an audio event to the pub/sub topic.

        Args:
            audio_event: AudioEvent to publish
        """
        pub.sendMessage(self.audio_topic, event=audio_event)

    def publish_tick(self, elapsed_ms: int) -> None:
        pub.sendMessage(self.tick_topic, elapsed_ms=elapsed_ms)

    def publish_playback_finished(self, file_path: str) -> None:
        logger.debug(f"Playback finished: {file_path}")
        pub.sendMessage(self.playback_topic, file_path=file_path)
