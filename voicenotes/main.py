"""Main application entry point for VoiceNotes."""

import sys
import time
import argparse
import logging
from pathlib import Path
from typing import Optional

from pubsub import pub
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .audio.recorder import AudioRecorder
from .config import VoiceNotesConfig
from .models.session import SessionState
from .services.capture_session import CaptureSession
from .services.upload_service import UploadService
from .storage.file_manager import FileManager
from .transcription.factory import create_transcription_stream

logger = logging.getLogger(__name__)


def build_capture_session(config: VoiceNotesConfig) -> CaptureSession:
    """Wire recorder, engine, uploader and storage from the configuration."""
    recorder = AudioRecorder.from_config(config)
    stream = create_transcription_stream(config, audio_topic=recorder.publisher.audio_topic)
    return CaptureSession(
        recorder=recorder,
        file_manager=FileManager(config.get_data_directory()),
        transcription_stream=stream,
        upload_service=UploadService.from_config(config),
        language=config.get('transcription.language', 'en-US'),
        supports_concurrent_listen_and_record=config.get(
            'transcription.supports_concurrent_listen_and_record', True),
        prefix_window=config.get('transcription.reset_prefix_window', 10),
    )


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        self.config = VoiceNotesConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.session: Optional[CaptureSession] = None
        self._last_live_text = ""

    def init(self) -> None:
        logger.info("Initializing capture session...")
        self.session = build_capture_session(self.config)
        pub.subscribe(self._on_transcript, self.session.transcript_topic)
        pub.subscribe(self._on_error, self.session.error_topic)

    def _on_transcript(self, full_text: str, live_text: str) -> None:
        if live_text and live_text != self._last_live_text:
            self.console.print(f"   {live_text}", style="dim")
        self._last_live_text = live_text

    def _on_error(self, error) -> None:
        self.console.print(f"⚠️  {error.reason}", style="yellow")

    def run(self, duration: int, title: Optional[str], submit: bool) -> bool:
        """Record for duration seconds, then stop and optionally submit.

        Returns:
            True if the capture completed (and was submitted, when requested)
        """
        session = self.session
        result = session.start()
        if not result["success"]:
            self.console.print(f"❌ Could not start recording: {result['error']}", style="bold red")
            return False

        self.console.print(f"🔴 Recording for {duration}s (Ctrl+C to stop early)", style="bold red")
        deadline = time.monotonic() + duration
        try:
            while time.monotonic() < deadline and session.state == SessionState.RECORDING:
                session.pump()
                time.sleep(0.1)
        except KeyboardInterrupt:
            self.console.print("\n⏹️  Stopping early", style="yellow")

        stopped = session.stop()
        transcript = stopped["transcript"]
        self.console.print(Panel(transcript or "(no speech captured)",
                                 title=f"Transcript ({stopped['elapsed_seconds']}s)"))
        if stopped.get("audio_file_path"):
            self.console.print(f"Audio: {stopped['audio_file_path']}")

        if not submit:
            return True
        if session.upload_service is None:
            self.console.print("Upload skipped: no upload.base_url configured", style="yellow")
            return True
        if not title:
            self.console.print("Upload skipped: pass --title to submit", style="yellow")
            return True

        submitted = session.submit(title)
        if not submitted["success"]:
            self.console.print(f"❌ Upload failed: {submitted['error']}", style="bold red")
            return False
        self.console.print(f"✅ Voice note submitted (id={submitted['id']})", style="bold green")
        return True

    def cleanup(self) -> None:
        if self.session is not None:
            pub.unsubscribe(self._on_transcript, self.session.transcript_topic)
            pub.unsubscribe(self._on_error, self.session.error_topic)
            self.session.close()
            self.session = None


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/voicenotes.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("VoiceNotes starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for VoiceNotes."""
    parser = argparse.ArgumentParser(
        description="VoiceNotes - record a voice note with a live transcript"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for voicenotes.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: logging.level from config)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=10,
        help="Recording duration in seconds (default: 10)"
    )

    parser.add_argument(
        "--title",
        type=str,
        help="Title of the voice note; required to submit"
    )

    parser.add_argument(
        "--no-submit",
        action="store_true",
        help="Do not upload the voice note after recording"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"VoiceNotes v{__version__}"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(2)

    try:
        server.init()
        ok = server.run(args.duration, args.title, submit=not args.no_submit)
    except Exception as e:
        print(f"❌ Error: {e}")
        logger.exception(f"Application error: {e}")
        ok = False
    finally:
        server.cleanup()

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
