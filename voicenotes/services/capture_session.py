"""Capture session: recording, live transcription and submission as one state machine.

    IDLE --start--> RECORDING --stop--> STOPPED --> [TRANSCRIBING] --> READY
    READY --submit--> SUBMITTING --> IDLE (success) | READY (failure)
    READY --discard--> IDLE
    READY --start--> RECORDING (resume; the transcript is kept and the new
                                take is appended to the earlier audio)

All work runs on the caller's thread. Recorder ticks and engine utterances
arrive as pub/sub messages; while a transition is in progress they are queued
and handled once it completes.
"""

import uuid
import logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Dict, Any, Tuple, Deque

from pubsub import pub

from ..errors import (
    VoiceNotesError,
    RecordingError,
    EngineUnavailable,
    InvalidStateError,
    TranscriptionError,
    SubmitError,
)
from ..models.session import SessionState, RecordingSession, CaptureResult, CaptureStatus
from ..storage.file_manager import FileManager
from ..transcription.base import (
    AbstractTranscriptionStream,
    ListeningConfig,
    TranscriptionMode,
    UtteranceSubscription,
)
from ..transcription.reconciler import TranscriptReconciler, DEFAULT_PREFIX_WINDOW

logger = logging.getLogger(__name__)


class CaptureSession:
    """Orchestrates AudioRecorder, a transcription engine and the reconciler."""

    def __init__(self,
                 recorder,
                 file_manager: FileManager,
                 transcription_stream: Optional[AbstractTranscriptionStream] = None,
                 upload_service=None,
                 language: str = "en-US",
                 supports_concurrent_listen_and_record: bool = True,
                 prefix_window: Optional[int] = DEFAULT_PREFIX_WINDOW,
                 topic_root: str = "capture"):
        """Initialize capture session.

        Args:
            recorder: AudioRecorder owned by this session
            file_manager: Allocates recording paths
            transcription_stream: Speech engine, or None for manual transcripts only
            upload_service: Object with submit(CaptureResult) -> dict
            language: Language of the capture
            supports_concurrent_listen_and_record: Whether a streaming engine may listen
                                                   while the recorder holds the microphone
            prefix_window: Reset-detection window passed to the reconciler
            topic_root: Prefix of the pub/sub topics this session publishes
        """
        self.recorder = recorder
        self.file_manager = file_manager
        self.transcription_stream = transcription_stream
        self.upload_service = upload_service
        self.language = language
        self.supports_concurrent_listen_and_record = supports_concurrent_listen_and_record

        self.state_topic = f"{topic_root}.state"
        self.error_topic = f"{topic_root}.error"
        self.transcript_topic = f"{topic_root}.transcript"

        self.reconciler = TranscriptReconciler(topic=self.transcript_topic, prefix_window=prefix_window)
        self.session = RecordingSession(session_id=self._new_session_id())
        self.last_error: Optional[str] = None
        self.is_playing = False

        self.listening_available = transcription_stream is not None
        self._engine_checked = False
        self._listening = False
        self._subscription: Optional[UtteranceSubscription] = None
        self._span = 0
        self._take_path: Optional[str] = None

        self._events: Deque[Tuple[str, tuple]] = deque()
        self._busy = False
        self._closed = False

        pub.subscribe(self._on_tick, recorder.publisher.tick_topic)
        pub.subscribe(self._on_playback_finished, recorder.publisher.playback_topic)
        logger.info(f"CaptureSession initialized (engine={type(transcription_stream).__name__ if transcription_stream else None})")

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def transcript(self) -> str:
        return self.reconciler.full_text

    @property
    def live_text(self) -> str:
        return self.reconciler.live_text

    def status(self) -> CaptureStatus:
        return CaptureStatus(
            session_id=self.session.session_id,
            state=self.state,
            elapsed_seconds=self.session.elapsed_seconds,
            live_text=self.live_text,
            transcript=self.transcript,
            audio_file_path=self.session.audio_file_path,
            is_playing=self.is_playing,
            listening_available=self.listening_available,
            last_error=self.last_error,
        )

    # ------------------------------------------------------------------
    # Operations

    def start(self) -> Dict[str, Any]:
        """Start recording (and listening, in streaming mode).

        From READY this resumes capture: the transcript is kept and new
        utterances are appended to it.
        """
        with self._transition("start", (SessionState.IDLE, SessionState.READY)):
            resuming = self.state == SessionState.READY
            fallback_state = self.state
            if not resuming:
                self._delete_recordings()
                self._reset_session()
            self._check_engine()
            self._stop_playback_quietly()

            path = self.file_manager.new_recording_path()
            try:
                self.recorder.start(path)
            except RecordingError as e:
                return self._fail(e, fallback_state)

            listening = self._should_listen_while_recording()
            if listening:
                try:
                    self._begin_listening()
                except VoiceNotesError as e:
                    self._abort_recording(path)
                    return self._fail(e, fallback_state)
                except Exception:
                    self._abort_recording(path)
                    raise

            self._take_path = path
            self.session.recording_paths.append(path)
            self.session.started_at = datetime.now()
            self.session.elapsed_seconds = self.session.recorded_seconds
            self._set_state(SessionState.RECORDING)
            logger.info(f"Session {self.session.session_id}: recording to {path} (listening={listening}, resumed={resuming})")

            return {
                "success": True,
                "session_id": self.session.session_id,
                "audio_file_path": path,
                "listening": listening,
                "started_at": self.session.started_at.isoformat(),
            }

    def stop(self) -> Dict[str, Any]:
        """Stop recording and listening, finalize the transcript and move to READY.

        A resumed take is appended to the earlier audio and elapsed_seconds
        covers all takes. Stopping when not recording changes nothing.
        """
        if not self._busy and self.state != SessionState.RECORDING:
            logger.warning(f"Stop ignored: not recording (state={self.state.value})")
            return self._stop_result(success=True)

        with self._transition("stop", (SessionState.RECORDING,)):
            try:
                path, recording_error = self._stop_recorder()
            finally:
                final_text, listening_error = self._end_listening()

            if final_text:
                self.reconciler.consume(final_text, is_final=True)
            self.reconciler.finalize()

            self._take_path = None
            self.session.recorded_seconds += max(0, self.recorder.elapsed_ms // 1000)
            self.session.elapsed_seconds = self.session.recorded_seconds
            self._set_state(SessionState.STOPPED)

            transcription_error = None
            if path and self._uses_batch_transcription():
                transcription_error = self._transcribe_recording(path)

            if path:
                self.session.audio_file_path = self._join_takes(path)
            self._set_state(SessionState.READY)

            error = recording_error or listening_error or transcription_error
            if error is not None:
                self._report(error)
                return self._stop_result(success=False, error=error.reason)
            return self._stop_result(success=True)

    def edit_transcript(self, text: str) -> Dict[str, Any]:
        """Replace the transcript with a manual edit.

        Later utterances are appended to the edited text. A non-empty edit
        while IDLE makes the session READY as a transcript-only note.
        """
        with self._transition("edit transcript", (SessionState.IDLE, SessionState.STOPPED, SessionState.READY)):
            self.reconciler.override(text)
            if self.state == SessionState.IDLE and self.transcript:
                self._set_state(SessionState.READY)
            return {"success": True, "transcript": self.transcript}

    def set_title(self, title: str) -> None:
        self.session.title = title

    def discard(self) -> Dict[str, Any]:
        """Throw away the recording and transcript and return to IDLE."""
        with self._transition("discard", (SessionState.IDLE, SessionState.READY)):
            self._stop_playback_quietly()
            self._delete_recordings()
            self._reset_session()
            self._set_state(SessionState.IDLE)
            logger.info("Session discarded")
            return {"success": True, "session_id": self.session.session_id}

    def submit(self, title: Optional[str] = None) -> Dict[str, Any]:
        """Upload the capture. Success resets the session; failure keeps it READY."""
        with self._transition("submit", (SessionState.READY,)):
            if title is not None:
                self.session.title = title
            clean_title = self.session.title.strip()
            transcript = self.transcript

            if not transcript:
                return self._reject("Please capture some speech or enter text manually.")
            if not clean_title:
                return self._reject("Please enter a title for your voice note.")
            if self.upload_service is None:
                return self._reject("No upload service is configured.")

            self._stop_playback_quietly()
            result = CaptureResult(
                title=clean_title,
                transcript_text=transcript,
                audio_file_path=self.session.audio_file_path,
                duration_seconds=self.session.elapsed_seconds,
                language=self.language,
            )

            self._set_state(SessionState.SUBMITTING)
            try:
                response = self.upload_service.submit(result)
            except SubmitError as e:
                return self._fail(e, SessionState.READY)

            logger.info(f"Session {self.session.session_id} submitted: {response}")
            self._reset_session()
            self._set_state(SessionState.IDLE)
            return {
                "success": True,
                "id": response.get("id"),
                "response": response,
                "result": result,
            }

    def play(self) -> Dict[str, Any]:
        """Play (or resume) the captured recording."""
        with self._transition("play", (SessionState.READY,)):
            path = self.session.audio_file_path
            if not path:
                return self._reject("There is no recording to play.")
            try:
                self.recorder.play(path)
            except RecordingError as e:
                self.is_playing = False
                self._report(e)
                return {"success": False, "error": e.reason}
            self.is_playing = True
            return {"success": True, "audio_file_path": path}

    def pause_play(self) -> None:
        self.recorder.pause_play()
        self.is_playing = False

    def stop_play(self) -> None:
        self._stop_playback_quietly()

    def pump(self) -> None:
        """Poll recorder and engine for events and handle everything queued.

        Call regularly from the application loop.
        """
        if self._busy:
            return

        try:
            self.recorder.poll()
        except RecordingError as e:
            if self.state == SessionState.RECORDING:
                self._abort_after_capture_failure(e)
            else:
                self._report(e)

        if self._listening:
            try:
                self.transcription_stream.poll()
            except TranscriptionError as e:
                # Recording continues; the transcript keeps what it has.
                self._report(e)

        self._drain_events()

    def close(self) -> None:
        """Release the microphone, the engine and all subscriptions."""
        if self._closed:
            return
        self._closed = True
        self._end_listening()
        self.recorder.release()
        if self.transcription_stream is not None:
            self.transcription_stream.cleanup()
        pub.unsubscribe(self._on_tick, self.recorder.publisher.tick_topic)
        pub.unsubscribe(self._on_playback_finished, self.recorder.publisher.playback_topic)
        logger.info("CaptureSession closed")

    # ------------------------------------------------------------------
    # Event handling

    def _on_tick(self, elapsed_ms: int) -> None:
        self._enqueue("tick", elapsed_ms)

    def _on_playback_finished(self, file_path: str) -> None:
        self._enqueue("playback_finished", file_path)

    def _enqueue(self, kind: str, *payload) -> None:
        self._events.append((kind, payload))
        if not self._busy:
            self._drain_events()

    def _drain_events(self) -> None:
        while self._events and not self._busy:
            kind, payload = self._events.popleft()
            if kind == "utterance":
                self._handle_utterance(*payload)
            elif kind == "tick":
                if self.state == SessionState.RECORDING:
                    self.session.elapsed_seconds = self.session.recorded_seconds + payload[0] // 1000
            elif kind == "playback_finished":
                self.is_playing = False

    def _handle_utterance(self, span: int, text: str, is_final: bool) -> None:
        if span != self._span or not self._listening:
            logger.debug(f"Dropping utterance from closed listening span {span}: '{text}'")
            return
        self.reconciler.consume(text, is_final=is_final)

    # ------------------------------------------------------------------
    # Internals

    @contextmanager
    def _transition(self, operation: str, allowed: Tuple[SessionState, ...]):
        """Run one state transition; overlapping or out-of-state calls are rejected."""
        if self._busy:
            raise InvalidStateError(f"Cannot {operation}: another operation is in progress")
        if self.state not in allowed:
            raise InvalidStateError(f"Cannot {operation} while {self.state.value}")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
        self._drain_events()

    def _set_state(self, state: SessionState) -> None:
        if state == self.session.state:
            return
        logger.info(f"Session {self.session.session_id}: {self.session.state.value} -> {state.value}")
        self.session.state = state
        pub.sendMessage(self.state_topic, state=state)

    def _report(self, error: VoiceNotesError) -> None:
        logger.error(f"{type(error).__name__}: {error.reason}")
        self.last_error = error.reason
        pub.sendMessage(self.error_topic, error=error)

    def _fail(self, error: VoiceNotesError, state: SessionState) -> Dict[str, Any]:
        self._report(error)
        self._set_state(state)
        return {"success": False, "error": error.reason}

    def _reject(self, message: str) -> Dict[str, Any]:
        logger.warning(message)
        self.last_error = message
        return {"success": False, "error": message}

    def _stop_result(self, success: bool, error: Optional[str] = None) -> Dict[str, Any]:
        result = {
            "success": success,
            "session_id": self.session.session_id,
            "transcript": self.transcript,
            "audio_file_path": self.session.audio_file_path,
            "elapsed_seconds": self.session.elapsed_seconds,
            "state": self.state.value,
        }
        if error:
            result["error"] = error
        return result

    def _new_session_id(self) -> str:
        return uuid.uuid4().hex[:12]

    def _reset_session(self) -> None:
        self.session = RecordingSession(session_id=self._new_session_id(), state=self.session.state)
        self.reconciler.reset()
        self.last_error = None
        self.is_playing = False

    def _check_engine(self) -> None:
        """Detect engine capability once; an absent engine is reported a single time."""
        if self._engine_checked:
            return
        self._engine_checked = True
        if self.transcription_stream is None:
            self.listening_available = False
            return
        if not self.transcription_stream.is_available():
            self.listening_available = False
            self._report(EngineUnavailable("Speech recognition is not available; enter the transcript manually."))

    def _should_listen_while_recording(self) -> bool:
        return (self.listening_available
                and self.transcription_stream.mode == TranscriptionMode.STREAMING
                and self.supports_concurrent_listen_and_record)

    def _uses_batch_transcription(self) -> bool:
        if not self.listening_available or not self.transcription_stream.supports_file_transcription:
            return False
        return (self.transcription_stream.mode == TranscriptionMode.BATCH
                or not self.supports_concurrent_listen_and_record)

    def _begin_listening(self) -> None:
        self._span += 1
        span = self._span
        subscription = self.transcription_stream.subscribe(
            lambda text, is_final=False: self._enqueue("utterance", span, text, is_final)
        )
        try:
            self.transcription_stream.start_listening(ListeningConfig(language=self.language))
        except Exception:
            subscription.cancel()
            raise
        self._subscription = subscription
        self._listening = True

    def _end_listening(self) -> Tuple[str, Optional[VoiceNotesError]]:
        """Cancel the utterance subscription and stop the engine.

        Returns:
            Final text reported by the engine and any error raised while stopping
        """
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if not self._listening:
            return "", None
        self._listening = False
        try:
            return self.transcription_stream.stop_listening(), None
        except VoiceNotesError as e:
            logger.warning(f"Engine failed to stop cleanly: {e.reason}")
            return "", e

    def _stop_recorder(self) -> Tuple[Optional[str], Optional[RecordingError]]:
        try:
            return self.recorder.stop(), None
        except RecordingError as e:
            return None, e

    def _abort_recording(self, path: str) -> None:
        """Release the microphone after a failed start and drop the partial file."""
        try:
            self.recorder.stop()
        except (RecordingError, InvalidStateError) as e:
            logger.warning(f"Error releasing recorder after failed start: {e.reason}")
        self._delete_recording(path)

    def _delete_recording(self, path: str) -> None:
        try:
            self.file_manager.delete_recording(path)
        except OSError as e:
            logger.warning(f"Could not delete recording {path}: {e}")
        if path in self.session.recording_paths:
            self.session.recording_paths.remove(path)

    def _delete_recordings(self) -> None:
        """Delete every file of the current session, earlier takes included."""
        for path in list(self.session.recording_paths):
            self._delete_recording(path)

    def _join_takes(self, path: str) -> str:
        """Append a resumed take to the session's earlier audio.

        Returns:
            The file that now holds the session's audio. If joining fails
            this is the new take alone; the earlier file stays tracked so
            discard() still removes it.
        """
        previous = self.session.audio_file_path
        if not previous:
            return path
        joined = self.file_manager.new_recording_path()
        try:
            self.file_manager.join_recordings([previous, path], joined)
        except RecordingError as e:
            logger.warning(f"Keeping only the latest take: {e.reason}")
            self._delete_recording(joined)
            return path
        self.session.recording_paths.append(joined)
        self._delete_recording(previous)
        self._delete_recording(path)
        return joined

    def _abort_after_capture_failure(self, error: RecordingError) -> None:
        """Microphone failed mid-recording: release everything and return to IDLE.

        Text already committed stays in the transcript.
        """
        self._busy = True
        try:
            self._end_listening()
            self.reconciler.finalize()
            self.recorder.release()
            if self._take_path:
                self._delete_recording(self._take_path)
                self._take_path = None
            self._fail(error, SessionState.IDLE)
        finally:
            self._busy = False
        self._drain_events()

    def _transcribe_recording(self, path: str) -> Optional[TranscriptionError]:
        self._set_state(SessionState.TRANSCRIBING)
        try:
            text = self.transcription_stream.transcribe_file(path)
        except TranscriptionError as e:
            return e
        self.reconciler.apply_batch_result(text)
        logger.info(f"Batch transcription complete: {len(text)} chars")
        return None

    def _stop_playback_quietly(self) -> None:
        """Best-effort: stopping playback that never started is not an error."""
        try:
            self.recorder.stop_play()
        except VoiceNotesError as e:
            logger.debug(f"Ignoring playback stop error: {e.reason}")
        self.is_playing = False
