"""Unit tests for the Google Speech engines with a mocked client."""

import time
import wave
import pytest
from types import SimpleNamespace
from unittest.mock import Mock

from google.api_core import exceptions as gax_exceptions
from pubsub import pub

from voicenotes.errors import EngineUnavailable, TranscriptionError
from voicenotes.models.audio import AudioEvent
from voicenotes.transcription import google_backend
from voicenotes.transcription.base import ListeningConfig, TranscriptionMode
from voicenotes.transcription.google_backend import (
    GoogleBatchTranscriber,
    GoogleStreamingTranscriptionStream,
    create_speech_client,
    response_utterances,
)
from voicenotes.transcription.reconciler import TranscriptReconciler


def response(*results):
    return SimpleNamespace(results=[
        SimpleNamespace(alternatives=[SimpleNamespace(transcript=text)], is_final=is_final)
        for text, is_final in results
    ])


def wait_for_thread(stream, timeout=2.0):
    deadline = time.monotonic() + timeout
    while stream._thread is not None and stream._thread.is_alive() and time.monotonic() < deadline:
        time.sleep(0.01)


@pytest.fixture
def streaming(topic_root):
    client = Mock()
    stream = GoogleStreamingTranscriptionStream(
        credentials_path=None,
        audio_topic=f"{topic_root}_audio.frame",
        topic=f"{topic_root}_stt.utterance",
        client=client,
    )
    yield stream, client
    stream.cleanup()


@pytest.mark.unit
class TestCreateSpeechClient:
    """Test cases for credential loading."""

    def test_missing_credentials_path(self):
        """Test that an unset credentials path makes the engine unavailable."""
        with pytest.raises(EngineUnavailable):
            create_speech_client(None)

    def test_unreadable_credentials_file(self, tmp_path):
        """Test that a missing credentials file makes the engine unavailable."""
        with pytest.raises(EngineUnavailable):
            create_speech_client(str(tmp_path / "missing.json"))

    def test_engine_without_credentials_is_unavailable(self):
        """Test is_available() without credentials for both engines."""
        assert GoogleStreamingTranscriptionStream(credentials_path=None).is_available() is False
        assert GoogleBatchTranscriber(credentials_path=None).is_available() is False


@pytest.mark.unit
class TestResponseUtterances:
    """Test cases for turning streaming responses into utterances."""

    def test_single_interim_result(self):
        """Test a response with one interim result."""
        assert response_utterances(response(("hello", False))) == [("hello", False)]

    def test_split_interim_results_are_joined(self):
        """Test that a stable prefix and its unstable tail form one utterance."""
        utterances = response_utterances(response(("to be", False), (" or not", False)))

        assert utterances == [("to be or not", False)]

    def test_final_result_followed_by_interim_tail(self):
        """Test that a final result is emitted before the interim results after it."""
        utterances = response_utterances(response(("hello world.", True), ("how", False), (" are", False)))

        assert utterances == [("hello world.", True), ("how are", False)]

    def test_empty_results_are_skipped(self):
        """Test responses without usable alternatives."""
        empty = SimpleNamespace(results=[SimpleNamespace(alternatives=[], is_final=False)])

        assert response_utterances(empty) == []
        assert response_utterances(response(("  ", False))) == []


@pytest.mark.unit
class TestGoogleStreaming:
    """Test cases for the streaming engine."""

    def test_is_available_with_client(self, streaming):
        """Test that a pre-built client makes the engine available."""
        stream, _ = streaming

        assert stream.is_available() is True
        assert stream.mode == TranscriptionMode.STREAMING

    def test_results_are_published_on_poll(self, streaming):
        """Test that results are queued by the thread and published by poll()."""
        stream, client = streaming
        client.streaming_recognize.return_value = iter([
            response(("hi", False)),
            response(("hi there", True)),
        ])
        received = []
        subscription = stream.subscribe(lambda text, is_final: received.append((text, is_final)))

        stream.start_listening(ListeningConfig(language="de-DE"))
        wait_for_thread(stream)

        assert received == []
        assert stream.poll() == 2
        assert received == [("hi", False), ("hi there", True)]
        assert stream.stop_listening() == ""

        config = client.streaming_recognize.call_args.kwargs["config"]
        assert config.config.language_code == "de-DE"
        assert config.interim_results is True
        subscription.cancel()

    def test_split_responses_reconcile_without_duplicates(self, streaming):
        """Test that multi-result responses give a transcript without repeated words."""
        stream, client = streaming
        client.streaming_recognize.return_value = iter([
            response(("to be", False), (" or not", False)),
            response(("to be or not", False), (" to be", False)),
            response(("to be or not to be", True)),
        ])
        reconciler = TranscriptReconciler()
        subscription = stream.subscribe(reconciler.consume)

        stream.start_listening(ListeningConfig())
        wait_for_thread(stream)

        assert stream.poll() == 3
        assert reconciler.finalize() == "to be or not to be"
        subscription.cancel()

    def test_unpublished_results_become_final_text(self, streaming):
        """Test that stop_listening() collapses results nobody polled."""
        stream, client = streaming
        client.streaming_recognize.return_value = iter([
            response(("hi", False)),
            response(("hi there", False)),
            response(("hi there", True)),
            response(("next", False)),
        ])

        stream.start_listening(ListeningConfig())
        wait_for_thread(stream)

        assert stream.stop_listening() == "hi there next"
        assert stream.is_listening is False

    def test_unpublished_split_results_become_final_text(self, streaming):
        """Test the trailing text when pending responses hold several results."""
        stream, client = streaming
        client.streaming_recognize.return_value = iter([
            response(("to be", False), (" or not", False)),
            response(("to be or not", True), ("to", False)),
            response(("to be", False)),
        ])

        stream.start_listening(ListeningConfig())
        wait_for_thread(stream)

        assert stream.stop_listening() == "to be or not to be"

    def test_audio_frames_are_streamed(self, streaming):
        """Test that recorded frames reach the request stream, skipping empty ones."""
        stream, client = streaming
        sent = []

        def recognize(config, requests):
            sent.extend(request.audio_content for request in requests)
            return iter([])

        client.streaming_recognize.side_effect = recognize

        stream.start_listening(ListeningConfig())
        for i, chunk in enumerate([b"\x01\x02", b"", b"\x03\x04"]):
            pub.sendMessage(stream.audio_topic, event=AudioEvent(
                chunk_id=f"chunk_{i}", audio_data=chunk, timestamp=time.time(), sequence_number=i))
        stream.stop_listening()

        assert sent == [b"\x01\x02", b"\x03\x04"]

    def test_api_error_is_raised_from_poll(self, streaming):
        """Test that a failed recognition surfaces as TranscriptionError."""
        stream, client = streaming
        client.streaming_recognize.side_effect = gax_exceptions.ServiceUnavailable("backend down")

        stream.start_listening(ListeningConfig())
        wait_for_thread(stream)

        with pytest.raises(TranscriptionError):
            stream.poll()

    def test_stop_when_not_listening(self, streaming):
        """Test stopping an engine that never started."""
        stream, _ = streaming

        assert stream.stop_listening() == ""


@pytest.fixture
def empty_audio_file(tmp_path):
    path = tmp_path / "empty.wav"
    with wave.open(str(path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
    return str(path)


@pytest.mark.unit
class TestGoogleBatch:
    """Test cases for the batch engine."""

    def test_short_file_uses_recognize(self, sample_audio_file):
        """Test synchronous recognition of a short recording."""
        client = Mock()
        client.recognize.return_value = response(("buy milk", True), (" and eggs ", True))
        engine = GoogleBatchTranscriber(credentials_path=None, language="en-GB", client=client)

        assert engine.transcribe_file(sample_audio_file) == "buy milk and eggs"

        config = client.recognize.call_args.kwargs["config"]
        assert config.language_code == "en-GB"
        assert config.sample_rate_hertz == 16000
        client.long_running_recognize.assert_not_called()

    def test_long_file_uses_long_running_recognize(self, sample_audio_file, monkeypatch):
        """Test that long recordings go through long_running_recognize."""
        monkeypatch.setattr(google_backend, "SYNC_RECOGNIZE_MAX_SECONDS", 1.0)
        client = Mock()
        client.long_running_recognize.return_value.result.return_value = response(("long note", True))
        engine = GoogleBatchTranscriber(credentials_path=None, client=client)

        assert engine.transcribe_file(sample_audio_file) == "long note"
        client.recognize.assert_not_called()

    def test_api_error_becomes_transcription_error(self, sample_audio_file):
        """Test API error handling."""
        client = Mock()
        client.recognize.side_effect = gax_exceptions.InternalServerError("boom")
        engine = GoogleBatchTranscriber(credentials_path=None, client=client)

        with pytest.raises(TranscriptionError):
            engine.transcribe_file(sample_audio_file)

    def test_unreadable_file(self, tmp_path):
        """Test transcribing a file that does not exist."""
        engine = GoogleBatchTranscriber(credentials_path=None, client=Mock())

        with pytest.raises(TranscriptionError):
            engine.transcribe_file(str(tmp_path / "missing.wav"))

    def test_empty_recording_skips_request(self, empty_audio_file):
        """Test that an empty recording is not sent."""
        client = Mock()
        engine = GoogleBatchTranscriber(credentials_path=None, client=client)

        assert engine.transcribe_file(empty_audio_file) == ""
        client.recognize.assert_not_called()

    def test_missing_credentials_at_transcription(self, sample_audio_file):
        """Test transcription without credentials."""
        engine = GoogleBatchTranscriber(credentials_path=None)

        with pytest.raises(TranscriptionError):
            engine.transcribe_file(sample_audio_file)

    def test_listening_is_a_no_op(self):
        """Test that the batch engine ignores listening spans."""
        engine = GoogleBatchTranscriber(credentials_path=None, client=Mock())

        engine.start_listening(ListeningConfig())

        assert engine.stop_listening() == ""
        assert engine.mode == TranscriptionMode.BATCH
