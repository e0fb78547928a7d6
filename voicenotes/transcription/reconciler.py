"""Transcript reconciliation for partial-result speech engines.

Streaming engines emit a sequence of partial transcripts. Most of the time each
partial extends the previous one ("hi", "hi there", "hi there friend"), but an
engine may silently restart its internal buffer mid-speech, after which the
next partial is shorter than and unrelated to the last one ("oh"). This module
folds such a sequence into one growing, de-duplicated transcript:

    buffer = TranscriptBuffer()
    for raw in ["hi there friend", "oh"]:
        buffer = reconcile(buffer, raw)
    commit(buffer).full_text  # "hi there friend oh"

The functions are pure so that the reset heuristic can be exercised without any
engine; TranscriptReconciler wraps them for the capture session.
"""

import logging
from dataclasses import replace
from typing import Optional, Tuple

from pubsub import pub

from ..models.transcription import TranscriptBuffer, Utterance

logger = logging.getLogger(__name__)

# Leading characters of the previous utterance a new one must share to count
# as a continuation.
DEFAULT_PREFIX_WINDOW = 10


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace and trim."""
    return " ".join(text.split())


def _head(text: str, prefix_window: Optional[int]) -> str:
    return text if prefix_window is None else text[:prefix_window]


def is_related(previous: str, current: str, prefix_window: Optional[int] = DEFAULT_PREFIX_WINDOW) -> bool:
    """True if current extends, or is a prefix of, the start of previous."""
    head = _head(previous, prefix_window)
    return current.startswith(head) or head.startswith(current)


def is_reset(previous: str, current: str, prefix_window: Optional[int] = DEFAULT_PREFIX_WINDOW) -> bool:
    """Detect an engine-internal restart between two consecutive raw utterances."""
    if not previous:
        return False
    if len(current) >= len(previous):
        return False
    return not is_related(previous, current, prefix_window)


def _append_committed(committed: Tuple[str, ...], text: str) -> Tuple[str, ...]:
    normalized = normalize_whitespace(text)
    return committed + (normalized,) if normalized else committed


def reconcile(buffer: TranscriptBuffer,
              raw: str,
              is_final: bool = False,
              prefix_window: Optional[int] = DEFAULT_PREFIX_WINDOW) -> TranscriptBuffer:
    """Fold one raw utterance into the buffer and return the new buffer."""
    if not raw or not raw.strip():
        return buffer

    previous = buffer.last_raw_utterance
    related = bool(previous) and is_related(previous, raw, prefix_window)
    starts_segment = is_reset(previous, raw, prefix_window) or (buffer.last_was_final and not related)

    committed = buffer.committed_text
    if starts_segment:
        committed = _append_committed(committed, buffer.live_text)
        span: Tuple[str, ...] = (raw,)
        logger.debug(f"Segment boundary after '{previous[:40]}', committed {len(committed)} segments")
    elif related and buffer.span:
        span = buffer.span[:-1] + (raw,)
    else:
        span = buffer.span + (raw,)

    return replace(
        buffer,
        committed_text=committed,
        live_text=" ".join(span),
        last_raw_utterance=raw,
        span=span,
        last_was_final=is_final,
    )


def commit(buffer: TranscriptBuffer) -> TranscriptBuffer:
    """Move the live tail into the committed text. Committing twice is a no-op."""
    return replace(
        buffer,
        committed_text=_append_committed(buffer.committed_text, buffer.live_text),
        live_text="",
        last_raw_utterance="",
        span=(),
        last_was_final=False,
    )


def override(buffer: TranscriptBuffer, text: str) -> TranscriptBuffer:
    """Replace the whole transcript with a manual edit.

    The edit is kept as typed (line breaks included), trimmed only. It becomes
    a committed segment, so utterances from a later listening span are
    appended after it.
    """
    edited = text.strip()
    return TranscriptBuffer(
        committed_text=(edited,) if edited else (),
        manually_edited=True,
    )


def apply_batch_result(buffer: TranscriptBuffer, text: str) -> TranscriptBuffer:
    """Apply the single result of an offline transcription.

    An empty buffer is replaced verbatim; text already present (a manual edit
    or an earlier recording of the same session) is kept and the result is
    appended after it.
    """
    if not text or not text.strip():
        return buffer
    if not buffer.committed_text and not buffer.live_text.strip():
        return TranscriptBuffer(committed_text=(text,), manually_edited=buffer.manually_edited)
    committed = commit(buffer)
    return replace(committed, committed_text=committed.committed_text + (text,))


class TranscriptReconciler:
    """Owns the transcript buffer of one capture session."""

    def __init__(self, topic: Optional[str] = None, prefix_window: Optional[int] = DEFAULT_PREFIX_WINDOW):
        """Initialize reconciler.

        Args:
            topic: Pub/sub topic for transcript updates (None disables publishing)
            prefix_window: Leading characters compared for reset detection
                           (None compares whole utterances)
        """
        self.topic = topic
        self.prefix_window = prefix_window
        self._buffer = TranscriptBuffer()
        self._sequence = 0

    @property
    def buffer(self) -> TranscriptBuffer:
        return self._buffer

    @property
    def full_text(self) -> str:
        return self._buffer.full_text

    @property
    def live_text(self) -> str:
        return self._buffer.live_text

    def consume(self, text: str, is_final: bool = False) -> Optional[Utterance]:
        """Reconcile one raw utterance. Empty utterances are ignored and return None."""
        if not text or not text.strip():
            return None

        self._sequence += 1
        utterance = Utterance(text=text, is_final=is_final, sequence_id=self._sequence)
        self._set(reconcile(self._buffer, text, is_final=is_final, prefix_window=self.prefix_window))
        logger.debug(f"Utterance #{utterance.sequence_id} (final={is_final}): '{text}'")
        return utterance

    def finalize(self) -> str:
        """Commit the live tail and return the full transcript."""
        self._set(commit(self._buffer))
        return self._buffer.full_text

    def override(self, text: str) -> None:
        self._set(override(self._buffer, text))
        logger.info(f"Transcript manually replaced ({len(self._buffer.full_text)} chars)")

    def apply_batch_result(self, text: str) -> None:
        self._set(apply_batch_result(self._buffer, text))

    def reset(self) -> None:
        self._sequence = 0
        self._set(TranscriptBuffer())

    def _set(self, buffer: TranscriptBuffer) -> None:
        if buffer == self._buffer:
            return
        self._buffer = buffer
        if self.topic:
            pub.sendMessage(self.topic, full_text=buffer.full_text, live_text=buffer.live_text)
