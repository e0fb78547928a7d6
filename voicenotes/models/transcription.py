"""Transcription-related data models."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Utterance:
    """One raw emission from the transcription engine, partial or final."""
    text: str
    is_final: bool
    sequence_id: int  # assigned by the reconciler, not the engine


@dataclass(frozen=True)
class TranscriptBuffer:
    """Reconciled transcript state.

    ``committed_text`` only ever grows while listening; ``live_text`` is the
    uncommitted tail and is replaced on every utterance. ``span`` holds the raw
    texts accumulated since the last detected engine reset.
    """
    committed_text: Tuple[str, ...] = ()
    live_text: str = ""
    last_raw_utterance: str = ""
    span: Tuple[str, ...] = ()
    last_was_final: bool = False
    manually_edited: bool = False

    @property
    def full_text(self) -> str:
        """Committed segments followed by the live tail, single-space joined."""
        segments = self.committed_text + (self.live_text,)
        return " ".join(s.strip() for s in segments if s.strip())

    @property
    def committed_length(self) -> int:
        return sum(len(s) for s in self.committed_text)
