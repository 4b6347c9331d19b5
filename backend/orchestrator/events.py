"""
Transcription event definitions.

Rules:
- Events describe facts delivered by the transcription source.
- Events carry data only (no behavior beyond parsing).
- The state machine never sees the raw wire dict.

Wire shape:
    {"channel": <str|int>, "utterance": {"id": str, "text": str, "isBoundary": bool}}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Utterance:
    """One partial or final transcription of a spoken utterance."""
    id: str
    text: str
    is_boundary: bool


@dataclass(frozen=True)
class TranscriptionEvent:
    """
    Transcription result on one channel.

    is_boundary=False: in-progress partial, may be revised.
    is_boundary=True: end of the utterance.
    """
    channel: str
    utterance: Utterance

    @property
    def is_boundary(self) -> bool:
        return self.utterance.is_boundary

    @staticmethod
    def partial(channel: str, utterance_id: str, text: str) -> TranscriptionEvent:
        return TranscriptionEvent(channel, Utterance(utterance_id, text, False))

    @staticmethod
    def boundary(channel: str, utterance_id: str, text: str) -> TranscriptionEvent:
        return TranscriptionEvent(channel, Utterance(utterance_id, text, True))

    @staticmethod
    def from_payload(payload: Mapping[str, Any]) -> TranscriptionEvent:
        """
        Parse a wire payload.

        Raises:
            ValueError on missing or mistyped fields.
        """
        utterance = payload.get("utterance")
        if not isinstance(utterance, Mapping):
            raise ValueError("missing 'utterance' object")

        utterance_id = utterance.get("id")
        text = utterance.get("text")
        if not isinstance(utterance_id, (str, int)) or utterance_id == "":
            raise ValueError("missing 'utterance.id'")
        if not isinstance(text, str):
            raise ValueError("missing 'utterance.text'")

        return TranscriptionEvent(
            channel=str(payload.get("channel", "default")),
            utterance=Utterance(
                id=str(utterance_id),
                text=text,
                is_boundary=bool(utterance.get("isBoundary", False)),
            ),
        )
