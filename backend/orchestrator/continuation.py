"""
Continuation detection.

Decides whether newly observed text for an utterance supersedes the
command currently being executed for that same utterance.

False positives (an unnecessary rollback) are preferred over false
negatives (a silently wrong final state): rollback is cheap and
reversible, executing the wrong command is not.

Detectors are interchangeable strategy objects; the utterance state
machine only depends on the ContinuationDetector protocol.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Protocol

from constants import CONTINUATION_LENGTH_SLACK_CHARS
from observability.logger import log
from orchestrator.generation import Generation


class ContinuationDetector(Protocol):
    """Strategy interface."""

    def supersedes(self, original_text: str, new_text: str) -> bool:
        """True if new_text revises or extends original_text."""

    def is_continuation(
        self,
        active: Generation | None,
        utterance_id: str,
        new_text: str,
    ) -> bool:
        """True if new_text for utterance_id supersedes the active Generation."""


class _DetectorBase(ABC):
    """Shared id gating; subclasses implement supersedes()."""

    name = "base"

    @abstractmethod
    def supersedes(self, original_text: str, new_text: str) -> bool:
        ...

    def is_continuation(
        self,
        active: Generation | None,
        utterance_id: str,
        new_text: str,
    ) -> bool:
        if active is None or active.utterance_id != utterance_id:
            return False

        if not self.supersedes(active.text, new_text):
            return False

        log(
            "INFO", "GENERATION", "Detected utterance continuation",
            generation_id=active.id,
            detector=self.name,
            original_text=active.text,
            new_text=new_text,
        )
        return True


class GrowthOrDivergenceDetector(_DetectorBase):
    """
    Length/substring heuristic.

    Continuation if either:
    - new_text grew by more than `slack_chars`, or
    - the original text is no longer a case-insensitive substring of it.
    """

    name = "growth_or_divergence"

    def __init__(self, slack_chars: int = CONTINUATION_LENGTH_SLACK_CHARS) -> None:
        self.slack_chars = slack_chars

    def supersedes(self, original_text: str, new_text: str) -> bool:
        is_longer = len(new_text) > len(original_text) + self.slack_chars
        is_different = original_text.lower() not in new_text.lower()
        return is_longer or is_different


_WORD_RE = re.compile(r"[\w']+")


def _tokens(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


class TokenPrefixDetector(_DetectorBase):
    """
    Word-level comparison, insensitive to case and punctuation.

    Continuation iff the new word sequence is not identical to the
    original one: either it extends it or it diverges from it. A
    trailing punctuation change ("lights on" -> "lights on.") is not a
    continuation, unlike with the character heuristic's divergence check.
    """

    name = "token_prefix"

    def supersedes(self, original_text: str, new_text: str) -> bool:
        return _tokens(new_text) != _tokens(original_text)
