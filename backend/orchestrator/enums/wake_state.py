"""
Per-channel wake state enumeration.

Rules:
- This enum defines ONLY the wake states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the utterance state machine.
"""

from __future__ import annotations

from enum import Enum


class WakeState(str, Enum):
    """Whether a channel is currently accepting commands."""

    ASLEEP = "ASLEEP"
    AWAKE = "AWAKE"
