"""
Per-channel utterance session state.

Rules:
- Pure data plus a bounded id set; no timers, no I/O.
- Mutated only by the utterance state machine, one event at a time.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field

from constants import SEEN_UTTERANCE_IDS_MAX
from orchestrator.enums.wake_state import WakeState


class BoundedIdSet:
    """
    Insertion-ordered set that evicts its oldest ids past `max_size`.

    Re-adding an id does not refresh its position.
    """

    def __init__(self, max_size: int = SEEN_UTTERANCE_IDS_MAX) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._ids: OrderedDict[str, None] = OrderedDict()

    def add(self, utterance_id: str) -> None:
        if utterance_id in self._ids:
            return
        self._ids[utterance_id] = None
        while len(self._ids) > self.max_size:
            self._ids.popitem(last=False)

    def __contains__(self, utterance_id: object) -> bool:
        return utterance_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class PromotedPartial:
    """A partial that was acted on before its boundary arrived."""
    utterance_id: str
    text: str
    generation_id: str | None


@dataclass
class UtteranceSession:
    """Wake and de-duplication state for one channel."""

    channel: str
    wake_state: WakeState = WakeState.ASLEEP

    # Event-loop time (seconds) at which the timers are due
    wake_deadline: float | None = None
    partial_deadline: float | None = None

    pending_partial_text: str | None = None
    pending_partial_id: str | None = None

    # raw utterance id -> speculative command started from its partial
    promoted: dict[str, PromotedPartial] = field(default_factory=dict)

    seen_utterance_ids: BoundedIdSet = field(default_factory=BoundedIdSet)

    @property
    def awake(self) -> bool:
        return self.wake_state is WakeState.AWAKE

    def clear_partial(self) -> None:
        self.pending_partial_text = None
        self.pending_partial_id = None
        self.partial_deadline = None
