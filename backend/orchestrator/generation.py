"""
Generation and snapshot ledger data model.

A Generation is one attempt at speculatively executing a voice command,
from detection to completion or rollback. Its ledger records the state
of every entity it touched, captured before the first mutation.

Rules:
- EntitySnapshot is immutable once recorded.
- The ledger is unique by entity_id; the first capture wins.
- A retired Generation refuses further writes.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from orchestrator.collaborators import CancelHandle
from orchestrator.errors import GenerationRetiredError


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def new_generation_id() -> str:
    return f"gen_{_now_ms()}_{uuid.uuid4().hex[:9]}"


def entity_domain(entity_id: str) -> str:
    """Namespace prefix of an entity id ("light.kitchen" -> "light")."""
    return entity_id.split(".", 1)[0]


@dataclass(frozen=True)
class EntitySnapshot:
    """State of one entity at the time a Generation first touched it."""
    entity_id: str
    state: str
    attributes: Mapping[str, Any]
    captured_at: int

    @property
    def domain(self) -> str:
        return entity_domain(self.entity_id)


@dataclass
class Generation:
    """
    Mutable record of one speculative command execution.

    Mutated only through the registry, and only until it is retired.
    """

    utterance_id: str
    text: str
    cancel: CancelHandle | None = None
    id: str = field(default_factory=new_generation_id)
    started_at: int = field(default_factory=_now_ms)

    _snapshots: dict[str, EntitySnapshot] = field(default_factory=dict, repr=False)
    _operations: list[str] = field(default_factory=list, repr=False)
    retired: bool = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshots(self) -> tuple[EntitySnapshot, ...]:
        """Ledger in capture order."""
        return tuple(self._snapshots.values())

    @property
    def operations_invoked(self) -> tuple[str, ...]:
        return tuple(self._operations)

    def has_snapshot(self, entity_id: str) -> bool:
        return entity_id in self._snapshots

    def duration_ms(self) -> int:
        return _now_ms() - self.started_at

    # ------------------------------------------------------------------
    # Write side (registry only)
    # ------------------------------------------------------------------

    def add_snapshot(self, snapshot: EntitySnapshot) -> bool:
        """
        Record a snapshot unless the entity is already in the ledger.

        Returns True if the snapshot was recorded.
        """
        self._check_attached()
        if snapshot.entity_id in self._snapshots:
            return False
        self._snapshots[snapshot.entity_id] = snapshot
        return True

    def add_operation(self, name: str) -> None:
        self._check_attached()
        self._operations.append(name)

    def retire(self) -> None:
        self.retired = True

    def _check_attached(self) -> None:
        if self.retired:
            raise GenerationRetiredError(f"generation {self.id} is retired")
