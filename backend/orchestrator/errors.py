"""
Invariant violations raised by the orchestrator.

Transient backend failures are NOT represented here; they are absorbed
and logged where they occur (snapshot capture, rollback).
"""

from __future__ import annotations


class GenerationAlreadyActiveError(RuntimeError):
    """start() was called while another Generation is still attached."""

    def __init__(self, active_id: str) -> None:
        super().__init__(
            f"generation {active_id} is still active; "
            "complete() or cancel_and_rollback() it first"
        )
        self.active_id = active_id


class GenerationRetiredError(RuntimeError):
    """A retired Generation was mutated after complete()/cancel_and_rollback()."""
