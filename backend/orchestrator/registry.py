"""
Generation registry.

Responsibilities:
- Hold at most one active Generation (the single in-flight slot)
- Capture entity snapshots into the active Generation's ledger
- Retire the active Generation via complete() or cancel_and_rollback()

Non-responsibilities:
- NO decision about WHEN to start, complete or roll back
  (utterance state machine / external triggers decide)
- NO knowledge of how a given domain is restored (RollbackExecutor)

Concurrency:
- Confined to one asyncio event loop; the slot needs no lock.
- cancel_and_rollback() detaches BEFORE its first await, so a
  concurrent caller observes an empty slot immediately.
"""

from __future__ import annotations

import asyncio
import time

from observability.logger import log
from observability.metrics import timed
from orchestrator.collaborators import CancelHandle, EntityStateStore
from orchestrator.errors import GenerationAlreadyActiveError
from orchestrator.generation import EntitySnapshot, Generation
from orchestrator.rollback import RollbackExecutor, RollbackTally


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _preview(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class GenerationRegistry:
    """
    Owner of the active-Generation slot.

    Only the utterance state machine calls start()/complete();
    cancel_and_rollback() may be called by the state machine or by any
    external trigger (explicit user cancel).
    """

    def __init__(
        self,
        backend: EntityStateStore,
        executor: RollbackExecutor | None = None,
    ) -> None:
        self._backend = backend
        self._executor = executor or RollbackExecutor(backend)
        self._active: Generation | None = None

        # (generation_id, entity_id) -> in-flight capture; concurrent
        # captures of one entity share a single backend read
        self._pending_captures: dict[tuple[str, str], asyncio.Task[None]] = {}

        self.last_rollback: RollbackTally | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        utterance_id: str,
        text: str,
        cancel: CancelHandle | None = None,
    ) -> str:
        """
        Attach a new Generation and return its id.

        Raises:
            GenerationAlreadyActiveError if one is already attached.
        """
        if self._active is not None:
            log(
                "ERROR", "GENERATION", "start() while a generation is active",
                active_generation_id=self._active.id,
                utterance_id=utterance_id,
            )
            raise GenerationAlreadyActiveError(self._active.id)

        generation = Generation(utterance_id=utterance_id, text=text, cancel=cancel)
        self._active = generation

        log(
            "DEBUG", "GENERATION", "Started tracking generation",
            generation_id=generation.id,
            utterance_id=utterance_id,
            text=_preview(text),
        )
        return generation.id

    def active(self) -> Generation | None:
        return self._active

    def complete(self) -> None:
        """Detach the active Generation after a successful run."""
        generation = self._detach()
        if generation is None:
            return

        log(
            "INFO", "GENERATION", "Generation completed successfully",
            generation_id=generation.id,
            tools_executed=len(generation.operations_invoked),
            entities_affected=len(generation.snapshots),
            duration_ms=generation.duration_ms(),
        )

    async def cancel_and_rollback(self, reason: str) -> bool:
        """
        Abort the active Generation and restore its ledger.

        Returns True only if every snapshot was restored. The slot is
        empty on return regardless of the outcome.
        """
        generation = self._detach()
        if generation is None:
            log("DEBUG", "GENERATION", "No active generation to cancel", reason=reason)
            return False

        log(
            "INFO", "GENERATION", "Cancelling generation and rolling back",
            generation_id=generation.id,
            reason=reason,
            tools_executed=len(generation.operations_invoked),
            entities_affected=len(generation.snapshots),
            original_text=generation.text,
        )

        if generation.cancel is not None:
            try:
                generation.cancel.cancel()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log(
                    "WARN", "GENERATION", "Cancel handle raised; rolling back anyway",
                    generation_id=generation.id,
                    error=f"{type(exc).__name__}: {exc}",
                )

        with timed(
            "rollback",
            generation_id=generation.id,
            details={"reason": reason},
        ) as extra:
            tally = await self._executor.restore(generation.snapshots)
            extra["restored"] = tally.restored
            extra["failed"] = tally.failed

        self.last_rollback = tally

        log(
            "INFO" if tally.ok else "ERROR", "GENERATION", "Rollback completed",
            generation_id=generation.id,
            rollback_successes=tally.restored,
            rollback_failures=tally.failed,
            rollback_skipped=tally.skipped,
            failed_entities=list(tally.failed_entities),
            total_entities=len(generation.snapshots),
        )
        return tally.ok

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def capture_snapshot(self, entity_id: str) -> None:
        """
        Record entity_id's current state in the active ledger.

        No-op without an active Generation or when the entity is already
        recorded. Fetch failures are logged and swallowed: the entity
        simply will not be rolled back.
        """
        generation = self._active
        if generation is None or generation.has_snapshot(entity_id):
            return

        key = (generation.id, entity_id)
        pending = self._pending_captures.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._capture(generation, entity_id))
            self._pending_captures[key] = pending
            pending.add_done_callback(lambda _: self._pending_captures.pop(key, None))

        await asyncio.shield(pending)

    def record_operation(self, name: str) -> None:
        generation = self._active
        if generation is None:
            return

        generation.add_operation(name)
        log(
            "DEBUG", "GENERATION", "Recorded tool execution",
            generation_id=generation.id,
            tool_name=name,
            total_tools_executed=len(generation.operations_invoked),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _detach(self) -> Generation | None:
        generation, self._active = self._active, None
        if generation is not None:
            generation.retire()
        return generation

    async def _capture(self, generation: Generation, entity_id: str) -> None:
        try:
            entity_state = await self._backend.get_state(entity_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "GENERATION", "Failed to capture entity state",
                generation_id=generation.id,
                entity_id=entity_id,
                error=f"{type(exc).__name__}: {exc}",
            )
            return

        if generation.retired:
            # Retired while the read was in flight; the ledger is closed
            return

        snapshot = EntitySnapshot(
            entity_id=entity_id,
            state=str(entity_state.get("state", "")),
            attributes=dict(entity_state.get("attributes") or {}),
            captured_at=_now_ms(),
        )
        if generation.add_snapshot(snapshot):
            log(
                "DEBUG", "GENERATION", "Captured entity state",
                generation_id=generation.id,
                entity_id=entity_id,
                state=snapshot.state,
                attribute_keys=sorted(snapshot.attributes),
            )
