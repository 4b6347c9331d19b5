"""
Utterance state machine.

Consumes transcription events per channel and turns completed (or
promoted) utterances into speculative command executions.

Per channel:
- ASLEEP -> AWAKE when the wake word is heard (partial or boundary);
  the wake deadline is (re)armed on every wake word and every partial
  heard while AWAKE.
- AWAKE -> ASLEEP when the wake deadline elapses, or after one command
  has been dispatched (one wake -> one command).
- Boundary, unseen id, AWAKE, text left after stripping the wake word
  -> command.
- Partial while AWAKE -> partial timer; on expiry the last partial is
  promoted to a command. The seen-set records the derived id
  "<id>#partial" so the genuine boundary is still processed, and is
  compared against the speculative command for continuation.
- Any event for a seen id -> ignored.

Commands:
- Run the model call as an independent task; the task is the
  Generation's cancel handle, so cancel_and_rollback() aborts it.
- A continuation of the in-flight Generation rolls it back first, but
  only when both come from the same channel.
- Any other in-flight Generation is superseded: its model call is
  aborted and it is retired with complete() (its effects stand).

Failure semantics:
- Cancellation of a model call is swallowed inside the command task.
- Any other model failure is logged and re-raised to whoever awaits
  the task returned by handle_event() / submit_command().
- The Generation is always detached in the task's finally block.

Concurrency:
- Events and timer expiries for one channel are serialized by a
  per-channel asyncio.Lock. Different channels share the single
  Generation slot of the registry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from constants import (
    PARTIAL_TIMEOUT_MS_DEFAULT,
    PROMOTED_PARTIAL_ID_SUFFIX,
    SEEN_UTTERANCE_IDS_MAX,
    USE_PARTIAL_RESULTS_DEFAULT,
    WAKE_WORD_DEFAULT,
    WAKE_WORD_SEPARATOR_CHARS,
    WAKE_WORD_TIMEOUT_MS_DEFAULT,
    HTTP_CHANNEL,
)
from observability.logger import log
from observability.metrics import timed
from orchestrator.collaborators import ModelInvoker, ToolCatalog
from orchestrator.continuation import ContinuationDetector, GrowthOrDivergenceDetector
from orchestrator.enums.wake_state import WakeState
from orchestrator.errors import GenerationAlreadyActiveError
from orchestrator.events import TranscriptionEvent, Utterance
from orchestrator.generation import Generation
from orchestrator.registry import GenerationRegistry
from orchestrator.session_state import BoundedIdSet, PromotedPartial, UtteranceSession
from orchestrator.timers import ChannelTimers


TIMER_WAKE = "wake_deadline"
TIMER_PARTIAL = "partial_deadline"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class _Command:
    """One dispatched command and the task running its model call."""
    channel: str
    utterance_id: str
    text: str
    source: str
    generation_id: str = ""
    task: asyncio.Task[str | None] = field(init=False, repr=False)


class UtteranceStateMachine:
    """Drives the generation registry from a transcription event stream."""

    def __init__(
        self,
        *,
        registry: GenerationRegistry,
        invoker: ModelInvoker,
        catalog: ToolCatalog,
        detector: ContinuationDetector | None = None,
        wake_word: str = WAKE_WORD_DEFAULT,
        wake_timeout_ms: int = WAKE_WORD_TIMEOUT_MS_DEFAULT,
        partial_timeout_ms: int = PARTIAL_TIMEOUT_MS_DEFAULT,
        use_partial_results: bool = USE_PARTIAL_RESULTS_DEFAULT,
        seen_ids_max: int = SEEN_UTTERANCE_IDS_MAX,
    ) -> None:
        if not wake_word.strip():
            raise ValueError("wake_word must not be empty")

        self._registry = registry
        self._invoker = invoker
        self._catalog = catalog
        self._detector: ContinuationDetector = detector or GrowthOrDivergenceDetector()

        self._wake_word = wake_word.strip().lower()
        self._wake_timeout_ms = wake_timeout_ms
        self._partial_timeout_ms = partial_timeout_ms
        self._use_partial_results = use_partial_results
        self._seen_ids_max = seen_ids_max

        self._sessions: dict[str, UtteranceSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._timers = ChannelTimers()

        # Mirrors the registry slot: at most one command in flight
        self._command: _Command | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def session(self, channel: str) -> UtteranceSession:
        session = self._sessions.get(channel)
        if session is None:
            session = UtteranceSession(
                channel=channel,
                seen_utterance_ids=BoundedIdSet(self._seen_ids_max),
            )
            self._sessions[channel] = session
        return session

    def wake_state(self, channel: str) -> WakeState:
        return self.session(channel).wake_state

    @property
    def in_flight(self) -> asyncio.Task[str | None] | None:
        command = self._command
        return command.task if command is not None else None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_event(
        self,
        event: TranscriptionEvent,
    ) -> asyncio.Task[str | None] | None:
        """
        Process one transcription event.

        Returns the task running the model call when the event
        dispatched a command, else None. Awaiting the task yields the
        model's reply (None if it was cancelled) or raises its failure.
        """
        async with self._lock(event.channel):
            session = self.session(event.channel)
            if event.is_boundary:
                command = await self._on_boundary(session, event.utterance)
            else:
                command = None
                self._on_partial(session, event.utterance)
        return command.task if command is not None else None

    async def submit_command(
        self,
        text: str,
        *,
        utterance_id: str | None = None,
        channel: str = HTTP_CHANNEL,
    ) -> str | None:
        """
        Run a command directly, without the wake gate, and await its reply.

        Returns None if the id was already handled or the command was
        cancelled by a later one.
        """
        command_text = text.strip()
        if not command_text:
            raise ValueError("empty command text")

        async with self._lock(channel):
            session = self.session(channel)
            uid = utterance_id or f"{channel}_{_now_ms()}"
            if uid in session.seen_utterance_ids:
                log("DEBUG", "VOICE", "Skipping already processed utterance", id=uid)
                return None
            session.seen_utterance_ids.add(uid)
            command = await self._dispatch(session, uid, command_text, source="direct")

        return await command.task

    async def cancel(self, reason: str = "user_cancel") -> bool:
        """
        Abort speculative execution and roll back its effects.

        Returns the registry's rollback outcome (False if nothing was
        in flight).
        """
        return await self._registry.cancel_and_rollback(reason)

    async def wait_idle(self) -> None:
        """Wait for the in-flight command, if any, ignoring its outcome."""
        while self._command is not None:
            task = self._command.task
            await asyncio.gather(task, return_exceptions=True)
            if self._command is not None and self._command.task is task:
                break

    async def shutdown(self) -> None:
        """Cancel timers and abort the in-flight command without rollback."""
        await self._timers.cancel_all()
        command = self._command
        if command is not None and not command.task.done():
            command.task.cancel()
            await asyncio.gather(command.task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _on_boundary(
        self,
        session: UtteranceSession,
        utterance: Utterance,
    ) -> _Command | None:
        self._timers.cancel(channel=session.channel, name=TIMER_PARTIAL)
        session.clear_partial()

        if utterance.id in session.seen_utterance_ids:
            log(
                "DEBUG", "VOICE", "Skipping already processed utterance",
                id=utterance.id,
                text=utterance.text,
            )
            return None
        session.seen_utterance_ids.add(utterance.id)

        has_wake_word, command_text = self._strip_wake_word(utterance.text)

        promoted = session.promoted.pop(utterance.id, None)
        if promoted is not None:
            return await self._on_promoted_boundary(session, utterance, command_text, promoted)

        if has_wake_word:
            self._wake(session)

        if not session.awake:
            log(
                "DEBUG", "WAKE", "Waiting for wake word",
                channel=session.channel,
                text=utterance.text,
                wake_word=self._wake_word,
            )
            return None

        if not command_text:
            # Wake word alone: stay awake for the command
            return None

        log(
            "INFO", "VOICE", "Voice command received",
            channel=session.channel,
            id=utterance.id,
            text=command_text,
        )
        return await self._dispatch(session, utterance.id, command_text, source="boundary")

    async def _on_promoted_boundary(
        self,
        session: UtteranceSession,
        utterance: Utterance,
        command_text: str,
        promoted: PromotedPartial,
    ) -> _Command | None:
        """Genuine boundary for an utterance already acted on from a partial."""
        if not command_text:
            return None

        active = self._registry.active()
        if active is not None and active.id == promoted.generation_id:
            if self._detector.is_continuation(active, utterance.id, command_text):
                return await self._dispatch(
                    session, utterance.id, command_text, source="continuation"
                )
            log(
                "DEBUG", "VOICE", "Boundary confirms speculative command",
                id=utterance.id,
                generation_id=active.id,
            )
            return None

        if self._detector.supersedes(promoted.text, command_text):
            # The speculative command already finished; its ledger is gone
            log(
                "WARN", "VOICE", "Correcting a finished speculative command without rollback",
                id=utterance.id,
                speculative_text=promoted.text,
                text=command_text,
            )
            return await self._dispatch(
                session, utterance.id, command_text, source="late_correction"
            )

        log("DEBUG", "VOICE", "Boundary confirms finished speculative command", id=utterance.id)
        return None

    def _on_partial(self, session: UtteranceSession, utterance: Utterance) -> None:
        # Already acted on: only its boundary matters now
        if utterance.id in session.seen_utterance_ids or utterance.id in session.promoted:
            return

        log(
            "DEBUG", "VOICE", "Partial transcription",
            channel=session.channel,
            id=utterance.id,
            text=utterance.text,
        )

        has_wake_word, _ = self._strip_wake_word(utterance.text)
        if has_wake_word:
            self._wake(session)
        elif session.awake:
            self._arm_wake_timer(session)

        if not session.awake:
            return

        session.pending_partial_text = utterance.text
        session.pending_partial_id = utterance.id

        if not self._use_partial_results:
            return

        deadline = self._loop_time() + self._partial_timeout_ms / 1000.0
        session.partial_deadline = deadline
        channel = session.channel
        armed_id = utterance.id

        async def _expire() -> None:
            await self._on_partial_timeout(channel, armed_id, deadline)

        self._timers.arm(
            channel=channel,
            name=TIMER_PARTIAL,
            delay_ms=self._partial_timeout_ms,
            callback=_expire,
        )

    async def _on_partial_timeout(
        self,
        channel: str,
        armed_id: str,
        armed_deadline: float,
    ) -> None:
        async with self._lock(channel):
            session = self.session(channel)

            # Superseded by a newer partial, a boundary, or sleep
            if (
                not session.awake
                or session.partial_deadline != armed_deadline
                or session.pending_partial_id != armed_id
            ):
                return

            derived_id = armed_id + PROMOTED_PARTIAL_ID_SUFFIX
            seen = session.seen_utterance_ids
            raw_text = session.pending_partial_text or ""
            session.clear_partial()

            if armed_id in seen or derived_id in seen:
                return

            _, command_text = self._strip_wake_word(raw_text)
            if not command_text:
                return

            seen.add(derived_id)
            log(
                "INFO", "VOICE", "Processing partial as final (timeout)",
                channel=channel,
                id=armed_id,
                text=command_text,
                timeout_ms=self._partial_timeout_ms,
            )

            command = await self._dispatch(session, armed_id, command_text, source="partial")
            self._remember_promotion(
                session,
                PromotedPartial(armed_id, command_text, command.generation_id),
            )

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        session: UtteranceSession,
        utterance_id: str,
        text: str,
        *,
        source: str,
    ) -> _Command:
        active = self._active_on(session.channel)
        if active is not None and self._detector.is_continuation(active, utterance_id, text):
            await self._registry.cancel_and_rollback(f"continuation:{utterance_id}")

        # Rollback awaits; another channel may have started a command meanwhile
        if self._registry.active() is not None:
            self._supersede_in_flight(utterance_id)

        command = self._start_command(session.channel, utterance_id, text, source)

        # One wake -> one command
        self._sleep(session, reason="command_dispatched")
        return command

    def _active_on(self, channel: str) -> Generation | None:
        """Active Generation, only if the in-flight command came from `channel`."""
        active = self._registry.active()
        command = self._command
        if active is None or command is None:
            return None
        if command.generation_id != active.id or command.channel != channel:
            return None
        return active

    def _start_command(
        self,
        channel: str,
        utterance_id: str,
        text: str,
        source: str,
    ) -> _Command:
        command = _Command(channel=channel, utterance_id=utterance_id, text=text, source=source)
        command.task = asyncio.create_task(self._run_command(command))
        try:
            # Runs before the task's first step: the task sees its id
            command.generation_id = self._registry.start(utterance_id, text, cancel=command.task)
        except GenerationAlreadyActiveError:
            command.task.cancel()
            raise

        command.task.add_done_callback(lambda _: self._on_command_done(command))
        self._command = command
        return command

    def _supersede_in_flight(self, utterance_id: str) -> None:
        active = self._registry.active()
        command = self._command
        log(
            "INFO", "GENERATION", "Superseding in-flight generation",
            generation_id=active.id if active is not None else None,
            by_utterance_id=utterance_id,
        )
        self._registry.complete()
        if command is not None and not command.task.done():
            command.task.cancel()

    async def _run_command(self, command: _Command) -> str | None:
        try:
            with timed(
                "model_call",
                generation_id=command.generation_id,
                channel=command.channel,
                details={"source": command.source},
            ) as extra:
                result = await self._invoker.invoke(command.text, self._catalog)
                extra["output_len"] = len(result)
        except asyncio.CancelledError:
            log(
                "DEBUG", "AI", "AI request aborted",
                generation_id=command.generation_id,
                input=command.text,
            )
            return None
        except Exception as exc:
            log(
                "ERROR", "AI", "AI analysis failed",
                generation_id=command.generation_id,
                input=command.text,
                error=f"{type(exc).__name__}: {exc}",
            )
            raise
        finally:
            self._retire(command)

        log(
            "INFO", "AI", "AI analysis completed",
            generation_id=command.generation_id,
            input=command.text,
            output=result,
        )
        return result

    def _retire(self, command: _Command) -> None:
        active = self._registry.active()
        if active is not None and active.id == command.generation_id:
            self._registry.complete()
        if self._command is command:
            self._command = None

    def _on_command_done(self, command: _Command) -> None:
        # A task cancelled before its first step never reached its finally
        self._retire(command)
        # Failures were logged in _run_command; mark them retrieved
        if not command.task.cancelled():
            command.task.exception()

    # ------------------------------------------------------------------
    # Wake handling
    # ------------------------------------------------------------------

    def _wake(self, session: UtteranceSession) -> None:
        if not session.awake:
            log(
                "INFO", "WAKE", "Wake word detected! Listening for commands...",
                channel=session.channel,
                wake_word=self._wake_word,
            )
        session.wake_state = WakeState.AWAKE
        self._arm_wake_timer(session)

    def _arm_wake_timer(self, session: UtteranceSession) -> None:
        deadline = self._loop_time() + self._wake_timeout_ms / 1000.0
        session.wake_deadline = deadline
        channel = session.channel

        async def _expire() -> None:
            async with self._lock(channel):
                current = self.session(channel)
                if current.awake and current.wake_deadline == deadline:
                    log("INFO", "WAKE", "Wake word timeout - going back to sleep", channel=channel)
                    self._sleep(current, reason="wake_timeout")

        self._timers.arm(
            channel=channel,
            name=TIMER_WAKE,
            delay_ms=self._wake_timeout_ms,
            callback=_expire,
        )

    def _sleep(self, session: UtteranceSession, *, reason: str) -> None:
        session.wake_state = WakeState.ASLEEP
        session.wake_deadline = None
        session.clear_partial()
        self._timers.cancel(channel=session.channel, name=TIMER_WAKE)
        self._timers.cancel(channel=session.channel, name=TIMER_PARTIAL)
        log("DEBUG", "WAKE", "Channel asleep", channel=session.channel, reason=reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _strip_wake_word(self, text: str) -> tuple[bool, str]:
        """
        Split off the wake word.

        Returns (wake word present, command text). The command is what
        follows the wake word; without a wake word it is the whole text.
        """
        idx = text.lower().find(self._wake_word)
        if idx < 0:
            return False, text.strip()
        rest = text[idx + len(self._wake_word):]
        return True, rest.lstrip(WAKE_WORD_SEPARATOR_CHARS).strip()

    def _remember_promotion(self, session: UtteranceSession, promoted: PromotedPartial) -> None:
        session.promoted[promoted.utterance_id] = promoted
        while len(session.promoted) > self._seen_ids_max:
            del session.promoted[next(iter(session.promoted))]

    def _lock(self, channel: str) -> asyncio.Lock:
        lock = self._locks.get(channel)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[channel] = lock
        return lock

    @staticmethod
    def _loop_time() -> float:
        return asyncio.get_running_loop().time()
