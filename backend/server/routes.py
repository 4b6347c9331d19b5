"""
Route registration for the voice command API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Translate wire payloads into state machine calls
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from observability.logger import log
from orchestrator.events import TranscriptionEvent
from orchestrator.registry import GenerationRegistry
from orchestrator.utterance_machine import UtteranceStateMachine


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def machine() -> UtteranceStateMachine:
        return app.state.machine

    def registry() -> GenerationRegistry:
        return app.state.registry

    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        active = registry().active()
        return {
            "status": "ok",
            "timestamp": _iso_now(),
            "activeGeneration": active.id if active is not None else None,
        }

    @app.post("/voice-command")
    async def voice_command(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _json_body(request)
        text = body.get("text") if isinstance(body, dict) else None
        if not isinstance(text, str):
            log("WARN", "HTTP_SERVER", "Invalid request - missing text", body=body)
            return _error(400, "Missing or invalid 'text' field")

        command_text = text.strip()
        if not command_text:
            return _error(400, "Empty text command")

        utterance_id = body.get("utteranceId")
        log(
            "INFO", "HTTP_SERVER", "Processing voice command",
            text=command_text,
            utterance_id=utterance_id,
        )

        try:
            reply = await machine().submit_command(
                command_text,
                utterance_id=str(utterance_id) if utterance_id else None,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "HTTP_SERVER", "Error processing voice command",
                error=f"{type(exc).__name__}: {exc}",
            )
            return _error(500, "Internal server error", details=str(exc))

        return JSONResponse({
            "response": reply,
            "input": command_text,
            "completed": reply is not None,
            "timestamp": _iso_now(),
        })

    @app.post("/transcription")
    async def transcription(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _json_body(request)
        try:
            event = TranscriptionEvent.from_payload(body if isinstance(body, dict) else {})
        except ValueError as exc:
            return _error(400, str(exc))

        task = await machine().handle_event(event)
        if task is not None:
            _report_failure(task, event.utterance.id)
        return JSONResponse({"accepted": True, "dispatched": task is not None})

    @app.post("/cancel")
    async def cancel(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _json_body(request)
        reason = body.get("reason") if isinstance(body, dict) else None

        active = registry().active()
        rolled_back = await machine().cancel(str(reason or "user_cancel"))
        return JSONResponse({
            "cancelled": active is not None,
            "generationId": active.id if active is not None else None,
            "rolledBack": rolled_back,
        })

    @app.websocket("/ws/transcription")
    async def transcription_stream(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()
        log("INFO", "HTTP_SERVER", "Transcription stream connected")

        # Error frames for commands that fail after their ack
        outbox: set[asyncio.Task[None]] = set()

        def send_error(utterance_id: str) -> Callable[[BaseException], None]:
            def notify(exc: BaseException) -> None:
                frame = asyncio.ensure_future(_send_json(ws, {
                    "type": "error",
                    "utteranceId": utterance_id,
                    "error": str(exc),
                }))
                outbox.add(frame)
                frame.add_done_callback(outbox.discard)
            return notify

        try:
            while True:
                raw = await ws.receive_text()
                try:
                    payload = json.loads(raw)
                    event = TranscriptionEvent.from_payload(
                        payload if isinstance(payload, dict) else {}
                    )
                except ValueError as exc:
                    await ws.send_text(json.dumps({"type": "error", "error": str(exc)}))
                    continue

                task = await machine().handle_event(event)
                if task is not None:
                    _report_failure(task, event.utterance.id, send_error(event.utterance.id))
                await ws.send_text(json.dumps({
                    "type": "ack",
                    "utteranceId": event.utterance.id,
                    "dispatched": task is not None,
                }))

        except WebSocketDisconnect:
            log("INFO", "HTTP_SERVER", "Transcription stream disconnected")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log(
                "ERROR", "HTTP_SERVER", "Transcription stream failed",
                exception=type(exc).__name__,
                message=str(exc),
            )

        finally:
            for frame in list(outbox):
                frame.cancel()


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": error, **extra}, status_code=status_code)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _report_failure(
    task: asyncio.Task[str | None],
    utterance_id: str,
    notify: Callable[[BaseException], None] | None = None,
) -> None:
    """Log (and optionally forward) a command task's failure once it finishes."""

    def on_done(done: asyncio.Task[str | None]) -> None:
        if done.cancelled() or done.exception() is None:
            return
        exc = done.exception()
        log(
            "ERROR", "HTTP_SERVER", "Command failed",
            utterance_id=utterance_id,
            error=f"{type(exc).__name__}: {exc}",
        )
        if notify is not None:
            notify(exc)

    task.add_done_callback(on_done)


async def _send_json(ws: WebSocket, payload: dict[str, Any]) -> None:
    try:
        await ws.send_text(json.dumps(payload))
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log(
            "WARN", "HTTP_SERVER", "Could not deliver frame",
            frame_type=payload.get("type"),
            error=f"{type(exc).__name__}: {exc}",
        )
