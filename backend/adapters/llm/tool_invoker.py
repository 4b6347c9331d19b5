"""
OpenAI-compatible tool-calling model invoker.

Responsibilities:
- Run one chat-completions tool loop per voice command
- Execute the model's tool calls through the ToolCatalog
- Keep a short conversation history across commands

Non-responsibilities:
- NO cancellation policy: the caller cancels the awaiting task, and
  asyncio.CancelledError propagates out of invoke() untouched
- NO retries
- NO knowledge of generations or rollback
"""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI

from adapters.llm.prompts import render_system_prompt
from constants import CONVERSATION_HISTORY_MAX_MESSAGES, LLM_MAX_STEPS, LLM_TEMPERATURE
from observability.logger import log
from orchestrator.collaborators import HomeBackend, ToolCatalog


class ToolLoopInvoker:
    """
    ModelInvoker over the chat-completions API.

    History holds user/assistant text pairs only, appended when a
    command finishes; an aborted command leaves no trace.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        model: str,
        backend: HomeBackend | None = None,
        max_steps: int = LLM_MAX_STEPS,
        temperature: float = LLM_TEMPERATURE,
        history_max: int = CONVERSATION_HISTORY_MAX_MESSAGES,
    ) -> None:
        self._client = client
        self._model = model
        self._backend = backend
        self._max_steps = max_steps
        self._temperature = temperature
        self._history_max = history_max
        self._history: list[dict[str, Any]] = []

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    async def invoke(self, text: str, catalog: ToolCatalog) -> str:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": render_system_prompt(await self._known_lights())},
            *self._history,
            {"role": "user", "content": text},
        ]

        reply = ""
        for step in range(self._max_steps):
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                tools=catalog.schemas(),
                temperature=self._temperature,
            )
            message = completion.choices[0].message
            reply = message.content or reply
            tool_calls = message.tool_calls or []

            log(
                "DEBUG", "AI", "Step finished",
                step=step,
                tool_calls=len(tool_calls),
                text=(message.content or "")[:100],
            )
            if not tool_calls:
                break

            messages.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in tool_calls
                ],
            })

            for call in tool_calls:
                result = await catalog.execute(call.function.name, call.function.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result),
                })
        else:
            log("WARN", "AI", "Tool loop hit the step limit", max_steps=self._max_steps)

        self._remember(text, reply)
        return reply

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _remember(self, text: str, reply: str) -> None:
        self._history.append({"role": "user", "content": text})
        if reply:
            self._history.append({"role": "assistant", "content": reply})
        if len(self._history) > self._history_max:
            self._history = self._history[-self._history_max:]
            log("DEBUG", "AI", "Trimmed conversation history", new_length=len(self._history))

    async def _known_lights(self) -> list[str]:
        if self._backend is None:
            return []
        try:
            states = await self._backend.list_states("light")
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log("WARN", "AI", "Could not list lights", error=f"{type(exc).__name__}: {exc}")
            return []
        return [str(s.get("entity_id")) for s in states]


def build_llm_client(
    *,
    provider: str,
    openai_api_key: str | None,
    groq_api_key: str | None = None,
    base_url: str | None = None,
) -> AsyncOpenAI:
    """Build an LLM client for the configured provider."""
    provider = provider.lower()
    if provider == "groq":
        return AsyncOpenAI(
            api_key=groq_api_key,
            base_url="https://api.groq.com/openai/v1",
        )
    if provider == "local":
        if not base_url:
            raise RuntimeError("LLM_BASE_URL must be set for the local provider")
        # Local OpenAI-compatible servers usually ignore the key
        return AsyncOpenAI(api_key=openai_api_key or "local", base_url=base_url)
    if provider != "openai":
        raise RuntimeError(f"Unsupported LLM provider: {provider}")

    if not openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")
    return AsyncOpenAI(api_key=openai_api_key, base_url=base_url)
