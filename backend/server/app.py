"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Wire the engine: backend client, registry, tool catalog, model
  invoker, utterance state machine (one of each per process)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.homeassistant.client import HomeAssistantClient
from adapters.llm.tool_invoker import ToolLoopInvoker, build_llm_client
from config import AppConfig
from observability.logger import log, set_level
from orchestrator.collaborators import HomeBackend, ModelInvoker
from orchestrator.registry import GenerationRegistry
from orchestrator.utterance_machine import UtteranceStateMachine
from services.home_control import HomeControlTools

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    backend: HomeBackend | None = None,
    invoker: ModelInvoker | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    backend / invoker default to the Home Assistant REST client and the
    OpenAI tool loop built from config; tests pass fakes instead.
    """
    config = config or AppConfig.load_from_env()
    set_level(config.log_level)

    owns_backend = backend is None
    if backend is None:
        backend = HomeAssistantClient(
            base_url=config.home_assistant_url,
            token=config.home_assistant_token,
        )

    if invoker is None:
        invoker = ToolLoopInvoker(
            client=build_llm_client(
                provider=config.llm_provider,
                openai_api_key=config.openai_api_key,
                groq_api_key=config.groq_api_key,
                base_url=config.llm_base_url,
            ),
            model=config.llm_model,
            backend=backend,
        )

    registry = GenerationRegistry(backend)
    machine = UtteranceStateMachine(
        registry=registry,
        invoker=invoker,
        catalog=HomeControlTools(registry=registry, backend=backend),
        wake_word=config.wake_word,
        wake_timeout_ms=config.wake_word_timeout_ms,
        partial_timeout_ms=config.partial_timeout_ms,
        use_partial_results=config.use_partial_results,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log(
            "INFO", "HTTP_SERVER", "Voice command server started",
            env=config.env,
            llm_provider=config.llm_provider,
            llm_model=config.llm_model,
            wake_word=config.wake_word,
        )
        try:
            yield
        finally:
            await machine.shutdown()
            if owns_backend and isinstance(backend, HomeAssistantClient):
                await backend.aclose()
            log("INFO", "HTTP_SERVER", "Voice command server stopped")

    app = FastAPI(title="Voice Command API", lifespan=lifespan)

    app.state.config = config
    app.state.backend = backend
    app.state.registry = registry
    app.state.machine = machine

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
