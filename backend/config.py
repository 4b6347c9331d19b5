"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    HOME_ASSISTANT_URL_DEFAULT,
    HTTP_SERVER_PORT_DEFAULT,
    PARTIAL_TIMEOUT_MS_DEFAULT,
    USE_PARTIAL_RESULTS_DEFAULT,
    WAKE_WORD_DEFAULT,
    WAKE_WORD_TIMEOUT_MS_DEFAULT,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed downward to the
    app factory, which wires the backend client, the model invoker
    and the utterance state machine from it.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Home Assistant
    # ------------------------------------------------------------------

    home_assistant_url: str = HOME_ASSISTANT_URL_DEFAULT
    home_assistant_token: str = ""

    # ------------------------------------------------------------------
    # LLM configuration
    # ------------------------------------------------------------------

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str | None = None
    openai_api_key: str | None = None
    groq_api_key: str | None = None

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    wake_word: str = WAKE_WORD_DEFAULT
    wake_word_timeout_ms: int = WAKE_WORD_TIMEOUT_MS_DEFAULT
    partial_timeout_ms: int = PARTIAL_TIMEOUT_MS_DEFAULT
    use_partial_results: bool = USE_PARTIAL_RESULTS_DEFAULT

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------

    http_server_port: int = HTTP_SERVER_PORT_DEFAULT

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is not an integer.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            home_assistant_url=os.environ.get("HOME_ASSISTANT_URL", HOME_ASSISTANT_URL_DEFAULT),
            home_assistant_token=os.environ.get("HOME_ASSISTANT_TOKEN", ""),

            llm_provider=os.environ.get("LLM_PROVIDER", "openai"),
            llm_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            llm_base_url=os.environ.get("LLM_BASE_URL"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),

            wake_word=os.environ.get("WAKE_WORD", WAKE_WORD_DEFAULT),
            wake_word_timeout_ms=int(
                os.environ.get("WAKE_WORD_TIMEOUT_MS", WAKE_WORD_TIMEOUT_MS_DEFAULT)
            ),
            partial_timeout_ms=int(
                os.environ.get("PARTIAL_TIMEOUT_MS", PARTIAL_TIMEOUT_MS_DEFAULT)
            ),
            use_partial_results=os.environ.get(
                "USE_PARTIAL_RESULTS", "1" if USE_PARTIAL_RESULTS_DEFAULT else "0"
            ) not in ("0", "false", "False"),

            http_server_port=int(os.environ.get("HTTP_SERVER_PORT", HTTP_SERVER_PORT_DEFAULT)),
        )
