"""
Development entry point.

    python -m server.main    (from backend/)

Production deployments point uvicorn at server.asgi:app directly.
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()
    uvicorn.run(
        "server.asgi:app",
        host="0.0.0.0",
        port=config.http_server_port,
        log_level="info",
        reload=config.env == "dev",  # Dev mode only
    )


if __name__ == "__main__":
    main()
