"""
Command-line entry point for the ASR relay server.

Responsibilities:
- Load .env files
- Read host/port/log level from AppConfig
- Run uvicorn against the ASGI app
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def main() -> None:
    """Run the relay server (installed as the `asr-relay` script)."""
    load_dotenv(".env.local")
    load_dotenv()

    config = AppConfig.load_from_env()

    uvicorn.run(
        "server.asgi:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
