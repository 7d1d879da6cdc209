"""
API service entrypoint.
Runs the matchfeed FastAPI app under uvicorn; PORT overrides MF_API_PORT when a
platform assigns the port dynamically.
"""
from __future__ import annotations

import os

import uvicorn

from shared.config import get_settings


def main() -> None:
    """Start the API service."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.api_port))

    # One worker: the cache, health records and scheduler live in this process.
    uvicorn.run(
        "api.app:app",
        host=settings.api_host,
        port=port,
        workers=1,
        log_level=settings.log_level.lower(),
        access_log=False,  # request logging happens in middleware
        timeout_keep_alive=30,
    )


if __name__ == "__main__":
    main()
