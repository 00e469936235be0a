"""
Run the Planboard API with uvicorn using the configured host and port.

Usage:
    uv run python run_server.py
"""

import uvicorn

from planboard.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "planboard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development and settings.debug,
        log_config=None,  # planboard.logging_config owns the handlers
    )


if __name__ == "__main__":
    main()
