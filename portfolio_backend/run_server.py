#!/usr/bin/env python3
"""
Backend server launcher script.

Configures logging and starts the uvicorn server on the package app.

    python -m portfolio_backend.run_server
"""

import logging
import os


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("PORTFOLIO_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(
        "portfolio_backend.api:app",
        host=os.environ.get("PORTFOLIO_HOST", "127.0.0.1"),
        port=int(os.environ.get("PORTFOLIO_PORT", "8000")),
        reload=os.environ.get("PORTFOLIO_RELOAD", "false").lower() in ("true", "1", "yes"),
    )
