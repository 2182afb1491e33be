"""
director.host.__main__ — Entry point for ``python -m director.host``
====================================================================

Wiring:
1. Load .env (optional overrides such as ``DIRECTOR_CONFIG``).
2. Load config.yaml (session id, cache path, default game settings).
3. Configure logging.
4. Build the :class:`DirectorHost` on a local bus and run it until Ctrl+C.

Run with::

    python -m director.host
"""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from director.config import load_config
from director.host.core import DirectorHost

logger = logging.getLogger("director")


def main() -> None:
    """Bootstrap and run the director host."""

    # 1. Environment variables.
    load_dotenv()

    # 2. Host configuration.
    cfg = load_config(os.getenv("DIRECTOR_CONFIG", "config.yaml"))

    # 3. Logging.
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Config loaded — session: %s", cfg.session_id)

    # 4. Run (blocks until Ctrl+C or SIGTERM).
    host = DirectorHost(cfg)
    try:
        asyncio.run(host.run())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
