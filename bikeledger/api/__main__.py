"""
bikeledger.api.__main__ — Entry point for ``python -m bikeledger.api``
======================================================================

Wiring:
1. Load .env (secrets, DATABASE_URL).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the FastAPI app with uvicorn (blocking).

Run with::

    python -m bikeledger.api
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("bikeledger")


def main() -> None:
    """Bootstrap and serve the BikeLedger API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.  Imported late: deps validates JWT_SECRET on import.
    try:
        from bikeledger.api.deps import get_config, get_engine
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)

    cfg = get_config()
    logger.info("Config loaded — default unit: %s", cfg.default_unit)

    # 3. Database.
    from bikeledger.database.engine import init_db

    init_db(get_engine())

    # 4. Serve (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting BikeLedger API on port %d…", cfg.api_port)
    uvicorn.run("bikeledger.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
