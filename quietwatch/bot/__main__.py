"""
quietwatch.bot.__main__ — Entry point for ``python -m quietwatch.bot``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed configuration.
   Attach the ring-buffer and persisted log handlers.
4. Resolve the bot token (``DISCORD_TOKEN``, else the stored one).
5. Create the QuietwatchBot and run it (blocking).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from quietwatch.bot.core import QuietwatchBot
from quietwatch.config import load_config
from quietwatch.database.engine import create_db_engine, init_db
from quietwatch.services.log_buffer import install_database_handler, install_handler
from quietwatch.services.repository import SqlRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("quietwatch")

PLACEHOLDER_TOKEN = "your-discord-bot-token-here"
LOG_SOURCE = "bot"


def resolve_token(repo: SqlRepository) -> str | None:
    """Environment token first, then the one stored in ``bot_settings``."""
    token = os.getenv("DISCORD_TOKEN")
    if token and token != PLACEHOLDER_TOKEN:
        return token
    config = repo.get_configuration()
    return config.discord_token if config is not None else None


def main() -> None:
    """Bootstrap and run the Quietwatch bot."""
    load_dotenv()

    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    engine = create_db_engine()
    init_db(engine)

    # Dropped events and failed ticks stay queryable from the dashboard
    install_handler()
    db_handler = install_database_handler(engine, source=LOG_SOURCE)

    token = resolve_token(SqlRepository(engine))
    if not token:
        logger.critical(
            "No Discord token.  Set DISCORD_TOKEN in .env or store one "
            "through the dashboard settings."
        )
        db_handler.close()
        sys.exit(1)

    bot = QuietwatchBot(cfg=cfg, engine=engine)

    logger.info("Starting Quietwatch bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
    finally:
        db_handler.close()


if __name__ == "__main__":
    main()
