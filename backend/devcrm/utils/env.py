"""Environment helpers for local development."""

import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> bool:
    """Load variables from a local .env file without overriding the environment.

    WHAT:
        Reads `.env` (searched upward from the working directory) into os.environ.
    WHY:
        Lets `backend/.env` supply DATABASE_URL, JWT_SECRET and
        TOKEN_ENCRYPTION_KEY in development while exported variables win in
        production.

    Returns:
        True when a .env file was found and loaded.
    """
    loaded = load_dotenv(override=False)

    if loaded:
        logger.info("[ENV] Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("[ENV] No local .env file found")
    return loaded
