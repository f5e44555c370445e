"""Runtime configuration for the ticket queue.

All settings come from environment variables so the same code runs locally
and in a container.  Nothing here is secret by default: ``ADMIN_PASS`` and
``MANAGER_PASS`` stay unset until the deployment provides them.
"""

from __future__ import annotations

import os
from typing import List


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
QUEUE_KEY_PREFIX = os.getenv("QUEUE_KEY_PREFIX", "queue")

ADMIN_PASS = os.getenv("ADMIN_PASS")
MANAGER_PASS = os.getenv("MANAGER_PASS")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))

TICKET_LIST_DEFAULT_LIMIT = int(os.getenv("TICKET_LIST_DEFAULT_LIMIT", 50))
TICKET_LIST_MAX_LIMIT = int(os.getenv("TICKET_LIST_MAX_LIMIT", 200))
IMPORT_MAX_ERRORS = int(os.getenv("IMPORT_MAX_ERRORS", 50))


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
