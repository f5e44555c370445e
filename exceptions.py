"""Error types raised by the queue service.

Each error carries the HTTP status the API layer answers with, so
``main.py`` needs a single handler for the whole family.
"""

from __future__ import annotations

from typing import List, Optional


class QueueError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(QueueError):
    """A missing field, a non-numeric counter or an unknown status."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class AuthError(QueueError):
    status_code = 401


class NotFoundError(QueueError):
    status_code = 404


class StoreError(QueueError):
    """Wraps a failed Redis call; the message never leaks driver details."""

    status_code = 500
