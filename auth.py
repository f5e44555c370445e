"""Shared-secret checks for the admin and manager operations.

Admin secrets gate the operator console (calling numbers, editing tickets,
export).  Manager secrets gate destructive work (reset, import).  The
authenticator is resolved through ``get_authenticator`` so a deployment can
plug in something stronger with ``app.dependency_overrides``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Dict, Optional

from fastapi import Depends, Header

from config import ADMIN_PASS, MANAGER_PASS
from exceptions import AuthError

logger = logging.getLogger(__name__)

ADMIN = "admin"
MANAGER = "manager"


class SharedSecretAuthenticator:
    """Compare a presented secret against the one configured for a role."""

    def __init__(self, secrets: Dict[str, Optional[str]]) -> None:
        self._secrets = {role: secret for role, secret in secrets.items() if secret}

    def configured_roles(self) -> list:
        return sorted(self._secrets)

    def verify(self, role: str, presented: Optional[str]) -> None:
        expected = self._secrets.get(role)
        if expected is None:
            logger.warning("Rejected %s request: no secret configured for this role", role)
            raise AuthError(f"{role.capitalize()} access is not configured")
        if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
            logger.warning("Rejected %s request: wrong password", role)
            raise AuthError("Invalid password")


_authenticator = SharedSecretAuthenticator({ADMIN: ADMIN_PASS, MANAGER: MANAGER_PASS})


def get_authenticator() -> SharedSecretAuthenticator:
    return _authenticator


def require_admin(
    x_admin_password: Optional[str] = Header(default=None),
    authenticator: SharedSecretAuthenticator = Depends(get_authenticator),
) -> None:
    authenticator.verify(ADMIN, x_admin_password)


def require_manager(
    x_manager_password: Optional[str] = Header(default=None),
    authenticator: SharedSecretAuthenticator = Depends(get_authenticator),
) -> None:
    authenticator.verify(MANAGER, x_manager_password)
