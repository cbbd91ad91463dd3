"""Bearer token verification."""

import hmac
from typing import Optional

from ._utils import logger
from .exceptions import AuthError


class AuthGate:
    """Validate the ``Authorization`` header against the configured secret.

    Stateless: every request is checked on its own. Missing headers, unknown
    schemes and wrong tokens all raise the same ``AuthError``.
    """

    def __init__(self, token: str):
        self._token = token.encode("utf-8")

    def authorize(self, authorization: Optional[str]) -> None:
        presented = self._extract(authorization)
        if presented is None or not hmac.compare_digest(presented.encode("utf-8"), self._token):
            logger.warning("Rejected request with missing or invalid bearer token")
            raise AuthError()

    @staticmethod
    def _extract(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return token.strip()
