"""Admin console authentication.

Issues stateless JWT bearer tokens (HS256) so that any instance sharing
the secret can validate them. Expiry is carried in the ``exp`` claim.
"""

import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from jose import JWTError, jwt

from returnpilot.infrastructure.config import settings

logger = structlog.get_logger()

ALGORITHM = "HS256"
ADMIN_SUBJECT = "admin"


@dataclass
class AdminToken:
    """An issued admin token."""

    token: str
    expires_at: datetime


class AdminAuthService:
    """Validates the admin password and issues/verifies tokens."""

    def __init__(
        self,
        password: str,
        secret: str,
        ttl: timedelta = timedelta(hours=12),
    ) -> None:
        self._password = password
        self._secret = secret
        self.ttl = ttl

    def login(self, password: str, now: datetime | None = None) -> AdminToken | None:
        """Issue a token if the password matches.

        Args:
            password: Password supplied by the admin.
            now: Issue time (defaults to current UTC time).

        Returns:
            The issued token, or None on a wrong password.
        """
        if not hmac.compare_digest(password.encode(), self._password.encode()):
            logger.warning("Admin login failed")
            return None

        now = now or datetime.now(timezone.utc)
        expires_at = now + self.ttl
        payload = {
            "sub": ADMIN_SUBJECT,
            "iat": now,
            "nbf": now,
            "exp": expires_at,
            "jti": uuid.uuid4().hex,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        logger.info("Admin login succeeded", expires_at=expires_at.isoformat())
        return AdminToken(token=token, expires_at=expires_at)

    def verify(self, token: str | None) -> bool:
        """Check a token's signature, expiry and subject."""
        if not token:
            return False
        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.debug("Admin token rejected", error=str(e))
            return False
        return payload.get("sub") == ADMIN_SUBJECT


def get_admin_auth_service() -> AdminAuthService:
    """Get admin auth service from settings."""
    return AdminAuthService(
        password=settings.admin_password,
        secret=settings.admin_token_secret,
        ttl=timedelta(hours=settings.admin_token_ttl_hours),
    )
