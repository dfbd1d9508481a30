"""Upload identity and anti-forgery nonces.

Authentication itself belongs to the host identity provider, which sits in
front of this service and forwards the authenticated user in headers:

    X-User-Id            stable user identifier (required)
    X-User-Name          display name, used in recording titles
    X-User-Capabilities  comma-separated capabilities, e.g. "upload_files"

Upload nonces are HMAC tokens bound to the user, an action name and a time
tick. A nonce stays valid for the current and the previous tick, i.e. between
half and one full ``lifetime_seconds``.
"""
import hashlib
import hmac
import logging
import math
import time
from typing import List, Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel, Field

from recorder.config import get_config

logger = logging.getLogger(__name__)

UPLOAD_CAPABILITY = "upload_files"
NONCE_LENGTH = 20


class Uploader(BaseModel):
    """The authenticated user performing an upload."""
    user_id: str = Field(..., description="Stable user identifier")
    display_name: str = Field("", description="Human-readable name")
    capabilities: List[str] = Field(default_factory=list, description="Granted capabilities")

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


class NonceService:
    """Creates and verifies time-limited, user-bound nonces.

    Args:
        secret_key: HMAC key.
        lifetime_seconds: Maximum validity of a nonce.
    """

    def __init__(self, secret_key: str, lifetime_seconds: int = 86400) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._key = secret_key.encode("utf-8")
        self._lifetime = max(int(lifetime_seconds), 2)

    def _tick(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return math.ceil(now / (self._lifetime / 2))

    def _digest(self, tick: int, action: str, user_id: str) -> str:
        message = f"{tick}|{action}|{user_id}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()[:NONCE_LENGTH]

    def create(self, action: str, user_id: str, now: Optional[float] = None) -> str:
        return self._digest(self._tick(now), action, user_id)

    def verify(self, nonce: Optional[str], action: str, user_id: str, now: Optional[float] = None) -> bool:
        if not nonce:
            return False
        given = nonce.encode("utf-8")
        tick = self._tick(now)
        for candidate in (tick, tick - 1):
            if hmac.compare_digest(given, self._digest(candidate, action, user_id).encode("utf-8")):
                return True
        return False


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_nonces: Optional[NonceService] = None


def get_nonce_service() -> NonceService:
    """Return the global NonceService, creating it from config on first use."""
    global _nonces
    if _nonces is None:
        config = get_config()
        if config.secrets.nonce.secret_key == "change-me-in-production":
            logger.warning("Using the default nonce secret; set secrets.nonce.secret_key")
        _nonces = NonceService(
            secret_key=config.secrets.nonce.secret_key,
            lifetime_seconds=config.auth.nonce_lifetime_seconds,
        )
    return _nonces


def set_nonce_service(service: Optional[NonceService]) -> None:
    """Set (or replace) the global NonceService instance."""
    global _nonces
    _nonces = service


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_current_uploader(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_capabilities: Optional[str] = Header(None),
) -> Uploader:
    """Resolve the authenticated user forwarded by the identity provider.

    Raises:
        HTTPException 401: If no user is present
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="You must be logged in to record audio.")

    capabilities = [c.strip() for c in (x_user_capabilities or "").split(",") if c.strip()]
    return Uploader(
        user_id=user_id,
        display_name=(x_user_name or "").strip(),
        capabilities=capabilities,
    )
