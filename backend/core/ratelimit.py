# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Fixed-window request quotas.

Two named quotas exist: ``strict`` for credential-bearing endpoints (login,
register, password reset, 2FA) and ``default`` for everything else under
/auth.  Counters live in process memory and belong to one app instance.

Usage in a router::

    @router.post("/login", dependencies=[Depends(rate_limit("strict"))])
"""

import math
import time

from fastapi import Request
from limits import parse_many
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from core.config import Settings
from core.exceptions import RateLimitedError
from core.logger import logger
from core.security import get_client_ip, read_session_claims


class RateLimiter:
    def __init__(self, settings: Settings):
        self.enabled = settings.rate_limit_enabled
        self._storage = MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self._storage)
        self.quotas = {
            "default": parse_many(settings.rate_limit_default),
            "strict": parse_many(settings.rate_limit_strict),
        }

    def hit(self, quota: str, endpoint: str, key: str) -> None:
        """
        Count one request of *key* against every window of *quota*.

        Raises ``RateLimitedError`` carrying the seconds until the
        exhausted window resets.
        """
        for item in self.quotas[quota]:
            if not self._limiter.hit(item, endpoint, key):
                reset_time = self._limiter.get_window_stats(item, endpoint, key)[0]
                retry_after = math.ceil(reset_time - time.time())
                logger.warning("Rate limit %s exceeded on %s by %s", item, endpoint, key)
                raise RateLimitedError(retry_after)

    def reset(self) -> None:
        self._storage.reset()


def rate_limit_key(request: Request) -> str:
    """Authenticated user id when a valid session cookie is present, else client IP."""
    claims = read_session_claims(request)
    if claims:
        return f"user:{claims.user_id}"
    return f"ip:{get_client_ip(request)}"


def rate_limit(quota: str = "default"):
    """Build a dependency that enforces *quota* on the route it guards."""

    def _rate_limit_gate(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        if not limiter.enabled:
            return
        limiter.hit(quota, request.url.path, rate_limit_key(request))

    return _rate_limit_gate
