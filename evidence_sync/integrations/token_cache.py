"""Short-lived OAuth2 access token cache keyed by integration and credentials."""

import hashlib
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# Tokens are dropped this many seconds before the provider expires them.
EXPIRY_SKEW_SECONDS = 30


def credential_fingerprint(*parts: Optional[str]) -> str:
    """Stable digest of the credentials a token was issued for."""
    digest = hashlib.sha256("\x00".join(part or "" for part in parts).encode("utf-8"))
    return digest.hexdigest()[:32]


def _ttl(expires_in: Any) -> Optional[int]:
    try:
        ttl = int(float(expires_in)) - EXPIRY_SKEW_SECONDS
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable OAuth2 expires_in: {expires_in!r}")
        return None
    return ttl if ttl > 0 else None


class RedisTokenCache:
    """Caches client-credentials tokens in Redis until shortly before expiry.

    Keys carry a fingerprint of the token URL, client id, client secret and
    scope, so rotated credentials never read a token issued for the old ones.
    """

    def __init__(self, redis_url: Optional[str] = None, prefix: str = "oauth_token", client=None):
        self.redis_client = client or redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    def _key(self, integration_id: str, fingerprint: str) -> str:
        return f"{self.prefix}:{integration_id}:{fingerprint}"

    async def get(self, integration_id: str, fingerprint: str) -> Optional[str]:
        """Return a cached token, or None on a miss or Redis failure."""
        try:
            return await self.redis_client.get(self._key(integration_id, fingerprint))
        except RedisError as e:
            logger.warning(f"Token cache read failed for integration {integration_id}: {e}")
            return None

    async def set(self, integration_id: str, fingerprint: str, token: str, expires_in: Any) -> None:
        """Cache a token for its lifetime minus a safety skew."""
        if not expires_in:
            return
        ttl = _ttl(expires_in)
        if ttl is None:
            return
        try:
            await self.redis_client.setex(self._key(integration_id, fingerprint), ttl, token)
        except RedisError as e:
            logger.warning(f"Token cache write failed for integration {integration_id}: {e}")

    async def invalidate(self, integration_id: str) -> None:
        """Drop every token cached for an integration."""
        try:
            keys = [key async for key in self.redis_client.scan_iter(match=f"{self.prefix}:{integration_id}:*")]
            if keys:
                await self.redis_client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Token cache invalidation failed for integration {integration_id}: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            logger.warning(f"Token cache ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.redis_client.aclose()
