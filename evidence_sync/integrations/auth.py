"""Authentication header builder for custom integrations."""

import base64
import logging
from typing import Any, Dict, Optional, Union

import httpx
import pydantic

from evidence_sync.integrations.token_cache import RedisTokenCache, credential_fingerprint
from evidence_sync.models import (
    AuthType,
    ApiKeyAuthConfig,
    BasicAuthConfig,
    BearerAuthConfig,
    OAuth2AuthConfig,
    parse_auth_config,
)
from evidence_sync.utils.http import send_request

logger = logging.getLogger(__name__)


class AuthHeaderBuilder:
    """Turns a decrypted auth config into request headers.

    API keys configured for query placement are returned by
    ``build_query_params`` instead, so secrets never end up in a header map
    that may be logged.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_cache: Optional[RedisTokenCache] = None,
        timeout: float = 30.0,
        retry_attempts: int = 2,
    ):
        self.http_client = http_client
        self.token_cache = token_cache
        self.timeout = timeout
        self.retry_attempts = retry_attempts

    async def build_headers(
        self,
        auth_type: Optional[Union[AuthType, str]],
        auth_config: Optional[Dict[str, Any]],
        integration_id: Optional[str] = None,
        use_cache: bool = True,
    ) -> Dict[str, str]:
        """Build auth headers; any failure yields an empty map.

        ``use_cache=False`` always exchanges a fresh OAuth2 token and leaves
        the token cache untouched, for credentials that are not saved yet.
        """
        parsed = self._parse(auth_type, auth_config)
        if parsed is None:
            return {}

        if isinstance(parsed, ApiKeyAuthConfig):
            if parsed.location == "header":
                return {parsed.key_name: parsed.key_value}
            return {}

        if isinstance(parsed, BearerAuthConfig):
            return {"Authorization": f"Bearer {parsed.token}"}

        if isinstance(parsed, BasicAuthConfig):
            credentials = base64.b64encode(
                f"{parsed.username}:{parsed.password}".encode("utf-8")
            ).decode("ascii")
            return {"Authorization": f"Basic {credentials}"}

        if isinstance(parsed, OAuth2AuthConfig):
            cache_id = integration_id if use_cache else None
            token = await self._get_oauth2_token(parsed, cache_id)
            if token:
                return {"Authorization": f"Bearer {token}"}
            return {}

        return {}

    def build_query_params(
        self,
        auth_type: Optional[Union[AuthType, str]],
        auth_config: Optional[Dict[str, Any]],
    ) -> Dict[str, str]:
        """Query parameters for API keys configured with ``location: query``."""
        parsed = self._parse(auth_type, auth_config)
        if isinstance(parsed, ApiKeyAuthConfig) and parsed.location == "query":
            return {parsed.key_name: parsed.key_value}
        return {}

    def _parse(self, auth_type, auth_config):
        if not auth_type or not auth_config:
            return None
        try:
            return parse_auth_config(auth_type, auth_config)
        except ValueError as e:
            # pydantic.ValidationError is a ValueError subclass
            if isinstance(e, pydantic.ValidationError):
                fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
                logger.warning(f"Incomplete {auth_type} auth config, missing or invalid: {fields}")
            else:
                logger.warning(f"Unsupported auth type: {auth_type}")
            return None

    async def _get_oauth2_token(
        self,
        config: OAuth2AuthConfig,
        integration_id: Optional[str],
    ) -> Optional[str]:
        """Fetch a client-credentials access token, or None on failure."""
        fingerprint = credential_fingerprint(
            config.token_url, config.client_id, config.client_secret, config.scope
        )
        if self.token_cache and integration_id:
            cached = await self.token_cache.get(integration_id, fingerprint)
            if cached:
                return cached

        form = {
            "grant_type": "client_credentials",
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if config.scope:
            form["scope"] = config.scope

        try:
            response = await send_request(
                self.http_client,
                "POST",
                config.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                retry_attempts=self.retry_attempts,
            )
        except httpx.HTTPError as e:
            logger.error(f"OAuth2 token fetch failed: {e}")
            return None

        if not response.is_success:
            logger.error(f"OAuth2 token request failed with HTTP {response.status_code}")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.error("OAuth2 token response is not JSON")
            return None

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            logger.error("OAuth2 token response has no access_token")
            return None

        if self.token_cache and integration_id:
            await self.token_cache.set(integration_id, fingerprint, token, payload.get("expires_in"))

        return token
