"""Tests for auth header construction."""

import base64
from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import pytest

from evidence_sync.integrations import AuthHeaderBuilder, RedisTokenCache
from evidence_sync.integrations.token_cache import credential_fingerprint

TOKEN_URL = "https://auth.example.com/oauth/token"

OAUTH2_CONFIG = {
    "tokenUrl": TOKEN_URL,
    "clientId": "client-1",
    "clientSecret": "s3cret",
    "scope": "read:all",
}

OAUTH2_KEY = "oauth_token:int-1:" + credential_fingerprint(TOKEN_URL, "client-1", "s3cret", "read:all")


def builder_for(handler, token_cache=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AuthHeaderBuilder(client, token_cache=token_cache, retry_attempts=1)


def unreachable(request):
    raise AssertionError(f"unexpected request to {request.url}")


class TestStaticSchemes:
    """Schemes that need no network round trip."""

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        builder = builder_for(unreachable)
        headers = await builder.build_headers(
            "api_key", {"keyName": "X-API-Key", "keyValue": "k-1", "location": "header"}
        )
        assert headers == {"X-API-Key": "k-1"}

    @pytest.mark.asyncio
    async def test_api_key_query_goes_to_params(self):
        builder = builder_for(unreachable)
        config = {"keyName": "api_key", "keyValue": "k-1", "location": "query"}

        assert await builder.build_headers("api_key", config) == {}
        assert builder.build_query_params("api_key", config) == {"api_key": "k-1"}

    @pytest.mark.asyncio
    async def test_bearer(self):
        builder = builder_for(unreachable)
        headers = await builder.build_headers("bearer", {"token": "abc"})
        assert headers == {"Authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_basic(self):
        builder = builder_for(unreachable)
        headers = await builder.build_headers("basic", {"username": "svc", "password": "pw"})
        expected = base64.b64encode(b"svc:pw").decode()
        assert headers == {"Authorization": f"Basic {expected}"}

    @pytest.mark.asyncio
    async def test_incomplete_config_yields_no_headers(self):
        builder = builder_for(unreachable)
        assert await builder.build_headers("bearer", {"nope": "x"}) == {}
        assert await builder.build_headers("basic", {"username": "only"}) == {}

    @pytest.mark.asyncio
    async def test_unknown_or_missing_type(self):
        builder = builder_for(unreachable)
        assert await builder.build_headers("kerberos", {"token": "x"}) == {}
        assert await builder.build_headers(None, {"token": "x"}) == {}
        assert await builder.build_headers("bearer", None) == {}


class TestOAuth2:
    """Client-credentials token exchange."""

    @pytest.mark.asyncio
    async def test_token_exchange(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"access_token": "tok-xyz", "expires_in": 3600})

        builder = builder_for(handler)
        headers = await builder.build_headers("oauth2", OAUTH2_CONFIG)

        assert headers == {"Authorization": "Bearer tok-xyz"}
        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == TOKEN_URL
        form = parse_qs(request.content.decode())
        assert form == {
            "grant_type": ["client_credentials"],
            "client_id": ["client-1"],
            "client_secret": ["s3cret"],
            "scope": ["read:all"],
        }

    @pytest.mark.asyncio
    async def test_scope_is_optional(self):
        forms = []

        def handler(request):
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "t"})

        config = {key: value for key, value in OAUTH2_CONFIG.items() if key != "scope"}
        await builder_for(handler).build_headers("oauth2", config)
        assert "scope" not in forms[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(401, json={"error": "invalid_client"}),
            httpx.Response(200, json={"token_type": "bearer"}),
            httpx.Response(200, text="<html>not json</html>"),
        ],
    )
    async def test_failed_exchange_yields_no_headers(self, response):
        builder = builder_for(lambda request: response)
        assert await builder.build_headers("oauth2", OAUTH2_CONFIG) == {}

    @pytest.mark.asyncio
    async def test_network_error_yields_no_headers(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        builder = builder_for(handler)
        assert await builder.build_headers("oauth2", OAUTH2_CONFIG) == {}

    @pytest.mark.asyncio
    async def test_cached_token_skips_exchange(self):
        redis_client = AsyncMock()
        redis_client.get.return_value = "cached-token"
        cache = RedisTokenCache(client=redis_client)

        builder = builder_for(unreachable, token_cache=cache)
        headers = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")

        assert headers == {"Authorization": "Bearer cached-token"}
        redis_client.get.assert_awaited_once_with(OAUTH2_KEY)

    @pytest.mark.asyncio
    async def test_fresh_token_is_cached_with_skew(self):
        redis_client = AsyncMock()
        redis_client.get.return_value = None
        cache = RedisTokenCache(client=redis_client)

        builder = builder_for(
            lambda request: httpx.Response(200, json={"access_token": "fresh", "expires_in": 300}),
            token_cache=cache,
        )
        headers = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")

        assert headers == {"Authorization": "Bearer fresh"}
        redis_client.setex.assert_awaited_once_with(OAUTH2_KEY, 270, "fresh")


def issuing_handler(calls):
    """Token endpoint that issues one token per client id."""

    def handler(request):
        form = parse_qs(request.content.decode())
        calls.append(form["client_id"][0])
        return httpx.Response(
            200, json={"access_token": f"token-for-{form['client_id'][0]}", "expires_in": 3600}
        )

    return handler


class TestTokenCache:
    """Caching of client-credentials tokens."""

    @pytest.mark.asyncio
    async def test_rotated_credentials_get_a_fresh_token(self, token_cache):
        calls = []
        builder = builder_for(issuing_handler(calls), token_cache=token_cache)

        first = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")
        again = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")
        rotated = await builder.build_headers(
            "oauth2", {**OAUTH2_CONFIG, "clientId": "client-2"}, integration_id="int-1"
        )

        assert first == again == {"Authorization": "Bearer token-for-client-1"}
        assert rotated == {"Authorization": "Bearer token-for-client-2"}
        assert calls == ["client-1", "client-2"]

    def test_rotated_secret_or_scope_changes_the_key(self):
        base = credential_fingerprint(TOKEN_URL, "client-1", "s3cret", "read:all")
        assert credential_fingerprint(TOKEN_URL, "client-1", "other", "read:all") != base
        assert credential_fingerprint(TOKEN_URL, "client-1", "s3cret", None) != base
        assert credential_fingerprint("https://other/token", "client-1", "s3cret", "read:all") != base

    @pytest.mark.asyncio
    async def test_uncached_build_neither_reads_nor_writes(self, token_cache):
        fingerprint = credential_fingerprint(TOKEN_URL, "client-1", "s3cret", "read:all")
        await token_cache.set("int-1", fingerprint, "stale", 3600)
        calls = []
        builder = builder_for(issuing_handler(calls), token_cache=token_cache)

        headers = await builder.build_headers(
            "oauth2", OAUTH2_CONFIG, integration_id="int-1", use_cache=False
        )

        assert headers == {"Authorization": "Bearer token-for-client-1"}
        assert calls == ["client-1"]
        assert list(token_cache.redis_client.values.values()) == ["stale"]

    @pytest.mark.asyncio
    async def test_fractional_expires_in_is_cached(self, token_cache):
        builder = builder_for(
            lambda request: httpx.Response(200, json={"access_token": "X", "expires_in": "3600.0"}),
            token_cache=token_cache,
        )
        headers = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")

        assert headers == {"Authorization": "Bearer X"}
        assert token_cache.redis_client.ttls == {OAUTH2_KEY: 3570}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", ["soon", {"seconds": 60}, 10])
    async def test_unusable_expires_in_skips_caching(self, token_cache, expires_in):
        builder = builder_for(
            lambda request: httpx.Response(200, json={"access_token": "X", "expires_in": expires_in}),
            token_cache=token_cache,
        )
        headers = await builder.build_headers("oauth2", OAUTH2_CONFIG, integration_id="int-1")

        assert headers == {"Authorization": "Bearer X"}
        assert token_cache.redis_client.values == {}

    @pytest.mark.asyncio
    async def test_invalidate_drops_only_that_integration(self, token_cache):
        await token_cache.set("int-1", "fp-a", "a", 3600)
        await token_cache.set("int-1", "fp-b", "b", 3600)
        await token_cache.set("int-10", "fp-a", "c", 3600)

        await token_cache.invalidate("int-1")

        assert list(token_cache.redis_client.values) == ["oauth_token:int-10:fp-a"]
