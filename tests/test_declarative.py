"""Tests for the declarative endpoint runner."""

import json

import httpx
import pytest

from evidence_sync.engines import DeclarativeEndpointRunner
from evidence_sync.integrations import AuthHeaderBuilder
from evidence_sync.models import CustomExecutionConfig, EndpointSpec

BASE_URL = "https://api.vendor.test/v1"


def runner_for(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeclarativeEndpointRunner(client, AuthHeaderBuilder(client, retry_attempts=1), retry_attempts=1)


def make_config(*endpoints, **kwargs):
    return CustomExecutionConfig(
        integration_id="int-1",
        base_url=kwargs.pop("base_url", BASE_URL),
        endpoints=[EndpointSpec.model_validate(endpoint) for endpoint in endpoints],
        **kwargs,
    )


class TestRun:
    """Full visual-mode runs."""

    @pytest.mark.asyncio
    async def test_mapped_title(self):
        runner = runner_for(lambda request: httpx.Response(200, json={"status": "ok"}))
        config = make_config(
            {"method": "GET", "path": "/health", "responseMapping": {"title": "status"}}
        )

        result = await runner.run(config)

        assert len(result.evidence) == 1
        assert "ok" in result.evidence[0].title
        assert result.evidence[0].data == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_failing_endpoint_is_skipped(self):
        def handler(request):
            if request.url.path.endswith("/broken"):
                return httpx.Response(500, json={"error": "boom"})
            return httpx.Response(200, json={"items": [1, 2]})

        runner = runner_for(handler)
        config = make_config(
            {"method": "GET", "path": "/users"},
            {"method": "GET", "path": "/broken"},
            {"method": "GET", "path": "/groups", "name": "Groups"},
        )

        result = await runner.run(config)

        assert len(result.evidence) == 2
        assert result.evidence[0].title.startswith("GET /users - ")
        assert result.evidence[1].title.startswith("Groups - ")
        assert any("Skipped GET /broken" in line and "HTTP 500" in line for line in result.logs)

    @pytest.mark.asyncio
    async def test_network_error_is_skipped(self):
        def handler(request):
            if request.url.path.endswith("/down"):
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={})

        result = await runner_for(handler).run(
            make_config({"method": "GET", "path": "/down"}, {"method": "GET", "path": "/up"})
        )
        assert len(result.evidence) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried_then_skipped(self):
        attempts = {"slow": 0, "up": 0}

        def handler(request):
            if request.url.path.endswith("/slow"):
                attempts["slow"] += 1
                raise httpx.ReadTimeout("read timed out", request=request)
            attempts["up"] += 1
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        runner = DeclarativeEndpointRunner(
            client, AuthHeaderBuilder(client, retry_attempts=1), retry_attempts=3
        )

        result = await runner.run(
            make_config({"method": "GET", "path": "/slow"}, {"method": "GET", "path": "/up"})
        )

        assert attempts == {"slow": 3, "up": 1}
        assert len(result.evidence) == 1
        assert result.evidence[0].data == {"ok": True}
        skipped = [line for line in result.logs if line.startswith("Skipped")]
        assert len(skipped) == 1
        assert "timed out" in skipped[0]

    @pytest.mark.asyncio
    async def test_connect_error_is_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        runner = DeclarativeEndpointRunner(
            client, AuthHeaderBuilder(client, retry_attempts=1), retry_attempts=3
        )

        result = await runner.run(make_config({"method": "GET", "path": "/down"}))

        assert len(attempts) == 1
        assert result.evidence == []

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        config = make_config(
            {
                "method": "post",
                "path": "search",
                "headers": {"X-Trace": "1"},
                "params": {"limit": 10},
                "body": {"query": "open"},
            },
            auth_type="api_key",
            auth_config={"keyName": "token", "keyValue": "k-9", "location": "query"},
        )

        await runner_for(handler).run(config)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/search"
        assert request.url.params["limit"] == "10"
        assert request.url.params["token"] == "k-9"
        assert request.headers["X-Trace"] == "1"
        assert json.loads(request.content) == {"query": "open"}

    @pytest.mark.asyncio
    async def test_auth_header_applied(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        config = make_config(
            {"method": "GET", "path": "/me"}, auth_type="bearer", auth_config={"token": "t-1"}
        )
        await runner_for(handler).run(config)
        assert seen[0].headers["Authorization"] == "Bearer t-1"

    @pytest.mark.asyncio
    async def test_mapping_fallbacks(self):
        payload = {"meta": {"label": ""}, "results": [{"id": 1}], "summary": "Two admins"}
        runner = runner_for(lambda request: httpx.Response(200, json=payload))
        config = make_config(
            {
                "method": "GET",
                "path": "/admins",
                "description": "Admin accounts",
                "responseMapping": {
                    "title": "meta.label",
                    "description": "summary",
                    "data": "results",
                },
            },
            {
                "method": "GET",
                "path": "/other",
                "responseMapping": {"title": "missing.path", "data": "missing"},
            },
        )

        first, second = (await runner.run(config)).evidence

        assert first.title.startswith("GET /admins - ")
        assert first.description == "Two admins"
        assert first.data == [{"id": 1}]
        assert second.title.startswith("GET /other - ")
        assert second.description == "Data from /other"
        assert second.data == payload

    @pytest.mark.asyncio
    async def test_text_body_is_wrapped(self):
        runner = runner_for(lambda request: httpx.Response(200, text="pong"))
        result = await runner.run(make_config({"method": "GET", "path": "/ping"}))
        assert result.evidence[0].data == {"response": "pong"}

    @pytest.mark.asyncio
    async def test_nothing_configured(self):
        runner = runner_for(lambda request: httpx.Response(200))
        result = await runner.run(CustomExecutionConfig(integration_id="int-1"))
        assert result.evidence == []
        assert result.logs


class TestEndpointTest:
    """Single-endpoint dry runs."""

    @pytest.mark.asyncio
    async def test_success(self):
        runner = runner_for(lambda request: httpx.Response(200, json={"users": []}))
        config = make_config({"method": "GET", "path": "/users", "name": "Users"})

        result = await runner.test_endpoint(config, endpoint_index=0)

        assert result.success is True
        assert result.status_code == 200
        assert result.data == {"users": []}
        assert result.message == "Successfully connected to Users"
        assert result.response_time is not None

    @pytest.mark.asyncio
    async def test_overrides_base_url(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            return httpx.Response(200, json={})

        config = make_config({"method": "GET", "path": "/users"})
        await runner_for(handler).test_endpoint(config, 0, base_url="https://staging.vendor.test")
        assert hosts == ["staging.vendor.test"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [-1, 1, 5])
    async def test_invalid_index(self, index):
        runner = runner_for(lambda request: httpx.Response(200))
        config = make_config({"method": "GET", "path": "/users"})

        result = await runner.test_endpoint(config, endpoint_index=index)

        assert result.success is False
        assert result.message == "Invalid endpoint index"

    @pytest.mark.asyncio
    async def test_http_error(self):
        runner = runner_for(lambda request: httpx.Response(403, text="forbidden"))
        result = await runner.test_endpoint(make_config({"method": "GET", "path": "/x"}), 0)

        assert result.success is False
        assert result.status_code == 403
        assert result.message == "HTTP 403"
        assert "forbidden" in result.error

    @pytest.mark.asyncio
    async def test_missing_base_url(self):
        runner = runner_for(lambda request: httpx.Response(200))
        config = make_config({"method": "GET", "path": "/x"}, base_url=None)
        result = await runner.test_endpoint(config, 0)
        assert result.success is False
        assert result.message == "Base URL is required"
