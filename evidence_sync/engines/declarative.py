"""Declarative endpoint runner for visual-mode custom integrations."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from evidence_sync.core.errors import TransportError
from evidence_sync.integrations.auth import AuthHeaderBuilder
from evidence_sync.models import (
    CustomExecutionConfig,
    EndpointSpec,
    EndpointTestResult,
    EvidenceItem,
    SyncResult,
)
from evidence_sync.utils.http import BODY_METHODS, decode_body, join_url, merge_params, send_request
from evidence_sync.utils.json_path import NOT_FOUND, extract_value, stringify

logger = logging.getLogger(__name__)


class DeclarativeEndpointRunner:
    """Calls each configured endpoint and maps its response into evidence.

    ``config.auth_config`` must already be decrypted. A failing endpoint is
    logged and skipped; the rest of the run carries on.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        header_builder: AuthHeaderBuilder,
        timeout: float = 30.0,
        retry_attempts: int = 2,
    ):
        self.http_client = http_client
        self.header_builder = header_builder
        self.timeout = timeout
        self.retry_attempts = retry_attempts

    async def run(self, config: CustomExecutionConfig, integration_id: Optional[str] = None) -> SyncResult:
        result = SyncResult()
        if not config.base_url or not config.endpoints:
            result.logs.append("No base URL or endpoints configured; nothing to collect")
            return result

        auth_headers, auth_params = await self._auth(config, config.auth_config, integration_id)

        for endpoint in config.endpoints:
            try:
                status_code, data = await self._call(config.base_url, endpoint, auth_headers, auth_params)
            except TransportError as e:
                logger.warning(f"Endpoint {endpoint.path} failed: {e}")
                result.logs.append(f"Skipped {endpoint.label}: {e}")
                continue

            result.evidence.append(self._to_evidence(endpoint, data))
            result.logs.append(f"Collected {endpoint.label} (HTTP {status_code})")

        return result

    async def test_endpoint(
        self,
        config: CustomExecutionConfig,
        endpoint_index: int = 0,
        base_url: Optional[str] = None,
        auth_config: Optional[Dict[str, Any]] = None,
        integration_id: Optional[str] = None,
        use_cache: bool = True,
    ) -> EndpointTestResult:
        """Run a single endpoint by index without creating evidence."""
        base_url = base_url or config.base_url
        if not base_url:
            return EndpointTestResult(
                success=False, message="Base URL is required", error="No base URL configured"
            )
        if not config.endpoints:
            return EndpointTestResult(
                success=False, message="No endpoints configured", error="Add at least one endpoint"
            )
        if endpoint_index < 0 or endpoint_index >= len(config.endpoints):
            return EndpointTestResult(
                success=False,
                message="Invalid endpoint index",
                error=f"Endpoint {endpoint_index} not found",
            )

        endpoint = config.endpoints[endpoint_index]
        auth_headers, auth_params = await self._auth(
            config, auth_config or config.auth_config, integration_id, use_cache
        )

        started = time.monotonic()
        try:
            status_code, data = await self._call(base_url, endpoint, auth_headers, auth_params)
        except TransportError as e:
            return EndpointTestResult(
                success=False,
                message=f"HTTP {e.status_code}" if e.status_code else "Connection failed",
                status_code=e.status_code,
                response_time=_elapsed_ms(started),
                error=str(e),
            )

        return EndpointTestResult(
            success=True,
            message=f"Successfully connected to {endpoint.name or endpoint.path}",
            status_code=status_code,
            response_time=_elapsed_ms(started),
            data=data if isinstance(data, (dict, list)) else {"response": data},
        )

    async def _auth(
        self,
        config: CustomExecutionConfig,
        auth_config: Optional[Dict[str, Any]],
        integration_id: Optional[str],
        use_cache: bool = True,
    ) -> Tuple[Dict[str, str], Dict[str, str]]:
        headers = await self.header_builder.build_headers(
            config.auth_type, auth_config, integration_id, use_cache=use_cache
        )
        params = self.header_builder.build_query_params(config.auth_type, auth_config)
        return headers, params

    async def _call(
        self,
        base_url: str,
        endpoint: EndpointSpec,
        auth_headers: Dict[str, str],
        auth_params: Dict[str, str],
    ) -> Tuple[int, Any]:
        """Issue one endpoint call; raise TransportError on any failure."""
        headers = {"Content-Type": "application/json"}
        headers.update(endpoint.headers)
        headers.update(auth_headers)

        kwargs: Dict[str, Any] = {
            "headers": headers,
            "params": merge_params(endpoint.params, auth_params),
        }
        if endpoint.method in BODY_METHODS and endpoint.body is not None:
            kwargs["json"] = endpoint.body

        url = join_url(base_url, endpoint.path)
        try:
            response = await send_request(
                self.http_client,
                endpoint.method,
                url,
                timeout=self.timeout,
                retry_attempts=self.retry_attempts,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {endpoint.path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {endpoint.path} failed: {e}") from e

        data = decode_body(response)
        if not response.is_success:
            detail = data if isinstance(data, str) else str(data)
            raise TransportError(
                f"HTTP {response.status_code}: {detail[:500]}", status_code=response.status_code
            )
        return response.status_code, data

    def _to_evidence(self, endpoint: EndpointSpec, data: Any) -> EvidenceItem:
        title = endpoint.label
        description = endpoint.description or f"Data from {endpoint.path}"
        payload = data if isinstance(data, (dict, list)) else {"response": data}

        mapping = endpoint.response_mapping
        if mapping:
            if mapping.title:
                value = extract_value(data, mapping.title)
                if value is not NOT_FOUND and stringify(value):
                    title = stringify(value)
            if mapping.description:
                value = extract_value(data, mapping.description)
                if value is not NOT_FOUND and stringify(value):
                    description = stringify(value)
            if mapping.data:
                value = extract_value(data, mapping.data)
                if value is not NOT_FOUND:
                    payload = value

        collected_on = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return EvidenceItem(
            title=f"{title} - {collected_on}",
            description=description,
            data=payload,
            type="automated",
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
