"""Base connector class for builtin vendor integrations."""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, AsyncIterator, Type
from datetime import datetime, timezone
import logging

import httpx
from pydantic import BaseModel

from evidence_sync.core.errors import IntegrationError, TransportError
from evidence_sync.utils.http import send_request

logger = logging.getLogger(__name__)


class AuthenticationError(IntegrationError):
    """Vendor rejected the configured credentials."""
    pass


class RateLimitError(IntegrationError):
    """Vendor rate limit exceeded."""
    pass


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None


class BaseConnector(ABC):
    """Uniform interface every builtin connector satisfies.

    A connector is built from its validated config model and an HTTP client,
    and returns a vendor-shaped raw result from ``sync``; the orchestrator
    turns that into evidence.
    """

    # Narrow, validated config shape for this connector type
    config_model: Type[BaseModel]
    display_name: str = ""

    def __init__(
        self,
        config: BaseModel,
        http_client: httpx.AsyncClient,
        timeout: float = 30.0,
        retry_attempts: int = 2,
    ):
        self.config = config
        self.http_client = http_client
        self.timeout = timeout
        self.retry_attempts = retry_attempts

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Test if the configured credentials work."""
        pass

    @abstractmethod
    async def sync(self) -> Dict[str, Any]:
        """Collect compliance data and return the vendor-shaped result."""
        pass

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Headers authenticating every request to the vendor API."""
        pass

    async def make_api_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an authenticated API request with timeout retries."""
        request_headers = dict(self.auth_headers())
        request_headers.update(headers or {})

        try:
            response = await send_request(
                self.http_client,
                method,
                url,
                headers=request_headers,
                params=params,
                json=json,
                timeout=self.timeout,
                retry_attempts=self.retry_attempts,
            )
        except httpx.HTTPError as e:
            logger.error(f"API request failed: {e}")
            raise TransportError(f"API request failed: {e}")

        if response.status_code == 429:
            raise RateLimitError(f"Rate limit exceeded for {url}")
        if response.status_code == 401:
            raise AuthenticationError(f"Authentication failed for {url}")
        if not response.is_success:
            raise TransportError(
                f"API request failed: HTTP {response.status_code} for {url}",
                status_code=response.status_code,
            )
        return response

    async def paginate_api_results(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 100,
        max_pages: Optional[int] = 10,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Paginate through page-numbered API results."""
        page = 1

        while True:
            request_params = dict(params or {})
            request_params.update(self.page_params(page, page_size))

            response = await self.make_api_request("GET", url, params=request_params)
            data = response.json()

            results = self.extract_results_from_response(data)
            for result in results:
                yield result

            if len(results) < page_size:
                break
            if max_pages and page >= max_pages:
                break
            page += 1

    def page_params(self, page: int, page_size: int) -> Dict[str, Any]:
        """Pagination query parameters (override if needed)."""
        return {"page": page, "per_page": page_size}

    def extract_results_from_response(self, data: Any) -> List[Dict[str, Any]]:
        """Extract results from a paginated response (override if needed)."""
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("results", "data", "items"):
                if isinstance(data.get(key), list):
                    return data[key]
        return []

    @staticmethod
    def collected_at() -> str:
        return datetime.now(timezone.utc).isoformat()
