"""Authentication helpers and builtin vendor connectors."""

from .base import BaseConnector, ConnectionTestResult, AuthenticationError, RateLimitError
from .registry import ConnectorRegistry
from .auth import AuthHeaderBuilder
from .token_cache import RedisTokenCache
from .github import GitHubConnector, GitHubConfig
from .okta import OktaConnector, OktaConfig

__all__ = [
    "BaseConnector",
    "ConnectionTestResult",
    "AuthenticationError",
    "RateLimitError",
    "ConnectorRegistry",
    "AuthHeaderBuilder",
    "RedisTokenCache",
    "GitHubConnector",
    "GitHubConfig",
    "OktaConnector",
    "OktaConfig",
]
