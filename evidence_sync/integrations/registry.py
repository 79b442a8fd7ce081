"""Connector registry: looks up builtin connectors by connector-type string."""

from typing import Dict, Type, Optional, Any
import logging

import httpx
import pydantic

from evidence_sync.core.errors import ConfigurationError, ValidationError
from evidence_sync.integrations.base import BaseConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Registry for builtin connector implementations."""

    _connectors: Dict[str, Type[BaseConnector]] = {}

    @classmethod
    def register(cls, connector_type: str):
        """Decorator to register a connector class."""
        def decorator(connector_class: Type[BaseConnector]):
            cls._connectors[connector_type] = connector_class
            return connector_class
        return decorator

    @classmethod
    def get(cls, connector_type: str) -> Optional[Type[BaseConnector]]:
        """Get connector class by type."""
        return cls._connectors.get(connector_type)

    @classmethod
    def list_types(cls) -> list[str]:
        """List all registered connector types."""
        return list(cls._connectors.keys())

    @classmethod
    def validate_config(cls, connector_type: str, config: Dict[str, Any]) -> pydantic.BaseModel:
        """Validate a decrypted config map against the connector's config model."""
        connector_class = cls.get(connector_type)
        if connector_class is None:
            raise ConfigurationError(f"Unknown connector type: {connector_type}")
        try:
            return connector_class.config_model.model_validate(config)
        except pydantic.ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid {connector_type} configuration: {'; '.join(errors)}", errors
            )

    @classmethod
    def create(
        cls,
        connector_type: str,
        config: Dict[str, Any],
        http_client: httpx.AsyncClient,
        **kwargs: Any,
    ) -> BaseConnector:
        """Instantiate a connector from a decrypted config map."""
        validated = cls.validate_config(connector_type, config)
        return cls._connectors[connector_type](validated, http_client, **kwargs)
