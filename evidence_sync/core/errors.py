"""Error taxonomy for integrations, engines and the sync pipeline."""

from typing import List, Optional


class IntegrationError(Exception):
    """Base integration error."""
    pass


class ConfigurationError(IntegrationError):
    """Missing or invalid configuration; fatal to the requested operation."""
    pass


class NotFoundError(ConfigurationError):
    """Integration or configuration record does not exist."""
    pass


class ValidationError(IntegrationError):
    """Script or endpoint definition rejected before any execution."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class TransportError(IntegrationError):
    """Outbound call failed (network, timeout or HTTP status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExecutionError(IntegrationError):
    """Sandboxed script raised, misbehaved or ran out of time."""
    pass


class CryptographicError(IntegrationError):
    """Ciphertext could not be parsed or failed its integrity check."""
    pass
