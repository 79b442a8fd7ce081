"""Execution engines for custom integrations."""

from .declarative import DeclarativeEndpointRunner
from .sandbox import CODE_TEMPLATE, ExecutionContext, SandboxedCodeRunner
from .validator import validate_script

__all__ = [
    "DeclarativeEndpointRunner",
    "SandboxedCodeRunner",
    "ExecutionContext",
    "CODE_TEMPLATE",
    "validate_script",
]
