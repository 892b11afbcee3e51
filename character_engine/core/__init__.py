"""Shared infrastructure: errors and logging."""

from .errors import (
    CharacterEngineError,
    ConfigurationError,
    ProtocolError,
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    ProviderTimeoutError,
    SessionError,
    SessionExistsError,
    SessionNotFoundError,
    StageError,
    TransportError,
)
from .logging import configure_logging

__all__ = [
    "CharacterEngineError",
    "ConfigurationError",
    "ProtocolError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "SessionError",
    "SessionExistsError",
    "SessionNotFoundError",
    "StageError",
    "TransportError",
    "configure_logging",
]
