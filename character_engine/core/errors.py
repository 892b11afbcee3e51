"""
Error types for the character engine.

Every error carries a machine-readable code and optional details so it can be
logged and, where appropriate, reported to the client verbatim.
"""

from typing import Any, Dict, Optional


class CharacterEngineError(Exception):
    """Base exception for character engine operations."""

    default_code = "CHARACTER_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ConfigurationError(CharacterEngineError):
    """Invalid graph topology or missing required settings. Fatal at startup."""

    default_code = "CONFIGURATION_ERROR"


# =============================================================================
# Sessions
# =============================================================================


class SessionError(CharacterEngineError):
    """Error in session lifecycle operations."""

    default_code = "SESSION_ERROR"

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.key = key
        if key is not None:
            self.details.setdefault("key", key)


class SessionNotFoundError(SessionError):
    """No session is registered under the given key."""

    default_code = "SESSION_NOT_FOUND"

    def __init__(self, key: str):
        super().__init__(f"Session not found: {key}", key=key)


class SessionExistsError(SessionError):
    """A session is already registered under the given key."""

    default_code = "SESSION_EXISTS"

    def __init__(self, key: str):
        super().__init__(f"Session already exists: {key}", key=key)


# =============================================================================
# Pipeline and transport
# =============================================================================


class StageError(CharacterEngineError):
    """A pipeline node failed while processing."""

    default_code = "STAGE_ERROR"

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id
        if node_id is not None:
            self.details.setdefault("node_id", node_id)


class TransportError(CharacterEngineError):
    """Sending to the client transport failed."""

    default_code = "TRANSPORT_ERROR"


class ProtocolError(CharacterEngineError):
    """An inbound client message could not be parsed."""

    default_code = "PROTOCOL_ERROR"


# =============================================================================
# Providers
# =============================================================================


class ProviderError(CharacterEngineError):
    """Error returned by an external generation, synthesis or recognition service."""

    default_code = "PROVIDER_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.provider = provider

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["provider"] = self.provider
        return result


class ProviderConnectionError(ProviderError):
    """Could not connect to the provider."""

    default_code = "PROVIDER_CONNECTION_ERROR"


class ProviderTimeoutError(ProviderError):
    """Provider request timed out."""

    default_code = "PROVIDER_TIMEOUT"


class ProviderResponseError(ProviderError):
    """Provider answered with a non-success status."""

    default_code = "PROVIDER_RESPONSE_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)
