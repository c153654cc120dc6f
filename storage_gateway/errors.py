# storage_gateway/errors.py
"""
Error taxonomy shared by adapters, the orchestration service and the API.

Each error carries an HTTP status so the web layer can map it without
knowing the concrete class. Partial failures of fan-out operations are
never raised: they are reported through the aggregate result objects in
`storage_gateway.core.results`.
"""
from typing import Any, Dict, Iterable, Optional


class StorageGatewayError(Exception):
    """Base class for all gateway errors."""

    status_code = 500
    error_type = "storage_gateway_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(StorageGatewayError):
    """A required credential or secret is missing. Never retried."""

    status_code = 500
    error_type = "configuration_error"


class ValidationError(StorageGatewayError):
    """Bad input, rejected before any remote call."""

    status_code = 400
    error_type = "validation_error"


class UnsupportedProviderError(ValidationError):
    error_type = "unsupported_provider"

    def __init__(self, provider: str, supported: Iterable[str]):
        supported = list(supported)
        super().__init__(
            f"Unsupported provider: {provider}. Supported providers: {', '.join(supported)}",
            details={"provider": provider, "supported": supported},
        )
        self.provider = provider
        self.supported = supported


class NotFoundError(StorageGatewayError):
    status_code = 404
    error_type = "not_found"


class ProviderError(StorageGatewayError):
    """A remote provider call failed."""

    status_code = 502
    error_type = "provider_error"

    def __init__(self, provider: str, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Failed to {operation} with {provider}: {message}",
            details={"provider": provider, "operation": operation, **(details or {})},
        )
        self.provider = provider
        self.operation = operation
        self.reason = message


class EncryptionError(StorageGatewayError):
    error_type = "encryption_error"


class ServiceUnavailableError(StorageGatewayError):
    """Raised by the health aggregator when the overall verdict is `error`."""

    status_code = 503
    error_type = "service_unavailable"

    def __init__(self, payload: Dict[str, Any]):
        super().__init__("Service unavailable", details=payload)
        self.payload = payload
