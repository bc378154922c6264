"""Error hierarchy for the bridge.

Only ``ClientInputError`` ever reaches the webhook sender as a non-200 status;
the rest end a run as ``Failed`` and are reported in the response body.
"""

from typing import Any


class BridgeError(Exception):
    """Base error - all bridge errors extend this"""

    error_code: str = "BRIDGE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a log/response friendly dict"""
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ClientInputError(BridgeError):
    """Inbound webhook is malformed or incomplete"""

    error_code = "CLIENT_INPUT_ERROR"


class UpstreamError(BridgeError):
    """Pipefy returned a non-success response or field-level errors"""

    error_code = "UPSTREAM_ERROR"


class SignatureServiceError(BridgeError):
    """D4Sign returned a non-success or malformed response"""

    error_code = "SIGNATURE_SERVICE_ERROR"


class ConfigurationError(BridgeError):
    """Deployment configuration cannot serve this card (e.g. no vault route)"""

    error_code = "CONFIGURATION_ERROR"


class TransientNetworkError(BridgeError):
    """Retries exhausted on a network-level failure"""

    error_code = "TRANSIENT_NETWORK_ERROR"

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        reason: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.attempts = attempts
        self.reason = reason


class TransformError(BridgeError):
    """Card data cannot be turned into a document request"""

    error_code = "TRANSFORM_ERROR"
