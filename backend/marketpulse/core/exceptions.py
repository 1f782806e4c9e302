"""
Custom exceptions for the market data plane
"""

from typing import Any, Dict, Optional

from marketpulse.core.error_definitions import MarketDataErrorCodes
from marketpulse.core.error_registry import get_error_info


class MarketPulseException(Exception):
    """Base exception with error code registry integration"""

    default_code: Optional[str] = None

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None,
    ):
        self.detail = detail
        self.error_code = error_code or self.default_code
        self.additional_context = additional_context or {}

        error_info = get_error_info(self.error_code) if self.error_code else None
        if error_info:
            self.error_name = error_info.name
            self.error_category = error_info.category.value
            self.error_severity = error_info.severity.value
            self.is_retryable = error_info.is_retryable
            self.suggested_actions = error_info.suggested_actions
            self.user_message = error_info.user_message
        else:
            self.error_name = "GenericError"
            self.error_category = "unknown"
            self.error_severity = "medium"
            self.is_retryable = False
            self.suggested_actions = []
            self.user_message = detail

        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for status reporting"""
        error_dict = {
            "code": self.error_code,
            "name": self.error_name,
            "message": self.user_message,
            "detail": self.detail,
            "category": self.error_category,
            "severity": self.error_severity,
            "retryable": self.is_retryable,
        }

        if self.suggested_actions:
            error_dict["suggested_actions"] = self.suggested_actions

        if self.additional_context:
            error_dict["context"] = self.additional_context

        return error_dict


class ProviderError(MarketPulseException):
    """Base class for upstream provider failures"""

    def __init__(
        self,
        provider: str,
        detail: str,
        error_code: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        context = {"provider": provider}
        context.update(additional_context or {})
        super().__init__(detail, error_code, context)

    @property
    def kind(self) -> str:
        return self.error_name


class ProviderTimeoutError(ProviderError):
    """Request exceeded its timeout"""

    default_code = MarketDataErrorCodes.PROV_001.value


class ProviderHttpError(ProviderError):
    """Upstream answered with a non-success status"""

    default_code = MarketDataErrorCodes.PROV_002.value

    def __init__(self, provider: str, status: int, detail: Optional[str] = None):
        self.status = status
        super().__init__(
            provider,
            detail or f"HTTP {status} from {provider}",
            additional_context={"status": status},
        )
        # Only server-side failures are worth retrying
        self.is_retryable = status >= 500


class ProviderConnectionError(ProviderError):
    """Transport-level failure before any HTTP status was received"""

    default_code = MarketDataErrorCodes.PROV_002.value


class RateLimitedError(ProviderError):
    """Request rejected by the local token bucket or by the upstream"""

    default_code = MarketDataErrorCodes.PROV_003.value


class MalformedPayloadError(ProviderError):
    """Payload root shape is not what the adapter expects"""

    default_code = MarketDataErrorCodes.PROV_004.value


class UnauthorizedError(ProviderError):
    """Upstream rejected the credential"""

    default_code = MarketDataErrorCodes.PROV_005.value


class ProviderUnavailableError(ProviderError):
    """Transient failures persisted through every retry"""

    default_code = MarketDataErrorCodes.PROV_006.value

    def __init__(self, provider: str, detail: str, last_error: Optional[Exception] = None):
        self.last_error = last_error
        context = {}
        if last_error is not None:
            context["last_error"] = str(last_error)
        super().__init__(provider, detail, additional_context=context)


class AuthMissingError(ProviderError):
    """No credential configured; the adapter stays disabled"""

    default_code = MarketDataErrorCodes.CFG_001.value

    def __init__(self, provider: str):
        super().__init__(provider, f"{provider} API key not configured")


class ConfigurationError(MarketPulseException):
    """Configuration related errors"""

    default_code = MarketDataErrorCodes.CFG_002.value


class SymbolMasterUnavailableError(MarketPulseException):
    """Symbol master load failed with no previous snapshot to fall back on"""

    default_code = MarketDataErrorCodes.SYM_001.value


class StreamAuthenticationError(MarketPulseException):
    """Realtime stream rejected the credential"""

    default_code = MarketDataErrorCodes.STREAM_001.value


class InvariantViolationError(MarketPulseException):
    """Unrecoverable internal invariant violation"""

    default_code = MarketDataErrorCodes.SYS_001.value


def is_transient(error: Exception) -> bool:
    """Transient failures are retried inside the adapter"""
    if isinstance(error, (RateLimitedError, UnauthorizedError, AuthMissingError)):
        return False
    if isinstance(error, (ProviderTimeoutError, ProviderConnectionError, MalformedPayloadError)):
        return True
    if isinstance(error, ProviderHttpError):
        return error.status >= 500
    return False
