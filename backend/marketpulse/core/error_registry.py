"""
Error code registry system
Registration and lookup logic for error codes
"""

from typing import Any, Dict, List, Optional

from marketpulse.core.error_definitions import (
    ErrorCategory,
    ErrorCodeInfo,
    ErrorSeverity,
    MarketDataErrorCodes,
)


class ErrorCodeRegistry:
    """Central registry for error codes and their metadata"""

    def __init__(self):
        self._registry: Dict[str, ErrorCodeInfo] = {}
        self._initialize_registry()

    def _initialize_registry(self):
        """Initialize the registry with every market data error code"""

        self._register_error(
            MarketDataErrorCodes.PROV_001.value,
            "ProviderTimeout",
            "The upstream provider did not answer within the request timeout",
            ErrorCategory.TRANSIENT,
            ErrorSeverity.LOW,
            "Data provider is slow to respond.",
            True,
            ["Retry with backoff", "Check provider status page"],
        )
        self._register_error(
            MarketDataErrorCodes.PROV_002.value,
            "ProviderHttpError",
            "The upstream provider answered with a non-success HTTP status",
            ErrorCategory.TRANSIENT,
            ErrorSeverity.MEDIUM,
            "Data provider returned an error.",
            True,
            ["Retry 5xx responses", "Inspect request parameters for 4xx responses"],
        )
        self._register_error(
            MarketDataErrorCodes.PROV_003.value,
            "RateLimited",
            "The request exceeded the provider rate limit",
            ErrorCategory.RATE_LIMIT,
            ErrorSeverity.LOW,
            "Data provider rate limit reached.",
            False,
            ["Lower request frequency", "Upgrade provider plan"],
        )
        self._register_error(
            MarketDataErrorCodes.PROV_004.value,
            "MalformedPayload",
            "The provider payload did not have the expected root shape",
            ErrorCategory.MALFORMED,
            ErrorSeverity.MEDIUM,
            "Data provider returned unexpected data.",
            True,
            ["Check provider API version"],
        )
        self._register_error(
            MarketDataErrorCodes.PROV_005.value,
            "Unauthorized",
            "The provider rejected the configured credential",
            ErrorCategory.AUTHENTICATION,
            ErrorSeverity.HIGH,
            "Data provider rejected the API key.",
            False,
            ["Verify the API key", "Check the plan includes this endpoint"],
        )
        self._register_error(
            MarketDataErrorCodes.PROV_006.value,
            "ProviderUnavailable",
            "The provider kept failing after all retries",
            ErrorCategory.TRANSIENT,
            ErrorSeverity.MEDIUM,
            "Data provider is currently unavailable.",
            True,
            ["Wait for provider recovery"],
        )
        self._register_error(
            MarketDataErrorCodes.CFG_001.value,
            "AuthMissing",
            "No credential is configured for the provider; adapter disabled",
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.MEDIUM,
            "Provider disabled: API key not configured.",
            False,
            ["Set the provider API key in the environment"],
        )
        self._register_error(
            MarketDataErrorCodes.CFG_002.value,
            "InvalidConfiguration",
            "A configuration value is out of range",
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.HIGH,
            "Invalid configuration.",
            False,
            ["Fix the configuration value"],
        )
        self._register_error(
            MarketDataErrorCodes.SYM_001.value,
            "SymbolMasterUnavailable",
            "The symbol master could not be loaded and no previous snapshot exists",
            ErrorCategory.FATAL,
            ErrorSeverity.CRITICAL,
            "Symbol catalog unavailable.",
            False,
            ["Check provider credentials", "Retry startup"],
        )
        self._register_error(
            MarketDataErrorCodes.STREAM_001.value,
            "StreamAuthenticationFailed",
            "The realtime stream rejected the credential",
            ErrorCategory.AUTHENTICATION,
            ErrorSeverity.HIGH,
            "Live stream authentication failed.",
            False,
            ["Verify the realtime provider API key"],
        )
        self._register_error(
            MarketDataErrorCodes.STREAM_002.value,
            "StreamOffline",
            "Reconnect attempts were exhausted",
            ErrorCategory.TRANSIENT,
            ErrorSeverity.HIGH,
            "Live stream offline; using polling fallback.",
            False,
            ["Check network connectivity"],
        )
        self._register_error(
            MarketDataErrorCodes.SYS_001.value,
            "InvariantViolation",
            "An internal invariant was violated",
            ErrorCategory.FATAL,
            ErrorSeverity.CRITICAL,
            "Internal error.",
            False,
        )

    def _register_error(
        self,
        code: str,
        name: str,
        description: str,
        category: ErrorCategory,
        severity: ErrorSeverity,
        user_message: str,
        is_retryable: bool = False,
        suggested_actions: Optional[List[str]] = None,
    ):
        """Register a single error code"""
        self._registry[code] = ErrorCodeInfo(
            code=code,
            name=name,
            description=description,
            category=category,
            severity=severity,
            user_message=user_message,
            is_retryable=is_retryable,
            suggested_actions=suggested_actions or [],
        )

    def get_error_info(self, code: str) -> Optional[ErrorCodeInfo]:
        """Get error information by code"""
        return self._registry.get(code)

    def get_errors_by_category(self, category: ErrorCategory) -> List[ErrorCodeInfo]:
        """Get all errors in a category"""
        return [info for info in self._registry.values() if info.category == category]

    def validate_error_code(self, code: str) -> bool:
        """Check whether an error code is registered"""
        return code in self._registry

    def get_registry_stats(self) -> Dict[str, Any]:
        """Get registry statistics"""
        by_category: Dict[str, int] = {}
        for info in self._registry.values():
            by_category[info.category.value] = by_category.get(info.category.value, 0) + 1
        return {"total_codes": len(self._registry), "by_category": by_category}


_registry = ErrorCodeRegistry()


def get_error_info(code: str) -> Optional[ErrorCodeInfo]:
    """Get error information from the global registry"""
    return _registry.get_error_info(code)


def get_registry() -> ErrorCodeRegistry:
    return _registry
