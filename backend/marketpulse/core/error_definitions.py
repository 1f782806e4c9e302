"""
Error definitions and enums
Pure data structures for error classification
"""

from dataclasses import dataclass
from enum import Enum, unique
from typing import List, Optional


class ErrorSeverity(Enum):
    """Error severity levels"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification"""

    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    MALFORMED = "malformed"
    CONFIGURATION = "configuration"
    FATAL = "fatal"
    UNKNOWN = "unknown"


@dataclass
class ErrorCodeInfo:
    """Information about a specific error code"""

    code: str
    name: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: str
    is_retryable: bool = False
    suggested_actions: Optional[List[str]] = None


@unique
class MarketDataErrorCodes(Enum):
    """Market data plane error codes"""

    # Provider errors (PROV_001-099)
    PROV_001 = "PROV_001"  # Request timed out
    PROV_002 = "PROV_002"  # Upstream HTTP error
    PROV_003 = "PROV_003"  # Rate limited
    PROV_004 = "PROV_004"  # Malformed payload
    PROV_005 = "PROV_005"  # Unauthorized
    PROV_006 = "PROV_006"  # Provider unavailable after retries

    # Configuration errors (CFG_001-099)
    CFG_001 = "CFG_001"  # Credential missing
    CFG_002 = "CFG_002"  # Invalid configuration value

    # Symbol master (SYM_001-099)
    SYM_001 = "SYM_001"  # No symbol master snapshot ever loaded

    # Stream errors (STREAM_001-099)
    STREAM_001 = "STREAM_001"  # Stream authentication rejected
    STREAM_002 = "STREAM_002"  # Reconnect attempts exhausted

    # Internal (SYS_001-099)
    SYS_001 = "SYS_001"  # Internal invariant violated
