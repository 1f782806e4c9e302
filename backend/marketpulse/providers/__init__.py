"""
Upstream provider adapters and the pool that owns them
"""

from marketpulse.providers.base import AdapterPolicy, ProviderAdapter, ProviderResult
from marketpulse.providers.pool import ProviderClientPool, build_adapters

__all__ = [
    "AdapterPolicy",
    "ProviderAdapter",
    "ProviderClientPool",
    "ProviderResult",
    "build_adapters",
]
