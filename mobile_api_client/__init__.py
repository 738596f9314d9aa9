"""
Mobile API Client Library

The resilient networking client of the mobile storefront app.
Provides response caching, single-flight token refresh, retry with backoff,
offline request queuing, and metrics.
"""

from .client import ApiClient, ClientConfig, GetOptions
from .cache import CacheManager, CacheConfig, CacheEntry, ResourceClass, make_cache_key
from .retry import RetryPolicy, RetryConfig, BackoffStrategy
from .auth import TokenRefreshCoordinator, RefreshState
from .request_queue import RequestQueue, QueuedRequest
from .connectivity import ConnectivityMonitor, ConnectivityState, HealthCheckObserver
from .pipeline import Pipeline, RequestDescriptor, ApiResponse
from .middleware import TimingMiddleware, TokenRefreshMiddleware, NetworkRetryMiddleware, AuthHeaderMiddleware
from .storage import PersistentStore, MemoryStore, RedisStore, TokenStore, TokenPair, StorageKeys
from .metrics import MetricsCollector
from .exceptions import (
    ApiClientError,
    NetworkError,
    RequestDiscardedError,
    AuthError,
    ServerError,
    CacheError,
    StorageError,
    InvalidConfigurationError,
)

__version__ = "0.1.0"

__all__ = [
    # Main client
    "ApiClient",
    "ClientConfig",
    "GetOptions",

    # Components
    "CacheManager",
    "CacheConfig",
    "CacheEntry",
    "ResourceClass",
    "make_cache_key",
    "RetryPolicy",
    "RetryConfig",
    "BackoffStrategy",
    "TokenRefreshCoordinator",
    "RefreshState",
    "RequestQueue",
    "QueuedRequest",
    "ConnectivityMonitor",
    "ConnectivityState",
    "HealthCheckObserver",
    "MetricsCollector",

    # Pipeline
    "Pipeline",
    "RequestDescriptor",
    "ApiResponse",
    "TimingMiddleware",
    "TokenRefreshMiddleware",
    "NetworkRetryMiddleware",
    "AuthHeaderMiddleware",

    # Storage
    "PersistentStore",
    "MemoryStore",
    "RedisStore",
    "TokenStore",
    "TokenPair",
    "StorageKeys",

    # Exceptions
    "ApiClientError",
    "NetworkError",
    "RequestDiscardedError",
    "AuthError",
    "ServerError",
    "CacheError",
    "StorageError",
    "InvalidConfigurationError",
]
