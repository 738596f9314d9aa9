import aiohttp
import asyncio
import logging
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple
from pydantic import BaseModel, Field

from .auth import TokenRefreshCoordinator
from .cache import CacheConfig, CacheManager, ResourceClass, make_cache_key
from .connectivity import ConnectivityMonitor, HealthCheckObserver
from .exceptions import AuthError, InvalidConfigurationError, NetworkError, ServerError
from .metrics import MetricsCollector
from .middleware import AuthHeaderMiddleware, NetworkRetryMiddleware, TimingMiddleware, TokenRefreshMiddleware
from .pipeline import ApiResponse, Pipeline, RequestDescriptor
from .request_queue import RequestQueue
from .retry import RetryConfig, RetryPolicy
from .storage import MemoryStore, PersistentStore, TokenPair, TokenStore

logger = logging.getLogger(__name__)


class ClientConfig(BaseModel):
    # API connection
    base_url: str = Field(..., description="API base URL")
    timeout: float = Field(default=15.0, description="Per-request timeout in seconds")

    # Client identification
    client_id: str = Field(default="mobile-app", description="Sent as X-Client")
    client_version: str = Field(default="1.0.0", description="Sent as X-Client-Version")

    # Endpoints used by the client itself
    refresh_path: str = Field(default="/auth/refresh")
    health_path: str = Field(default="/health")

    # Send POST/PUT/DELETE through the offline queue instead of failing fast
    queue_offline_mutations: bool = Field(default=False)

    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @classmethod
    def from_env(cls, prefix: str = "MOBILE_CLIENT_", environ: Optional[Mapping[str, str]] = None, **overrides) -> "ClientConfig":
        """Build a config from PREFIX_* environment variables, then apply overrides"""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field in ("base_url", "timeout", "client_id", "client_version",
                      "refresh_path", "health_path", "queue_offline_mutations"):
            raw = environ.get(f"{prefix}{field.upper()}")
            if raw is not None:
                values[field] = raw

        retry: Dict[str, Any] = {}
        for field in ("max_retries", "base_delay", "multiplier", "max_delay"):
            raw = environ.get(f"{prefix}RETRY_{field.upper()}")
            if raw is not None:
                retry[field] = raw
        if retry:
            values["retry"] = RetryConfig(**retry)

        values.update(overrides)
        return cls(**values)


class GetOptions(BaseModel):
    params: Dict[str, Any] = Field(default_factory=dict, description="Query parameters")
    cache: bool = Field(default=False, description="Serve from and store into the response cache")
    cache_ttl: Optional[float] = Field(default=None, description="TTL in seconds; defaults by resource_class")
    resource_class: ResourceClass = Field(default=ResourceClass.CATALOG)
    force_refresh: bool = Field(default=False, description="Skip the cache read but still store the result")


def _validate_config(config: ClientConfig):
    if not config.base_url.startswith(("http://", "https://")):
        raise InvalidConfigurationError("base_url", config.base_url, "base_url must be an http(s) URL")
    if config.timeout <= 0:
        raise InvalidConfigurationError("timeout", str(config.timeout), "timeout must be positive")
    if config.retry.max_retries < 0:
        raise InvalidConfigurationError("retry.max_retries", str(config.retry.max_retries))
    if config.retry.base_delay < 0:
        raise InvalidConfigurationError("retry.base_delay", str(config.retry.base_delay))


def _query_params(params: Mapping[str, Any]) -> List[Tuple[str, str]]:
    query = []
    for key, value in params.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            query.append((key, str(item)))
    return query


class ApiClient:
    """
    Resilient HTTP client for the mobile app.

    Requests flow through a fixed middleware pipeline, outermost first:

        TimingMiddleware -> TokenRefreshMiddleware -> NetworkRetryMiddleware
            -> AuthHeaderMiddleware -> transport

    so a 401 triggers one shared token refresh and a single re-send, and a
    request that gets no response is retried with backoff. Cached GETs are
    answered before the pipeline is entered.
    """

    def __init__(
        self,
        config: ClientConfig,
        store: Optional[PersistentStore] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional[MetricsCollector] = None,
    ):
        _validate_config(config)
        self.config = config

        # Initialize components
        self.store = store if store is not None else MemoryStore()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.tokens = TokenStore(self.store)
        self.cache = CacheManager(self.store, config.cache, clock=clock)
        self.metrics = metrics or MetricsCollector(config.client_id)
        self.retry_policy = RetryPolicy(config.retry, sleep=sleep)
        self.request_queue = RequestQueue()
        self.refresh_coordinator = TokenRefreshCoordinator(
            self.tokens,
            self._request_token_refresh,
            on_outcome=self.metrics.record_token_refresh,
        )
        self.pipeline = Pipeline(self._send, [
            TimingMiddleware(self.metrics),
            TokenRefreshMiddleware(self.refresh_coordinator),
            NetworkRetryMiddleware(self.retry_policy, self.metrics),
            AuthHeaderMiddleware(self.tokens),
        ])

        self._http_session: Optional[aiohttp.ClientSession] = None
        self._background_tasks: Set[asyncio.Task] = set()
        self._unsubscribe_reconnect = self.connectivity.on_reconnect(self._schedule_drain)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the client"""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )

    async def close(self):
        """Cleanup resources"""
        self._unsubscribe_reconnect()
        self._unsubscribe_reconnect = lambda: None

        # Cancel any drain in progress, then reject whatever is still queued
        tasks = [task for task in self._background_tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.request_queue.clear()

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    # Public request surface
    async def get(self, path: str, options: Optional[GetOptions] = None, **kwargs) -> Any:
        """
        GET path. Keyword arguments are GetOptions fields when no options
        object is given, e.g. ``client.get("/products", cache=True)``.
        """
        if options is None:
            options = GetOptions(**kwargs)
        cache_key = make_cache_key("GET", path, options.params)

        if not self.connectivity.is_online:
            # Offline, any cached copy beats an error. The TTL lookup is
            # skipped because it would evict the expired copy we want.
            cached = await self.cache.get_stale(cache_key)
            if cached is not None:
                logger.info(f"Offline: serving cached GET {path}")
                self.metrics.record_cache_hit()
                return cached
            self.metrics.record_cache_miss()
            raise NetworkError()

        if options.cache and not options.force_refresh:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                self.metrics.record_cache_hit()
                return cached
            self.metrics.record_cache_miss()

        response = await self._dispatch(RequestDescriptor(method="GET", path=path, params=options.params))

        if options.cache:
            ttl = options.cache_ttl
            if ttl is None:
                ttl = self.config.cache.ttl_for(options.resource_class)
            await self.cache.set(cache_key, response.data, ttl)

        return response.data

    async def post(self, path: str, body: Optional[Any] = None) -> Any:
        return await self._mutate("POST", path, body)

    async def put(self, path: str, body: Optional[Any] = None) -> Any:
        return await self._mutate("PUT", path, body)

    async def delete(self, path: str) -> Any:
        return await self._mutate("DELETE", path)

    async def _mutate(self, method: str, path: str, body: Optional[Any] = None) -> Any:
        request = RequestDescriptor(method=method, path=path, body=body)

        if self.config.queue_offline_mutations and (not self.connectivity.is_online or len(self.request_queue)):
            # Join the queue behind earlier mutations so order is preserved
            future = self.request_queue.enqueue(request)
            if self.connectivity.is_online:
                self._schedule_drain()
            response = await future
            return response.data

        if not self.connectivity.is_online:
            raise NetworkError()

        response = await self._dispatch(request)
        return response.data

    async def _dispatch(self, request: RequestDescriptor) -> ApiResponse:
        return await self.pipeline(request)

    def _build_url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Client": self.config.client_id,
            "X-Client-Version": self.config.client_version,
        }

    async def _send(self, request: RequestDescriptor) -> ApiResponse:
        """
        Execute a single HTTP request
        """
        if self._http_session is None:
            await self.start()

        try:
            async with self._http_session.request(
                method=request.method.upper(),
                url=self._build_url(request.path),
                json=request.body,
                params=_query_params(request.params) or None,
                headers={**self._default_headers(), **request.headers},
            ) as response:
                if 200 <= response.status < 300:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = await response.text()
                    return ApiResponse(status=response.status, data=data)

                error_text = await response.text()
                raise ServerError(
                    status_code=response.status,
                    body=error_text,
                    method=request.method,
                    path=request.path,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(cause=e) from e

    async def _request_token_refresh(self, refresh_token: str) -> TokenPair:
        """Exchange the refresh token for a new pair, bypassing the pipeline"""
        if self._http_session is None:
            await self.start()

        async with self._http_session.request(
            method="POST",
            url=self._build_url(self.config.refresh_path),
            json={"refreshToken": refresh_token},
            headers=self._default_headers(),
        ) as response:
            if not 200 <= response.status < 300:
                error_text = await response.text()
                raise AuthError(cause=ServerError(response.status, error_text, "POST", self.config.refresh_path))
            payload = await response.json(content_type=None)

        return TokenPair(access_token=payload["token"], refresh_token=payload["refreshToken"])

    # Offline queue
    def _schedule_drain(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Reconnected outside an event loop; call process_queue() to send queued requests")
            return

        task = loop.create_task(self.process_queue())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def process_queue(self) -> int:
        """Send every queued request in order. Safe to call while a drain runs."""
        return await self.request_queue.drain(self._dispatch)

    def clear_queue(self) -> int:
        return self.request_queue.clear()

    @property
    def queue_length(self) -> int:
        return len(self.request_queue)

    # Connectivity
    def set_connectivity(self, reachable: Optional[bool]) -> bool:
        """Entry point for platform reachability callbacks"""
        return self.connectivity.update(reachable)

    @property
    def is_connected(self) -> bool:
        return self.connectivity.is_online

    def create_health_observer(self, interval: float = 30.0) -> HealthCheckObserver:
        """Observer that polls the health endpoint when no platform source exists"""
        return HealthCheckObserver(
            self.connectivity,
            self._build_url(self.config.health_path),
            interval=interval,
            timeout=min(self.config.timeout, 5.0),
        )

    # Management methods
    async def invalidate_cache(self, pattern: str) -> int:
        return await self.cache.invalidate(pattern)

    async def clear_cache(self, include_persistent: bool = False):
        await self.cache.clear(include_persistent=include_persistent)

    def get_metrics(self) -> Dict[str, Any]:
        """Get client metrics"""
        metrics = self.metrics.get_metrics()
        metrics["cache"] = self.cache.get_stats()
        metrics["queue_length"] = len(self.request_queue)
        return metrics
