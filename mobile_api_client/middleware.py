import logging
import time
from typing import Callable

from .auth import TokenRefreshCoordinator
from .exceptions import NetworkError, ServerError
from .metrics import MetricsCollector
from .pipeline import ApiResponse, Handler, RequestDescriptor
from .retry import RetryPolicy
from .storage import TokenStore

logger = logging.getLogger(__name__)


class TimingMiddleware:
    """Stamps the start time and records latency and outcome."""
    def __init__(self, metrics: MetricsCollector, clock: Callable[[], float] = time.monotonic):
        self.metrics = metrics
        self.clock = clock

    async def __call__(self, request: RequestDescriptor, call_next: Handler) -> ApiResponse:
        request.started_at = self.clock()
        try:
            response = await call_next(request)
        except Exception as e:
            self.metrics.record_failure(request.method, type(e).__name__)
            raise

        latency = self.clock() - request.started_at
        self.metrics.record_success(request.method, latency)
        logger.debug(f"[API] {request.method} {request.path} - {latency * 1000:.0f}ms")
        return response


class TokenRefreshMiddleware:
    """On a 401, refreshes the access token and re-sends the request once."""
    def __init__(self, coordinator: TokenRefreshCoordinator):
        self.coordinator = coordinator

    async def __call__(self, request: RequestDescriptor, call_next: Handler) -> ApiResponse:
        try:
            return await call_next(request)
        except ServerError as e:
            if e.status_code != 401 or request.auth_retried:
                raise

        request.auth_retried = True
        token = await self.coordinator.refresh()
        request.headers["Authorization"] = f"Bearer {token}"
        return await call_next(request)


class NetworkRetryMiddleware:
    """Re-sends a request that got no response, backing off between attempts."""
    def __init__(self, policy: RetryPolicy, metrics: MetricsCollector):
        self.policy = policy
        self.metrics = metrics

    async def __call__(self, request: RequestDescriptor, call_next: Handler) -> ApiResponse:
        try:
            return await call_next(request)
        except NetworkError as e:
            if request.network_retried:
                raise
            first_error = e

        request.network_retried = True
        return await self.policy.execute(
            lambda: call_next(request),
            f"{request.method} {request.path}",
            on_retry=lambda attempt, delay: self.metrics.record_retry(request.method),
            initial_error=first_error,
        )


class AuthHeaderMiddleware:
    """Attaches the stored access token as a bearer credential."""
    def __init__(self, tokens: TokenStore):
        self.tokens = tokens

    async def __call__(self, request: RequestDescriptor, call_next: Handler) -> ApiResponse:
        token = await self.tokens.get_access_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        return await call_next(request)
