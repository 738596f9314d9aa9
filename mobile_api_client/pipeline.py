"""
Request pipeline.

A middleware is an async callable ``(request, call_next) -> ApiResponse``.
The pipeline wraps its terminal handler with the middlewares in list order,
so the first middleware is the outermost and sees every request first.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field


class RequestDescriptor(BaseModel):
    method: str
    path: str
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    # Per-request bookkeeping for the retry stages
    auth_retried: bool = False
    network_retried: bool = False
    started_at: Optional[float] = None


class ApiResponse(BaseModel):
    status: int
    data: Any = None


Handler = Callable[[RequestDescriptor], Awaitable[ApiResponse]]
Middleware = Callable[[RequestDescriptor, Handler], Awaitable[ApiResponse]]


def _bind(middleware: Middleware, call_next: Handler) -> Handler:
    async def handler(request: RequestDescriptor) -> ApiResponse:
        return await middleware(request, call_next)
    return handler


class Pipeline:
    def __init__(self, handler: Handler, middlewares: Sequence[Middleware] = ()):
        self.handler = handler
        self.middlewares: List[Middleware] = list(middlewares)
        self._chain = self._build()

    def _build(self) -> Handler:
        chain = self.handler
        for middleware in reversed(self.middlewares):
            chain = _bind(middleware, chain)
        return chain

    def use(self, middleware: Middleware):
        """Append a middleware just outside the terminal handler."""
        self.middlewares.append(middleware)
        self._chain = self._build()

    async def __call__(self, request: RequestDescriptor) -> ApiResponse:
        return await self._chain(request)
