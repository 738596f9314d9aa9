import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from .exceptions import AuthError
from .storage import TokenPair, TokenStore

logger = logging.getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "IDLE"
    REFRESHING = "REFRESHING"


class TokenRefreshCoordinator:
    """
    Single-flight credential refresh.

    Every caller that asks for a refresh while one is running awaits that same
    task instead of starting another. Once it settles the handle is released
    and the next call starts a fresh refresh.
    """

    def __init__(
        self,
        tokens: TokenStore,
        refresher: Callable[[str], Awaitable[TokenPair]],
        on_outcome: Optional[Callable[[bool], None]] = None,
    ):
        self.tokens = tokens
        self.refresher = refresher
        self.on_outcome = on_outcome
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None

    @property
    def state(self) -> RefreshState:
        return RefreshState.REFRESHING if self._inflight is not None else RefreshState.IDLE

    async def refresh(self) -> str:
        """Return a new access token, or raise AuthError after clearing credentials."""
        async with self._lock:
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._run())
            inflight = self._inflight

        # Shield so one waiter being cancelled does not cancel the refresh for the rest
        return await asyncio.shield(inflight)

    async def _run(self) -> str:
        try:
            refresh_token = await self.tokens.get_refresh_token()
            if not refresh_token:
                raise AuthError(cause=ValueError("No refresh token"))

            try:
                pair = await self.refresher(refresh_token)
            except AuthError:
                raise
            except Exception as e:
                raise AuthError(cause=e) from e

            await self.tokens.set_tokens(pair)
            logger.info("Access token refreshed")
            self._report(True)
            return pair.access_token
        except AuthError as e:
            logger.warning(f"Token refresh failed: {e.cause or e}")
            await self.tokens.clear_session()
            self._report(False)
            raise
        finally:
            self._inflight = None

    def _report(self, succeeded: bool):
        if self.on_outcome is not None:
            self.on_outcome(succeeded)
