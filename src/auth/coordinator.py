"""Single-flight refresh coordination.

Many concurrent callers may discover an expired access token at the same
moment. The coordinator guarantees that only one of them (the leader)
performs the refresh; everyone who arrives while it is in flight waits on
a future and receives exactly the leader's outcome.

State is guarded by a ``threading.Lock`` whose critical sections never
await, so releasing waiters from a ``finally`` block cannot be interrupted
by cancellation.
"""

import asyncio
import threading
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from shared.logging import get_logger
from auth.errors import AuthError, RefreshFailed

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

RefreshFn = Callable[[], Awaitable[R]]


class RefreshCoordinator(Generic[R]):
    """
    Ensures at most one refresh is in flight; all waiters share its result.

    ``R`` is whatever the refresh produces: a ``TokenPair`` server side, a
    session response in the admin client.
    """

    def __init__(self, refresh_fn: Optional[RefreshFn[R]] = None, name: str = "default") -> None:
        self._refresh_fn = refresh_fn
        self.name = name
        self._lock = threading.Lock()
        self._refreshing = False
        self._waiters: list[asyncio.Future] = []

    @property
    def refreshing(self) -> bool:
        with self._lock:
            return self._refreshing

    @property
    def waiter_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    async def refresh(self, refresh_fn: Optional[RefreshFn[R]] = None) -> R:
        """
        Obtain fresh credentials, joining an in-flight refresh if there is one.

        Args:
            refresh_fn: The underlying refresh call, used only if this caller
                becomes the leader. Defaults to the one given at construction.

        Raises:
            RefreshFailed: If the refresh (led by this or another caller) fails
        """
        fn = refresh_fn or self._refresh_fn
        if fn is None:
            raise ValueError("no refresh function configured")

        loop = asyncio.get_running_loop()
        with self._lock:
            if self._refreshing:
                waiter: Optional[asyncio.Future] = loop.create_future()
                self._waiters.append(waiter)
            else:
                self._refreshing = True
                waiter = None

        if waiter is not None:
            logger.debug("Waiting on in-flight refresh", coordinator=self.name)
            return await waiter

        return await self._lead(fn)

    async def _lead(self, fn: RefreshFn[R]) -> R:
        outcome: Optional[R] = None
        succeeded = False
        error = RefreshFailed("refresh did not complete")
        logger.debug("Refreshing credentials", coordinator=self.name)
        try:
            outcome = await fn()
            succeeded = True
            return outcome
        except RefreshFailed as e:
            error = e
            raise
        except asyncio.CancelledError:
            error = RefreshFailed("refresh cancelled")
            raise
        except Exception as e:
            error = RefreshFailed(str(e) or type(e).__name__)
            raise error from e
        finally:
            released = self._release(succeeded, outcome, error)
            if succeeded:
                logger.info("Credentials refreshed", coordinator=self.name, waiters=released)
            else:
                logger.warning("Refresh failed", coordinator=self.name, waiters=released, error=str(error))

    def _release(self, succeeded: bool, outcome: Optional[R], error: RefreshFailed) -> int:
        """Wake every waiter with the leader's result. A ``None`` result is still a success."""
        with self._lock:
            waiters, self._waiters = self._waiters, []
            self._refreshing = False

        for waiter in waiters:
            if waiter.done():
                continue
            if succeeded:
                waiter.set_result(outcome)
            else:
                waiter.set_exception(error)
        return len(waiters)

    async def call_with_refresh(
        self,
        call: Callable[[], Awaitable[T]],
        is_expired: Callable[[T], bool],
        max_retries: int = 1,
        refresh_fn: Optional[RefreshFn[R]] = None,
    ) -> T:
        """
        Run ``call``; while its outcome says the credential expired, refresh
        and retry.

        Each retry re-enters the coordinator as a fresh caller, so an outcome
        that is expired again triggers a new refresh rather than reusing the
        one that just completed.

        Raises:
            RefreshFailed: If a refresh fails
            AuthError: If the outcome is still expired after ``max_retries``
        """
        result = await call()
        retries = 0
        while is_expired(result):
            if retries >= max_retries:
                logger.warning("Credential still expired after refresh", retries=retries)
                raise AuthError(f"credential expired after {retries} refresh attempt(s)")
            retries += 1
            await self.refresh(refresh_fn)
            result = await call()
        return result
