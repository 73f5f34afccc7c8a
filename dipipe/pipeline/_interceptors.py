"""Interceptors for the common cases: deadlines, retries, caching and result mapping.

All of them follow the interceptor protocol: `await interceptor(context, call_next)`.
"""
import logging
from typing import Any, Callable, Dict, Hashable, Optional, Tuple, Type

import anyio

from dipipe._utils.concurrency import call_maybe_async
from dipipe.api.pipeline import CallNext
from dipipe.container import RequestScope
from dipipe.exceptions import CancelledError, TimeoutError
from dipipe.pipeline._context import PipelineContext

logger = logging.getLogger(__name__)


class TimeoutInterceptor:
    """Race the rest of the pipeline against a deadline.

    On expiry the downstream work is cancelled and `TimeoutError` is raised.
    """

    __slots__ = ("seconds",)

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds

    async def __call__(self, context: PipelineContext, call_next: CallNext) -> Any:
        with anyio.move_on_after(self.seconds):
            return await call_next()
        # only reachable if the deadline cancelled call_next()
        raise TimeoutError(
            f"{context.handler.display_name} did not complete within {self.seconds}s"
        )


class RetryInterceptor:
    """Re-invoke the rest of the pipeline when it fails with one of `retry_on`.

    Gives up after `attempts` tries and re-raises the last error.
    Cancellation is never retried.
    """

    __slots__ = ("attempts", "retry_on", "delay")

    def __init__(
        self,
        attempts: int = 3,
        *,
        retry_on: Tuple[Type[Exception], ...] = (Exception,),
        delay: float = 0,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.retry_on = retry_on
        self.delay = delay

    async def __call__(self, context: PipelineContext, call_next: CallNext) -> Any:
        attempt = 1
        while True:
            try:
                return await call_next()
            except CancelledError:
                raise
            except self.retry_on as exc:
                if attempt >= self.attempts:
                    raise
                logger.debug(
                    "%s failed with %r (attempt %d of %d), retrying",
                    context.handler.display_name,
                    exc,
                    attempt,
                    self.attempts,
                )
            attempt += 1
            if self.delay:
                await anyio.sleep(self.delay)
            context.cancellation.raise_if_cancelled()


def _snapshot(items: Any) -> str:
    return repr(sorted((repr(k), repr(v)) for k, v in items))


def default_cache_key(context: PipelineContext) -> Hashable:
    """Everything a handler can read: the request and the side channel.

    The request scope published in `extras` is left out, it differs on every request.
    """
    request = context.request
    extras = [
        (k, v) for k, v in context.extras.items() if k is not RequestScope
    ]
    return (
        context.handler.call,
        repr(request.body),
        _snapshot(request.headers.items()),
        _snapshot(request.params.items()),
        _snapshot(request.query.items()),
        _snapshot(extras),
    )


class CacheInterceptor:
    """Answer repeated requests from memory without running the rest of the pipeline.

    Only successful results are cached. `ttl` is in seconds; None caches forever.
    At most `maxsize` entries are kept, the oldest ones are evicted first.
    """

    __slots__ = ("key", "ttl", "maxsize", "_entries")

    _entries: Dict[Hashable, Tuple[Optional[float], Any]]

    def __init__(
        self,
        key: Callable[[PipelineContext], Hashable] = default_cache_key,
        *,
        ttl: Optional[float] = None,
        maxsize: int = 1024,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.key = key
        self.ttl = ttl
        self.maxsize = maxsize
        self._entries = {}

    async def __call__(self, context: PipelineContext, call_next: CallNext) -> Any:
        key = self.key(context)
        entry = self._entries.get(key)
        if entry is not None:
            expires_at, value = entry
            if expires_at is None or anyio.current_time() < expires_at:
                return value
            del self._entries[key]
        value = await call_next()
        self._store(key, value)
        return value

    def _store(self, key: Hashable, value: Any) -> None:
        now = anyio.current_time()
        if self.ttl is not None:
            expired = [
                k
                for k, (expires_at, _) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for k in expired:
                del self._entries[k]
        self._entries.pop(key, None)
        while len(self._entries) >= self.maxsize:
            del self._entries[next(iter(self._entries))]
        expires_at = None if self.ttl is None else now + self.ttl
        self._entries[key] = (expires_at, value)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class MapResultInterceptor:
    """Transform the result of the rest of the pipeline with `func` (sync or async)"""

    __slots__ = ("func",)

    def __init__(self, func: Callable[[Any], Any]) -> None:
        self.func = func

    async def __call__(self, context: PipelineContext, call_next: CallNext) -> Any:
        result = await call_next()
        return await call_maybe_async(self.func, result)
