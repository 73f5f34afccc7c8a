from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, Dict, MutableMapping, Optional, Type, Union


class RequestScope:
    """Per-request instance cache plus the exit stack that tears those instances down.

    While entered, the scope is stored in the side channel it was given
    (the pipeline context's `extras`) under the `RequestScope` key.
    """

    __slots__ = ("cache", "stack", "extras", "_entered")

    cache: Dict[Any, Any]

    def __init__(self, extras: Optional[MutableMapping[Any, Any]] = None) -> None:
        self.cache = {}
        self.stack = AsyncExitStack()
        self.extras = extras
        self._entered = False

    @classmethod
    def current(cls, extras: MutableMapping[Any, Any]) -> Optional["RequestScope"]:
        scope = extras.get(cls)
        return scope if isinstance(scope, RequestScope) else None

    async def __aenter__(self) -> "RequestScope":
        if self._entered:
            raise RuntimeError("A RequestScope can only be entered once")
        self._entered = True
        await self.stack.__aenter__()
        if self.extras is not None:
            self.extras[RequestScope] = self
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> Union[None, bool]:
        try:
            return await self.stack.__aexit__(exc_type, exc_value, traceback)
        finally:
            self.cache.clear()
            if self.extras is not None:
                self.extras.pop(RequestScope, None)
