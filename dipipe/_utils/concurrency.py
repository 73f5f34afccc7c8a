import inspect
from typing import Any, Callable


async def call_maybe_async(call: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and await the result if needed"""
    maybe_aw = call(*args)
    if inspect.isawaitable(maybe_aw):
        return await maybe_aw
    return maybe_aw
