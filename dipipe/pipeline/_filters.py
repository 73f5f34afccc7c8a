from typing import Any, Awaitable, Callable, Tuple, Type, Union

from dipipe.api.pipeline import PipelineObserver
from dipipe.exceptions import PipelineError, UnhandledError
from dipipe.pipeline._context import PipelineContext, Response

FilterResult = Union[Response, Awaitable[Response]]


class ExceptionFilter:
    """Turns errors of the kinds listed in `catches` into a response.

    Subclass and implement `__call__`, or use `catch()` on a function.
    """

    catches: Tuple[Type[BaseException], ...] = (Exception,)

    def matches(self, error: BaseException) -> bool:
        return isinstance(error, self.catches)

    def __call__(self, error: Any, context: PipelineContext) -> FilterResult:
        raise NotImplementedError


class FunctionExceptionFilter(ExceptionFilter):
    def __init__(
        self,
        catches: Tuple[Type[BaseException], ...],
        func: Callable[[Any, PipelineContext], FilterResult],
    ) -> None:
        self.catches = catches
        self.func = func

    def __call__(self, error: Any, context: PipelineContext) -> FilterResult:
        return self.func(error, context)

    def __repr__(self) -> str:
        kinds = ", ".join(kind.__name__ for kind in self.catches)
        return f"{self.__class__.__name__}({kinds} -> {getattr(self.func, '__qualname__', self.func)!r})"


def catch(
    *kinds: Type[BaseException],
) -> Callable[[Callable[[Any, PipelineContext], FilterResult]], FunctionExceptionFilter]:
    """Build an exception filter from a function.

    >>> @catch(KeyError)
    ... def not_found(error, context):
    ...     return Response(404, {"error": "not_found"})
    """
    if not kinds:
        kinds = (Exception,)

    def decorator(
        func: Callable[[Any, PipelineContext], FilterResult]
    ) -> FunctionExceptionFilter:
        return FunctionExceptionFilter(tuple(kinds), func)

    return decorator


def error_response(error: PipelineError) -> Response:
    return Response(
        status_code=error.status_code,
        body={"error": error.kind, "message": error.message},
    )


class DefaultExceptionFilter(ExceptionFilter):
    """Answers every error no other filter matched.

    Errors of the pipeline taxonomy keep their own status code and kind,
    anything else becomes a generic `UnhandledError` response.
    Either way the error is reported to the observer.
    """

    catches = (BaseException,)

    def __init__(self, observer: PipelineObserver) -> None:
        self.observer = observer

    def __call__(self, error: BaseException, context: PipelineContext) -> Response:
        self.observer.unhandled_error(context, error)
        if isinstance(error, PipelineError):
            return error_response(error)
        return error_response(UnhandledError(error))
