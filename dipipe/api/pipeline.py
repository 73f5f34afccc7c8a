from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Union

from dipipe.api.handlers import ArgumentMetadata

if TYPE_CHECKING:
    from dipipe.pipeline._context import PipelineContext, Response
    from dipipe.pipeline._stages import Stage


CallNext = Callable[[], Awaitable[Any]]


class Middleware(Protocol):
    def __call__(self, context: PipelineContext, call_next: CallNext) -> Awaitable[None]:
        """Run before routing-level stages.

        Not awaiting `call_next` ends the request here;
        the middleware is then responsible for `context.response`.
        """
        ...


class Guard(Protocol):
    def __call__(self, context: PipelineContext) -> Union[bool, Awaitable[bool]]:
        ...


class Interceptor(Protocol):
    def __call__(self, context: PipelineContext, call_next: CallNext) -> Awaitable[Any]:
        """Wrap the rest of the pipeline.

        The returned value becomes the result seen by outer interceptors.
        """
        ...


class Pipe(Protocol):
    def __call__(self, value: Any, metadata: ArgumentMetadata) -> Any:
        ...


class ResponseSink(Protocol):
    async def send(self, response: Response) -> None:
        ...


class PipelineObserver(Protocol):
    def stage_entered(self, context: PipelineContext, stage: Stage) -> None:
        ...

    def stage_exited(
        self,
        context: PipelineContext,
        stage: Stage,
        error: Optional[BaseException] = None,
    ) -> None:
        ...

    def unhandled_error(self, context: PipelineContext, error: BaseException) -> None:
        ...
