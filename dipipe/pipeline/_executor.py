from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import anyio

from dipipe._utils.concurrency import call_maybe_async
from dipipe.api.handlers import ArgumentMetadata, Inject, Input, Provided
from dipipe.api.pipeline import PipelineObserver, ResponseSink
from dipipe.container import Container, Module, RequestScope
from dipipe.exceptions import AccessDeniedError, CancelledError
from dipipe.pipeline._context import PipelineContext, Response
from dipipe.pipeline._filters import DefaultExceptionFilter, ExceptionFilter
from dipipe.pipeline._observability import LoggingObserver
from dipipe.pipeline._stages import Stage


def _name(unit: Any) -> str:
    if isinstance(unit, Provided):
        unit = unit.token
    return getattr(unit, "__qualname__", None) or type(unit).__qualname__


class Pipeline:
    """Runs one request through middleware, guards, interceptors, pipes and the handler.

    Any error raised along the way is turned into a response by the exception filters,
    `run()` never raises for per-request errors.
    Stage lists accept callables or `Provided(token)` markers, which are resolved
    from the container for every request (in the request's module).
    """

    __slots__ = (
        "container",
        "middleware",
        "guards",
        "interceptors",
        "pipes",
        "filters",
        "observer",
        "sink",
        "module",
        "_default_filter",
    )

    def __init__(
        self,
        container: Container,
        *,
        middleware: Sequence[Any] = (),
        guards: Sequence[Any] = (),
        interceptors: Sequence[Any] = (),
        pipes: Sequence[Any] = (),
        filters: Sequence[Any] = (),
        observer: Optional[PipelineObserver] = None,
        sink: Optional[ResponseSink] = None,
        module: Optional[Module] = None,
    ) -> None:
        self.container = container
        self.middleware = list(middleware)
        self.guards = list(guards)
        self.interceptors = list(interceptors)
        self.pipes = list(pipes)
        self.filters = list(filters)
        self.observer: PipelineObserver = observer or LoggingObserver()
        self.sink = sink
        self.module = module
        self._default_filter = DefaultExceptionFilter(self.observer)
        # configuration errors surface here, not on the first request
        container.build()

    async def run(self, context: PipelineContext) -> Response:
        if context.module is None:
            context.module = self.module if self.module is not None else self.container.root
        try:
            async with self.container.enter_request(context.extras) as request:
                try:
                    await self._run_cancellable(
                        context, lambda: self._run_middleware(context, request)
                    )
                except Exception as exc:
                    context.response = await self._handle_error(context, request, exc)
        except Exception as exc:
            # raised while tearing down request scoped providers
            context.response = await self._handle_error(context, None, exc)
        if context.response is None:
            # a middleware ended the request without writing a response
            context.response = Response(status_code=204)
        try:
            self.observer.stage_entered(context, Stage.RESPOND)
            if self.sink is not None:
                await self.sink.send(context.response)
        except Exception as exc:
            # nothing is left to answer with, the error is only reported
            self.observer.unhandled_error(context, exc)
        else:
            self.observer.stage_exited(context, Stage.RESPOND)
        return context.response

    async def _run_cancellable(
        self, context: PipelineContext, func: Callable[[], Awaitable[None]]
    ) -> None:
        """Run `func` but stop it as soon as the context's cancellation token fires"""
        cancellation = context.cancellation
        cancellation.raise_if_cancelled()
        outcome: Dict[str, Any] = {}

        async with anyio.create_task_group() as taskgroup:

            async def run() -> None:
                try:
                    await func()
                except Exception as exc:
                    outcome["error"] = exc
                else:
                    outcome["done"] = True
                finally:
                    # stops the watcher below
                    taskgroup.cancel_scope.cancel()

            taskgroup.start_soon(run)
            await cancellation.wait()
            taskgroup.cancel_scope.cancel()

        if "error" in outcome:
            raise outcome["error"]
        if "done" not in outcome:
            raise CancelledError(cancellation.reason or "Request was cancelled")

    async def _materialize(
        self, unit: Any, context: PipelineContext, request: Optional[RequestScope]
    ) -> Any:
        if isinstance(unit, Provided):
            return await self.container.resolve(unit.token, context.module, request)
        return unit

    async def _run_middleware(
        self, context: PipelineContext, request: RequestScope
    ) -> None:
        middleware = self.middleware
        proceeded = False

        async def call_at(index: int) -> None:
            nonlocal proceeded
            context.cancellation.raise_if_cancelled()
            if index == len(middleware):
                if proceeded:
                    raise RuntimeError("call_next() was called more than once")
                proceeded = True
                self.observer.stage_exited(context, Stage.MIDDLEWARE)
                await self._route(context, request)
                return
            unit = await self._materialize(middleware[index], context, request)
            await call_maybe_async(unit, context, lambda: call_at(index + 1))

        self.observer.stage_entered(context, Stage.MIDDLEWARE)
        try:
            await call_at(0)
        except Exception as exc:
            if not proceeded:
                self.observer.stage_exited(context, Stage.MIDDLEWARE, exc)
            raise
        if not proceeded:
            self.observer.stage_exited(context, Stage.MIDDLEWARE)

    async def _route(self, context: PipelineContext, request: RequestScope) -> None:
        await self._run_guards(context, request)
        context.result = await self._run_interceptors(context, request)
        context.response = Response(status_code=200, body=context.result)

    async def _run_guards(self, context: PipelineContext, request: RequestScope) -> None:
        self.observer.stage_entered(context, Stage.GUARDS)
        try:
            for unit in [*self.guards, *context.handler.guards]:
                context.cancellation.raise_if_cancelled()
                guard = await self._materialize(unit, context, request)
                if not await call_maybe_async(guard, context):
                    raise AccessDeniedError(
                        f"{_name(unit)} denied access to {context.handler.display_name}"
                    )
        except Exception as exc:
            self.observer.stage_exited(context, Stage.GUARDS, exc)
            raise
        self.observer.stage_exited(context, Stage.GUARDS)

    async def _run_interceptors(
        self, context: PipelineContext, request: RequestScope
    ) -> Any:
        interceptors = [*self.interceptors, *context.handler.interceptors]

        async def call_at(index: int) -> Any:
            context.cancellation.raise_if_cancelled()
            if index == len(interceptors):
                return await self._invoke_handler(context, request)
            unit = await self._materialize(interceptors[index], context, request)
            return await call_maybe_async(unit, context, lambda: call_at(index + 1))

        self.observer.stage_entered(context, Stage.INTERCEPTORS)
        try:
            result = await call_at(0)
        except Exception as exc:
            self.observer.stage_exited(context, Stage.INTERCEPTORS, exc)
            raise
        self.observer.stage_exited(context, Stage.INTERCEPTORS)
        return result

    async def _invoke_handler(self, context: PipelineContext, request: RequestScope) -> Any:
        handler = context.handler
        self.observer.stage_entered(context, Stage.PIPES)
        try:
            args = await self._build_arguments(context, request)
        except Exception as exc:
            self.observer.stage_exited(context, Stage.PIPES, exc)
            raise
        self.observer.stage_exited(context, Stage.PIPES)

        context.cancellation.raise_if_cancelled()
        self.observer.stage_entered(context, Stage.HANDLER)
        try:
            result = await call_maybe_async(handler.call, *args)
        except Exception as exc:
            self.observer.stage_exited(context, Stage.HANDLER, exc)
            raise
        self.observer.stage_exited(context, Stage.HANDLER)
        return result

    async def _build_arguments(
        self, context: PipelineContext, request: RequestScope
    ) -> List[Any]:
        handler = context.handler
        args: List[Any] = []
        for index, binding in enumerate(handler.inputs):
            if isinstance(binding, Inject):
                args.append(
                    await self.container.resolve(binding.token, context.module, request)
                )
                continue
            value = read_input(context, binding)
            metadata = ArgumentMetadata(index, binding.source, binding.key, handler)
            for unit in [*self.pipes, *handler.pipes, *binding.pipes]:
                context.cancellation.raise_if_cancelled()
                pipe = await self._materialize(unit, context, request)
                value = await call_maybe_async(pipe, value, metadata)
            args.append(value)
        return args

    async def _handle_error(
        self,
        context: PipelineContext,
        request: Optional[RequestScope],
        error: Exception,
    ) -> Response:
        try:
            self.observer.stage_entered(context, Stage.EXCEPTION_FILTER)
            response = await self._apply_filters(context, request, error)
        except Exception as filter_error:
            # a broken filter (or observer) must not let the error escape unrouted
            response = self._default_filter(filter_error, context)
        self.observer.stage_exited(context, Stage.EXCEPTION_FILTER, error)
        return response

    async def _apply_filters(
        self,
        context: PipelineContext,
        request: Optional[RequestScope],
        error: Exception,
    ) -> Response:
        for unit in [*context.handler.filters, *self.filters]:
            exception_filter: ExceptionFilter = await self._materialize(
                unit, context, request
            )
            if not exception_filter.matches(error):
                continue
            response = await call_maybe_async(exception_filter, error, context)
            if not isinstance(response, Response):
                raise TypeError(
                    f"Exception filter {exception_filter!r} returned {response!r} instead of a Response"
                )
            return response
        return self._default_filter(error, context)


def read_input(context: PipelineContext, binding: Input) -> Any:
    request = context.request
    key = binding.key
    if binding.source == "body":
        if key is None:
            return request.body
        if isinstance(request.body, dict):
            return request.body.get(key)
        return getattr(request.body, key, None)
    if binding.source == "headers":
        return dict(request.headers) if key is None else request.header(key)
    if binding.source == "params":
        return dict(request.params) if key is None else request.params.get(key)
    if binding.source == "query":
        return dict(request.query) if key is None else request.query.get(key)
    return dict(context.extras) if key is None else context.extras.get(key)
