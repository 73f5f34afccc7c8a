from typing import Any, List, Optional, Tuple

import pytest

from dipipe import (
    ClassProvider,
    Container,
    FactoryProvider,
    HandlerRef,
    Inject,
    Input,
    Module,
    Pipeline,
    PipelineContext,
    Provided,
    RequestDescriptor,
    Response,
    Scope,
)
from dipipe.api.pipeline import CallNext
from dipipe.exceptions import (
    AccessDeniedError,
    PipelineError,
    TokenNotFoundError,
    ValidationError,
)
from dipipe.pipeline import (
    ExceptionFilter,
    ParsePipe,
    Stage,
    ValidatePipe,
    catch,
)


class RecordingObserver:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Stage]] = []
        self.errors: List[BaseException] = []

    def stage_entered(self, context: PipelineContext, stage: Stage) -> None:
        self.events.append(("enter", stage))

    def stage_exited(
        self,
        context: PipelineContext,
        stage: Stage,
        error: Optional[BaseException] = None,
    ) -> None:
        self.events.append(("exit", stage))

    def unhandled_error(self, context: PipelineContext, error: BaseException) -> None:
        self.errors.append(error)


class RecordingSink:
    def __init__(self) -> None:
        self.responses: List[Response] = []

    async def send(self, response: Response) -> None:
        self.responses.append(response)


def context_for(handler: Any, body: Any = None, **kwargs: Any) -> PipelineContext:
    if not isinstance(handler, HandlerRef):
        handler = HandlerRef(handler)
    return PipelineContext(RequestDescriptor(body, **kwargs), handler)


def hello() -> str:
    return "hello"


@pytest.mark.anyio
async def test_handler_result_becomes_response() -> None:
    sink = RecordingSink()
    pipeline = Pipeline(Container(), sink=sink)
    context = context_for(hello)
    response = await pipeline.run(context)
    assert response == Response(200, "hello")
    assert context.result == "hello"
    assert context.response is response
    assert sink.responses == [response]


@pytest.mark.anyio
async def test_stage_order() -> None:
    observer = RecordingObserver()
    pipeline = Pipeline(Container(), observer=observer)
    await pipeline.run(context_for(hello))
    assert [stage for kind, stage in observer.events if kind == "enter"] == [
        Stage.MIDDLEWARE,
        Stage.GUARDS,
        Stage.INTERCEPTORS,
        Stage.PIPES,
        Stage.HANDLER,
        Stage.RESPOND,
    ]


@pytest.mark.anyio
async def test_guards_short_circuit() -> None:
    calls: List[str] = []
    handled: List[bool] = []

    def guard(name: str, allow: bool) -> Any:
        def check(context: PipelineContext) -> bool:
            calls.append(name)
            return allow

        return check

    def handler() -> None:
        handled.append(True)  # pragma: no cover

    pipeline = Pipeline(
        Container(),
        guards=[guard("first", True), guard("second", False), guard("third", True)],
    )
    response = await pipeline.run(context_for(handler))
    assert calls == ["first", "second"]
    assert handled == []
    assert response.status_code == 403
    assert response.body["error"] == "access_denied"


@pytest.mark.anyio
async def test_async_guard() -> None:
    async def deny(context: PipelineContext) -> bool:
        return False

    pipeline = Pipeline(Container(), guards=[deny])
    response = await pipeline.run(context_for(hello))
    assert response.status_code == 403


@pytest.mark.anyio
async def test_guard_exception_keeps_its_kind() -> None:
    class NotAuthenticated(PipelineError):
        status_code = 401
        kind = "not_authenticated"

    def authenticate(context: PipelineContext) -> bool:
        raise NotAuthenticated("missing token")

    pipeline = Pipeline(Container(), guards=[authenticate])
    response = await pipeline.run(context_for(hello))
    assert response == Response(
        401, {"error": "not_authenticated", "message": "missing token"}
    )


@pytest.mark.anyio
async def test_interceptor_onion() -> None:
    log: List[str] = []

    def interceptor(name: str) -> Any:
        async def intercept(context: PipelineContext, call_next: CallNext) -> Any:
            log.append(f"{name}-before")
            result = await call_next()
            log.append(f"{name}-after")
            return result

        return intercept

    def handler() -> str:
        log.append("Handler")
        return "done"

    pipeline = Pipeline(Container(), interceptors=[interceptor("I1"), interceptor("I2")])
    response = await pipeline.run(context_for(handler))
    assert response.body == "done"
    assert log == ["I1-before", "I2-before", "Handler", "I2-after", "I1-after"]


@pytest.mark.anyio
async def test_interceptor_replaces_result() -> None:
    async def wrap(context: PipelineContext, call_next: CallNext) -> Any:
        return {"data": await call_next()}

    async def short_circuit(context: PipelineContext, call_next: CallNext) -> Any:
        return "cached"

    pipeline = Pipeline(Container(), interceptors=[wrap, short_circuit])
    response = await pipeline.run(context_for(hello))
    assert response.body == {"data": "cached"}


@pytest.mark.anyio
async def test_middleware_order_and_response_access() -> None:
    log: List[str] = []

    async def timing(context: PipelineContext, call_next: CallNext) -> None:
        log.append("timing-before")
        await call_next()
        assert context.response is not None
        context.response.headers["x-timing"] = "1ms"
        log.append("timing-after")

    async def tracing(context: PipelineContext, call_next: CallNext) -> None:
        log.append("tracing-before")
        await call_next()
        log.append("tracing-after")

    def handler() -> str:
        log.append("handler")
        return "ok"

    pipeline = Pipeline(Container(), middleware=[timing, tracing])
    response = await pipeline.run(context_for(handler))
    assert log == [
        "timing-before",
        "tracing-before",
        "handler",
        "tracing-after",
        "timing-after",
    ]
    assert response.headers == {"x-timing": "1ms"}


@pytest.mark.anyio
async def test_middleware_halts_without_response() -> None:
    calls: List[str] = []

    async def halt(context: PipelineContext, call_next: CallNext) -> None:
        calls.append("halt")

    def guard(context: PipelineContext) -> bool:
        calls.append("guard")  # pragma: no cover
        return True  # pragma: no cover

    pipeline = Pipeline(Container(), middleware=[halt], guards=[guard])
    response = await pipeline.run(context_for(hello))
    assert calls == ["halt"]
    assert response.status_code == 204


@pytest.mark.anyio
async def test_middleware_halts_with_response() -> None:
    async def maintenance(context: PipelineContext, call_next: CallNext) -> None:
        context.response = Response(503, {"error": "maintenance"})

    pipeline = Pipeline(Container(), middleware=[maintenance])
    response = await pipeline.run(context_for(hello))
    assert response == Response(503, {"error": "maintenance"})


@pytest.mark.anyio
async def test_call_next_twice() -> None:
    async def twice(context: PipelineContext, call_next: CallNext) -> None:
        await call_next()
        await call_next()

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), middleware=[twice], observer=observer)
    response = await pipeline.run(context_for(hello))
    assert response.status_code == 500
    assert isinstance(observer.errors[0], RuntimeError)


@pytest.mark.anyio
async def test_inputs_and_pipes() -> None:
    def get_user(user_id: int, verbose: Optional[str], body: Any) -> Any:
        return {"id": user_id, "verbose": verbose, "body": body}

    handler = HandlerRef(
        get_user,
        inputs=[
            Input("params", "user_id", pipes=[ParsePipe(int)]),
            Input("headers", "X-Verbose"),
            Input(),
        ],
    )
    pipeline = Pipeline(Container())
    context = context_for(
        handler, {"name": "ada"}, params={"user_id": "7"}, headers={"x-verbose": "yes"}
    )
    response = await pipeline.run(context)
    assert response.body == {"id": 7, "verbose": "yes", "body": {"name": "ada"}}


@pytest.mark.anyio
async def test_pipe_order() -> None:
    applied: List[str] = []

    def pipe(name: str) -> Any:
        def apply(value: Any, metadata: Any) -> Any:
            applied.append(name)
            return value

        return apply

    handler = HandlerRef(
        lambda value: value,
        inputs=[Input("body", pipes=[pipe("argument")])],
        pipes=[pipe("handler")],
    )
    pipeline = Pipeline(Container(), pipes=[pipe("global")])
    await pipeline.run(context_for(handler, "x"))
    assert applied == ["global", "handler", "argument"]


@pytest.mark.anyio
async def test_pipe_validation_error() -> None:
    handled: List[Any] = []

    def create(name: str) -> None:
        handled.append(name)  # pragma: no cover

    handler = HandlerRef(
        create,
        inputs=[Input("body", "name", pipes=[ValidatePipe(bool, "name is required")])],
    )
    pipeline = Pipeline(Container())
    response = await pipeline.run(context_for(handler, {"name": ""}))
    assert handled == []
    assert response == Response(
        400, {"error": "validation_error", "message": "name is required"}
    )


@pytest.mark.anyio
async def test_parse_pipe_error() -> None:
    handler = HandlerRef(lambda n: n, inputs=[Input("query", "n", pipes=[ParsePipe(int)])])
    pipeline = Pipeline(Container())
    response = await pipeline.run(context_for(handler, query={"n": "seven"}))
    assert response.status_code == 400
    assert "query.n" in response.body["message"]


@pytest.mark.anyio
async def test_inject_handler_arguments() -> None:
    class Greeter:
        def greet(self, name: str) -> str:
            return f"hi {name}"

    container = Container()
    container.register(ClassProvider(Greeter, Greeter))
    handler = HandlerRef(
        lambda greeter, name: greeter.greet(name),
        inputs=[Inject(Greeter), Input("params", "name")],
    )
    pipeline = Pipeline(container)
    response = await pipeline.run(context_for(handler, params={"name": "ada"}))
    assert response.body == "hi ada"


@pytest.mark.anyio
async def test_request_scoped_injection() -> None:
    class Transaction:
        pass

    container = Container()
    container.register(ClassProvider(Transaction, Transaction, scope=Scope.REQUEST))
    handler = HandlerRef(
        lambda first, second: first is second,
        inputs=[Inject(Transaction), Inject(Transaction)],
    )
    pipeline = Pipeline(container)
    assert (await pipeline.run(context_for(handler))).body is True


@pytest.mark.anyio
async def test_provided_stages() -> None:
    class RoleGuard:
        def __init__(self, role: str) -> None:
            self.role = role

        def __call__(self, context: PipelineContext) -> bool:
            return context.request.header("x-role") == self.role

    container = Container()
    container.register(
        [
            FactoryProvider("role", lambda: "admin"),
            ClassProvider(RoleGuard, RoleGuard, dependencies=["role"]),
        ]
    )
    pipeline = Pipeline(container, guards=[Provided(RoleGuard)])
    allowed = await pipeline.run(context_for(hello, headers={"X-Role": "admin"}))
    denied = await pipeline.run(context_for(hello, headers={"X-Role": "guest"}))
    assert allowed.status_code == 200
    assert denied.status_code == 403
    assert "RoleGuard" in denied.body["message"]


@pytest.mark.anyio
async def test_provided_stage_resolved_in_request_module() -> None:
    feature = Module(
        "feature",
        providers=[FactoryProvider("suffix", lambda: "!")],
    )

    class Exclaim:
        def __init__(self, suffix: str) -> None:
            self.suffix = suffix

        async def __call__(self, context: PipelineContext, call_next: CallNext) -> Any:
            return await call_next() + self.suffix

    feature.register(ClassProvider(Exclaim, Exclaim, dependencies=["suffix"]))
    container = Container(Module("root", imports=[feature]))
    pipeline = Pipeline(container, module=feature)
    handler = HandlerRef(hello, interceptors=[Provided(Exclaim)])
    assert (await pipeline.run(context_for(handler))).body == "hello!"


@pytest.mark.anyio
async def test_handler_level_stages() -> None:
    log: List[str] = []

    def guard(name: str) -> Any:
        def check(context: PipelineContext) -> bool:
            log.append(name)
            return True

        return check

    handler = HandlerRef(hello, guards=[guard("handler")])
    pipeline = Pipeline(Container(), guards=[guard("global")])
    await pipeline.run(context_for(handler))
    assert log == ["global", "handler"]


@pytest.mark.anyio
async def test_side_channel() -> None:
    def authenticate(context: PipelineContext) -> bool:
        token = context.request.header("authorization")
        if token is None:
            return False
        context.extras["principal"] = token.split()[-1]
        return True

    handler = HandlerRef(
        lambda principal: f"hello {principal}",
        inputs=[Input("extras", "principal")],
    )
    pipeline = Pipeline(Container(), guards=[authenticate])
    response = await pipeline.run(
        context_for(handler, headers={"Authorization": "Bearer ada"})
    )
    assert response.body == "hello ada"


@pytest.mark.anyio
async def test_unhandled_error() -> None:
    def broken() -> None:
        raise KeyError("missing")

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), observer=observer)
    response = await pipeline.run(context_for(broken))
    assert response == Response(
        500, {"error": "unhandled", "message": "Internal server error"}
    )
    assert response.is_error
    assert isinstance(observer.errors[0], KeyError)
    assert ("enter", Stage.EXCEPTION_FILTER) in observer.events


@pytest.mark.anyio
async def test_filter_order() -> None:
    log: List[str] = []

    @catch(LookupError)
    def handler_filter(error: Exception, context: PipelineContext) -> Response:
        log.append("handler")
        return Response(404, {"error": "not_found"})

    @catch(KeyError)
    def pipeline_filter(error: Exception, context: PipelineContext) -> Response:
        log.append("pipeline")  # pragma: no cover
        return Response(410)  # pragma: no cover

    def broken() -> None:
        raise KeyError("missing")

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), filters=[pipeline_filter], observer=observer)
    response = await pipeline.run(context_for(HandlerRef(broken, filters=[handler_filter])))
    assert response == Response(404, {"error": "not_found"})
    assert log == ["handler"]
    # handled by a filter, so not reported as unhandled
    assert observer.errors == []


@pytest.mark.anyio
async def test_filter_falls_through_to_next_match() -> None:
    @catch(ValidationError)
    def validation(error: ValidationError, context: PipelineContext) -> Response:
        return Response(422, {"error": "invalid"})  # pragma: no cover

    class DenialFilter(ExceptionFilter):
        catches = (AccessDeniedError,)

        async def __call__(self, error: Any, context: PipelineContext) -> Response:
            return Response(404, {"error": "not_found"})

    def deny(context: PipelineContext) -> bool:
        return False

    pipeline = Pipeline(Container(), guards=[deny], filters=[validation, DenialFilter()])
    assert (await pipeline.run(context_for(hello))).status_code == 404


@pytest.mark.anyio
async def test_broken_filter() -> None:
    @catch()
    def broken_filter(error: Exception, context: PipelineContext) -> Response:
        raise RuntimeError("filter failed")

    def broken() -> None:
        raise KeyError("missing")

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), filters=[broken_filter], observer=observer)
    response = await pipeline.run(context_for(broken))
    assert response.status_code == 500
    assert isinstance(observer.errors[0], RuntimeError)


@pytest.mark.anyio
async def test_filter_must_return_response() -> None:
    @catch()
    def lazy_filter(error: Exception, context: PipelineContext) -> Response:
        return "oops"  # type: ignore[return-value]

    def broken() -> None:
        raise KeyError("missing")

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), filters=[lazy_filter], observer=observer)
    response = await pipeline.run(context_for(broken))
    assert response.status_code == 500
    assert isinstance(observer.errors[0], TypeError)


@pytest.mark.anyio
async def test_request_scope_torn_down_after_response() -> None:
    events: List[str] = []

    def transaction() -> Any:
        events.append("begin")
        yield "tx"
        events.append("end")

    class Sink:
        async def send(self, response: Response) -> None:
            events.append("send")

    container = Container()
    container.register(FactoryProvider("tx", transaction, scope=Scope.REQUEST))
    handler = HandlerRef(lambda tx: tx, inputs=[Inject("tx")])
    pipeline = Pipeline(container, sink=Sink())
    response = await pipeline.run(context_for(handler))
    assert response.body == "tx"
    assert events == ["begin", "end", "send"]


def test_configuration_errors_surface_at_construction() -> None:
    container = Container()
    container.register(ClassProvider("service", object, dependencies=["missing"]))
    with pytest.raises(TokenNotFoundError, match="'missing' is not provided"):
        Pipeline(container)


@pytest.mark.anyio
async def test_sink_error_is_reported() -> None:
    class BrokenSink:
        async def send(self, response: Response) -> None:
            raise ConnectionResetError("client went away")

    observer = RecordingObserver()
    pipeline = Pipeline(Container(), sink=BrokenSink(), observer=observer)
    response = await pipeline.run(context_for(hello))
    assert response == Response(200, "hello")
    assert isinstance(observer.errors[0], ConnectionResetError)
    assert ("exit", Stage.RESPOND) not in observer.events


@pytest.mark.anyio
async def test_observer_error_in_exception_filter_stage() -> None:
    class FlakyObserver(RecordingObserver):
        def stage_entered(self, context: PipelineContext, stage: Stage) -> None:
            if stage is Stage.EXCEPTION_FILTER:
                raise RuntimeError("observer failed")
            super().stage_entered(context, stage)

    def broken() -> None:
        raise KeyError("missing")

    observer = FlakyObserver()
    pipeline = Pipeline(Container(), observer=observer)
    response = await pipeline.run(context_for(broken))
    assert response.status_code == 500
    assert isinstance(observer.errors[0], RuntimeError)
