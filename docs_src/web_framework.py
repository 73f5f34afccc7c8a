from typing import Any, Callable, Dict, Sequence, Tuple

from dipipe import (
    ClassProvider,
    Container,
    HandlerRef,
    Inject,
    Input,
    Module,
    Pipeline,
    PipelineContext,
    RequestDescriptor,
    Response,
    Scope,
)
from dipipe.pipeline import ParsePipe


# Framework code
class App:
    def __init__(self, root: Module) -> None:
        self.container = Container(root)
        self.routes: Dict[Tuple[str, str], HandlerRef] = {}
        self.pipeline = Pipeline(self.container)

    def route(
        self, method: str, path: str, *inputs: Any
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.routes[(method, path)] = HandlerRef(func, inputs=inputs)
            return func

        return decorator

    async def handle(
        self, method: str, path: str, request: RequestDescriptor
    ) -> Response:
        handler = self.routes.get((method, path))
        if handler is None:
            return Response(404)
        return await self.pipeline.run(PipelineContext(request, handler))


# User code
class Database:
    def __init__(self) -> None:
        self.users = {1: "ada", 2: "grace"}


class UnitOfWork:
    def __init__(self, db: Database) -> None:
        self.db = db
        self.reads = 0

    def get_user(self, user_id: int) -> str:
        self.reads += 1
        return self.db.users[user_id]


root = Module(
    "root",
    providers=[
        ClassProvider(Database, Database),
        ClassProvider(UnitOfWork, UnitOfWork, scope=Scope.REQUEST),
    ],
)
app = App(root)


@app.route("GET", "/users", Inject(UnitOfWork), Input("query", "id", pipes=[ParsePipe(int)]))
def get_user(uow: UnitOfWork, user_id: int) -> Dict[str, Any]:
    return {"id": user_id, "name": uow.get_user(user_id)}


async def web_framework() -> Sequence[Response]:
    async with app.container:
        ok = await app.handle("GET", "/users", RequestDescriptor(query={"id": "1"}))
        invalid = await app.handle("GET", "/users", RequestDescriptor(query={"id": "x"}))
        missing = await app.handle("GET", "/nothing", RequestDescriptor())
    assert ok == Response(200, {"id": 1, "name": "ada"})
    assert invalid.status_code == 400
    assert missing.status_code == 404
    return ok, invalid, missing
