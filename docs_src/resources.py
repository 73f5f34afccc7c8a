from typing import AsyncGenerator, List

from dipipe import (
    Container,
    FactoryProvider,
    HandlerRef,
    Inject,
    Pipeline,
    PipelineContext,
    RequestDescriptor,
    Scope,
)

log: List[str] = []


async def connection_pool() -> AsyncGenerator[str, None]:
    log.append("pool opened")
    yield "pool"
    log.append("pool closed")


async def transaction(pool: str) -> AsyncGenerator[str, None]:
    log.append("transaction started")
    yield f"transaction on {pool}"
    log.append("transaction committed")


async def main() -> None:
    container = Container()
    container.register(
        [
            FactoryProvider("pool", connection_pool),
            FactoryProvider("tx", transaction, dependencies=["pool"], scope=Scope.REQUEST),
        ]
    )
    handler = HandlerRef(lambda tx: tx, inputs=[Inject("tx")])
    pipeline = Pipeline(container)
    async with container:
        for _ in range(2):
            response = await pipeline.run(PipelineContext(RequestDescriptor(), handler))
            assert response.body == "transaction on pool"
    assert log == [
        "pool opened",
        "transaction started",
        "transaction committed",
        "transaction started",
        "transaction committed",
        "pool closed",
    ]
