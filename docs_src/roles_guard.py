from typing import List

from dipipe import (
    ClassProvider,
    Container,
    HandlerRef,
    MetadataStore,
    Pipeline,
    PipelineContext,
    Provided,
    RequestDescriptor,
    ValueProvider,
)

metadata = MetadataStore()


class RolesGuard:
    """Compare the roles a handler requires with the roles sent by the client"""

    def __init__(self, store: MetadataStore) -> None:
        self.store = store

    def __call__(self, context: PipelineContext) -> bool:
        required: List[str] = self.store.get(context.handler, "roles", default=[])
        granted = set((context.request.header("x-roles") or "").split(","))
        return all(role in granted for role in required)


@metadata.tag("roles", ["user"])
class Articles:
    def read(self) -> str:
        return "article"

    @metadata.tag("roles", ["user", "editor"])
    def publish(self) -> str:
        return "published"


async def main() -> None:
    container = Container()
    container.register(
        [
            ValueProvider(MetadataStore, metadata),
            ClassProvider(RolesGuard, RolesGuard),
        ]
    )
    pipeline = Pipeline(container, guards=[Provided(RolesGuard)])
    articles = Articles()

    def request(handler: HandlerRef, roles: str) -> PipelineContext:
        return PipelineContext(RequestDescriptor(headers={"X-Roles": roles}), handler)

    read = HandlerRef(articles.read)
    publish = HandlerRef(articles.publish)
    async with container:
        assert (await pipeline.run(request(read, "user"))).body == "article"
        assert (await pipeline.run(request(publish, "user"))).status_code == 403
        assert (await pipeline.run(request(publish, "user,editor"))).body == "published"
