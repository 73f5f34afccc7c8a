from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple, Optional, Sequence, Union

from dipipe.api.providers import Token

INPUT_SOURCES = ("body", "params", "headers", "query", "extras")


class ArgumentMetadata(NamedTuple):
    """What a pipe knows about the value it is transforming"""

    index: int
    source: str
    key: Optional[str]
    handler: "HandlerRef"


@dataclass(frozen=True)
class Input:
    """A handler argument read from the request descriptor.

    `source` is one of "body", "params", "headers", "query" or "extras"
    (the context side channel). Without a `key` the whole source is passed.
    """

    source: str = "body"
    key: Optional[str] = None
    pipes: Sequence[Any] = ()

    def __post_init__(self) -> None:
        if self.source not in INPUT_SOURCES:
            raise ValueError(
                f"Unknown input source {self.source!r}, expected one of {INPUT_SOURCES}"
            )


@dataclass(frozen=True)
class Inject:
    """A handler argument resolved from the container"""

    token: Token


@dataclass(frozen=True)
class Provided:
    """A pipeline stage (guard, interceptor, pipe, filter...) resolved from the container per request"""

    token: Token


Binding = Union[Input, Inject]


@dataclass(frozen=True, eq=False)
class HandlerRef:
    """The unit of business logic a request was routed to.

    `owner` is the class (or any other grouping object) the handler belongs to;
    its metadata is consulted after the handler's own.
    The stage lists extend the pipeline's own stages for this handler only.
    """

    call: Callable[..., Any]
    inputs: Sequence[Binding] = ()
    owner: Optional[Any] = None
    guards: Sequence[Any] = ()
    interceptors: Sequence[Any] = ()
    pipes: Sequence[Any] = ()
    filters: Sequence[Any] = ()
    name: Optional[str] = field(default=None)

    @property
    def display_name(self) -> str:
        if self.name is not None:
            return self.name
        return getattr(self.call, "__qualname__", repr(self.call))

    def __repr__(self) -> str:
        return f"HandlerRef({self.display_name})"
