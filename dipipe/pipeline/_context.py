from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, MutableMapping, Optional

import anyio

from dipipe.api.handlers import HandlerRef
from dipipe.container import Module
from dipipe.exceptions import CancelledError


class RequestDescriptor:
    """The parsed request handed over by the transport.

    Header names are case insensitive (stored lower cased).
    """

    __slots__ = ("body", "headers", "params", "query")

    def __init__(
        self,
        body: Any = None,
        *,
        headers: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.body = body
        self.headers: Dict[str, Any] = {k.lower(): v for k, v in (headers or {}).items()}
        self.params: Dict[str, Any] = dict(params or {})
        self.query: Dict[str, Any] = dict(query or {})

    def header(self, name: str, default: Any = None) -> Any:
        return self.headers.get(name.lower(), default)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(body={self.body!r}, headers={self.headers!r},"
            f" params={self.params!r}, query={self.query!r})"
        )


@dataclass
class Response:
    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class CancelToken:
    """Cancellation signal for a single request.

    Stages can poll `cancelled` / `raise_if_cancelled()`;
    the pipeline also waits on it to interrupt whatever stage is running.
    """

    __slots__ = ("_cancelled", "_reason", "_event")

    _event: Optional[anyio.Event]

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""
        # created lazily: anyio events can only be created inside an event loop
        self._event = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledError(self._reason or "Request was cancelled")

    async def wait(self) -> None:
        if self._cancelled:
            return
        if self._event is None:
            self._event = anyio.Event()
        await self._event.wait()


class PipelineContext:
    """Mutable state of one request, owned by the pipeline while it runs.

    `extras` is the side channel for data produced by one stage and read by
    a later one (for example the principal a guard authenticated).
    """

    __slots__ = (
        "request",
        "handler",
        "response",
        "result",
        "extras",
        "cancellation",
        "module",
    )

    response: Optional[Response]
    extras: MutableMapping[Any, Any]

    def __init__(
        self,
        request: RequestDescriptor,
        handler: HandlerRef,
        *,
        module: Optional[Module] = None,
        extras: Optional[MutableMapping[Any, Any]] = None,
        cancellation: Optional[CancelToken] = None,
    ) -> None:
        self.request = request
        self.handler = handler
        self.module = module
        self.response = None
        self.result: Any = None
        self.extras = extras if extras is not None else {}
        self.cancellation = cancellation if cancellation is not None else CancelToken()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(handler={self.handler!r}, request={self.request!r})"
