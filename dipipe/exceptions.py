import builtins
from typing import Any, Hashable, List, Optional


class DependencyInjectionException(Exception):
    """Base exception for container configuration errors"""

    pass


class DuplicateTokenError(DependencyInjectionException):
    """Raised when a token is registered twice in the same module without override=True"""

    def __init__(self, msg: str, token: Hashable) -> None:
        super().__init__(msg)
        self.token = token


class TokenNotFoundError(DependencyInjectionException):
    """Raised when a token is not visible from the module it is requested from"""

    def __init__(self, msg: str, path: List[Hashable]) -> None:
        super().__init__(msg)
        self.path = path


class CircularDependencyError(DependencyInjectionException):
    """Raised when providers (or aliases) depend on each other in a cycle"""

    def __init__(self, msg: str, path: List[Hashable]) -> None:
        super().__init__(msg)
        self.path = path


class ModuleCycleError(DependencyInjectionException):
    """Raised when module imports form a cycle"""

    def __init__(self, msg: str, cycle: List[Any]) -> None:
        super().__init__(msg)
        self.cycle = cycle


class WiringError(DependencyInjectionException):
    """Raised when wiring (introspection into __init__ annotations) failed"""

    def __init__(self, msg: str, path: List[Hashable]) -> None:
        super().__init__(msg)
        self.path = path


class ScopeViolationError(DependencyInjectionException):
    """Raised when Scope layering is violated.
    A singleton outlives every request, so it cannot hold on to a request scoped instance.
    """

    def __init__(self, msg: str, path: List[Hashable]) -> None:
        super().__init__(msg)
        self.path = path


class UnknownScopeError(DependencyInjectionException):
    """Raised when a request scoped provider is resolved without a request"""


class RegistryFrozenError(DependencyInjectionException):
    """Raised when providers are registered after the container was built"""


class PipelineError(Exception):
    """Base exception for errors raised while processing a single request.

    Every subclass maps onto a response: `status_code` and `kind` are what
    the default exception filter renders.
    """

    status_code: int = 500
    kind: str = "pipeline_error"

    def __init__(self, message: str = "", *, detail: Optional[Any] = None) -> None:
        message = message or self.__class__.__doc__ or self.kind
        super().__init__(message)
        self.message = message
        self.detail = detail


class AccessDeniedError(PipelineError):
    """A guard rejected the request"""

    status_code = 403
    kind = "access_denied"


class ValidationError(PipelineError):
    """A pipe rejected a handler input"""

    status_code = 400
    kind = "validation_error"


class TimeoutError(PipelineError, builtins.TimeoutError):
    """The request did not complete before its deadline"""

    status_code = 408
    kind = "timeout"


class CancelledError(PipelineError):
    """The request was cancelled before it completed"""

    status_code = 499
    kind = "cancelled"


class UnhandledError(PipelineError):
    """Wraps an error no exception filter recognized"""

    status_code = 500
    kind = "unhandled"

    def __init__(self, error: BaseException) -> None:
        super().__init__("Internal server error")
        self.error = error
        self.__cause__ = error
