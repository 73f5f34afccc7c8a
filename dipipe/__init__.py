from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dipipe")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"


import dipipe.api as api  # noqa: E402
from dipipe.api.providers import (  # noqa: E402
    AliasProvider,
    ClassProvider,
    FactoryProvider,
    ValueProvider,
)
from dipipe.api.scopes import Scope  # noqa: E402
from dipipe.container import Container, Module  # noqa: E402
from dipipe.metadata import MetadataStore  # noqa: E402
from dipipe.pipeline import (  # noqa: E402
    HandlerRef,
    Inject,
    Input,
    Pipeline,
    PipelineContext,
    Provided,
    RequestDescriptor,
    Response,
)

__all__ = (
    "api",
    "AliasProvider",
    "ClassProvider",
    "Container",
    "FactoryProvider",
    "HandlerRef",
    "Inject",
    "Input",
    "MetadataStore",
    "Module",
    "Pipeline",
    "PipelineContext",
    "Provided",
    "RequestDescriptor",
    "Response",
    "Scope",
    "ValueProvider",
)
