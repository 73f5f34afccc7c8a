from dipipe.api.handlers import ArgumentMetadata, HandlerRef, Inject, Input, Provided
from dipipe.pipeline._context import (
    CancelToken,
    PipelineContext,
    RequestDescriptor,
    Response,
)
from dipipe.pipeline._executor import Pipeline
from dipipe.pipeline._filters import (
    DefaultExceptionFilter,
    ExceptionFilter,
    catch,
    error_response,
)
from dipipe.pipeline._interceptors import (
    CacheInterceptor,
    MapResultInterceptor,
    RetryInterceptor,
    TimeoutInterceptor,
)
from dipipe.pipeline._observability import LoggingObserver
from dipipe.pipeline._pipes import DefaultValuePipe, ParsePipe, ValidatePipe
from dipipe.pipeline._stages import Stage

__all__ = (
    "ArgumentMetadata",
    "CacheInterceptor",
    "CancelToken",
    "DefaultExceptionFilter",
    "DefaultValuePipe",
    "ExceptionFilter",
    "HandlerRef",
    "Inject",
    "Input",
    "LoggingObserver",
    "MapResultInterceptor",
    "ParsePipe",
    "Pipeline",
    "PipelineContext",
    "Provided",
    "RequestDescriptor",
    "Response",
    "RetryInterceptor",
    "Stage",
    "TimeoutInterceptor",
    "ValidatePipe",
    "catch",
    "error_response",
)
