from typing import Any, Callable

from dipipe.api.handlers import ArgumentMetadata
from dipipe.exceptions import ValidationError


def _describe(metadata: ArgumentMetadata) -> str:
    where = metadata.source if metadata.key is None else f"{metadata.source}.{metadata.key}"
    return f"argument {metadata.index} ({where}) of {metadata.handler.display_name}"


class ValidatePipe:
    """Reject values for which `predicate` is falsy"""

    __slots__ = ("predicate", "message")

    def __init__(self, predicate: Callable[[Any], bool], message: str = "") -> None:
        self.predicate = predicate
        self.message = message

    def __call__(self, value: Any, metadata: ArgumentMetadata) -> Any:
        if not self.predicate(value):
            raise ValidationError(
                self.message or f"Invalid value for {_describe(metadata)}",
                detail={"index": metadata.index, "source": metadata.source, "key": metadata.key},
            )
        return value


class ParsePipe:
    """Convert the value with `converter` (e.g. `int`), TypeError/ValueError become ValidationError"""

    __slots__ = ("converter",)

    def __init__(self, converter: Callable[[Any], Any]) -> None:
        self.converter = converter

    def __call__(self, value: Any, metadata: ArgumentMetadata) -> Any:
        try:
            return self.converter(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Could not parse {_describe(metadata)}: {e}",
                detail={"index": metadata.index, "source": metadata.source, "key": metadata.key},
            ) from e


class DefaultValuePipe:
    __slots__ = ("default",)

    def __init__(self, default: Any) -> None:
        self.default = default

    def __call__(self, value: Any, metadata: ArgumentMetadata) -> Any:
        return self.default if value is None else value
