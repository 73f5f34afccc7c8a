from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Some(Generic[T]):
    value: T


UNSET: Any = object()
