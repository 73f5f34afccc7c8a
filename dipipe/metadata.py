import inspect
from typing import Any, Callable, Dict, List, TypeVar

from dipipe.api.handlers import HandlerRef

T = TypeVar("T")

_MISSING: Any = object()


class MetadataStore:
    """Behavioral tags (required roles, feature flags, ...) attached to handlers and their owners.

    Entries are keyed by the underlying function of a handler and by the owning class.
    Lookups check the handler first, then its owner (including the owner's base classes).

    >>> store = MetadataStore()
    >>> class Users:
    ...     def delete(self) -> None: ...
    >>> store.set(Users, "roles", ["admin"])
    >>> store.get(HandlerRef(Users.delete, owner=Users), "roles")
    ['admin']
    """

    __slots__ = ("_entries",)

    _entries: Dict[Any, Dict[str, Any]]

    def __init__(self) -> None:
        self._entries = {}

    @staticmethod
    def _normalize(target: Any) -> Any:
        if isinstance(target, HandlerRef):
            target = target.call
        if inspect.ismethod(target):
            target = target.__func__
        return target

    @staticmethod
    def _ancestors(target: Any) -> List[Any]:
        owner: Any = None
        if isinstance(target, HandlerRef):
            owner = target.owner
            if owner is None and inspect.ismethod(target.call):
                owner = type(target.call.__self__)
        elif inspect.ismethod(target):
            owner = type(target.__self__)
        elif inspect.isclass(target):
            return [base for base in target.__mro__[1:] if base is not object]
        if owner is None:
            return []
        if inspect.isclass(owner):
            return [base for base in owner.__mro__ if base is not object]
        return [owner]

    def set(self, target: Any, key: str, value: Any) -> None:
        self._entries.setdefault(self._normalize(target), {})[key] = value

    def get(
        self,
        target: Any,
        key: str,
        search_ancestors: bool = True,
        default: Any = None,
    ) -> Any:
        levels = [self._normalize(target)]
        if search_ancestors:
            levels.extend(self._ancestors(target))
        for level in levels:
            value = self._entries.get(level, {}).get(key, _MISSING)
            if value is not _MISSING:
                return value
        return default

    def get_all(self, target: Any, key: str) -> List[Any]:
        """Every value set for `key`, from the handler outwards"""
        values: List[Any] = []
        for level in [self._normalize(target), *self._ancestors(target)]:
            value = self._entries.get(level, {}).get(key, _MISSING)
            if value is not _MISSING:
                values.append(value)
        return values

    def tag(self, key: str, value: Any) -> Callable[[T], T]:
        """Decorator form of `set` for use where handlers or classes are defined"""

        def decorator(target: T) -> T:
            self.set(target, key, value)
            return target

        return decorator
