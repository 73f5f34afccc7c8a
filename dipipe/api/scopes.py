import enum


class Scope(enum.Enum):
    """Lifetime of a resolved instance.

    SINGLETON instances live as long as the container,
    REQUEST instances live as long as a single request
    and TRANSIENT instances are created for every injection and never cached.
    """

    SINGLETON = "singleton"
    REQUEST = "request"
    TRANSIENT = "transient"

    def __repr__(self) -> str:
        return f"Scope.{self.name}"
