from typing import Iterable

from dipipe.api.providers import Token, token_repr


def get_path_str(path: Iterable[Token]) -> str:
    return " -> ".join(token_repr(token) for token in path)
