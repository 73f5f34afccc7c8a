from typing import Dict, Iterable, List, TypeVar

from graphlib2 import CycleError, TopologicalSorter

from dipipe.exceptions import ModuleCycleError

T = TypeVar("T")


def topsort(graph: Dict[T, List[T]]) -> Iterable[Iterable[T]]:
    ts = TopologicalSorter(graph)
    try:
        ts.prepare()
    except CycleError as e:
        cycle = list(e.args[1]) if len(e.args) > 1 else []
        raise ModuleCycleError(
            "Module imports are in a cycle: "
            + " -> ".join(repr(node) for node in cycle),
            cycle,
        ) from e
    result: List[Iterable[T]] = []
    while ts.is_active():
        ready = ts.get_ready()
        result.append(ready)
        ts.done(*ready)
    return result
