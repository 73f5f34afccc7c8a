import functools
import inspect
from typing import (
    Annotated,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from dipipe._utils.types import Some


def unwrap_callable(call: Any) -> Any:
    unwrapped = True
    while unwrapped:
        unwrapped = False
        if isinstance(call, functools.partial):
            call = call.func
            unwrapped = True
            continue
        if getattr(call, "__wrapped__", None):
            # maybe function wrapped with @wraps
            call = getattr(call, "__wrapped__")
            unwrapped = True
            continue
    return call


def is_async_gen_callable(call: Callable[..., Any]) -> bool:
    unwrapped_call = unwrap_callable(call)
    if inspect.isasyncgenfunction(unwrapped_call):
        return True
    dunder_call = getattr(unwrapped_call, "__call__", None)
    return inspect.isasyncgenfunction(dunder_call)


def is_gen_callable(call: Any) -> bool:
    unwrapped_call = unwrap_callable(call)
    if inspect.isgeneratorfunction(unwrapped_call):
        return True
    dunder_call = getattr(unwrapped_call, "__call__", None)
    return inspect.isgeneratorfunction(dunder_call)


def fix_annotated_optional_type_hints(hints: Dict[str, Any]) -> Dict[str, Any]:
    """https://github.com/python/cpython/issues/90353"""
    for param_name, hint in hints.items():
        args = get_args(hint)
        if get_origin(hint) is Union and get_origin(next(iter(args))) is Annotated:
            hints[param_name] = next(iter(args))
    return hints


def get_init_parameters(cls: Callable[..., Any]) -> List[inspect.Parameter]:
    """Positional parameters of cls.__init__ with string annotations evaluated"""
    params: Mapping[str, inspect.Parameter]
    if inspect.isclass(cls) and cls.__init__ is object.__init__:  # type: ignore[misc]
        return []
    if inspect.isclass(cls) and (cls.__new__ is not object.__new__):  # type: ignore[comparison-overlap]
        # classes overriding __new__, including some generic metaclasses, result in __new__ getting read
        # instead of __init__
        params = dict(inspect.signature(cls.__init__).parameters)  # type: ignore[misc]
        params.pop(next(iter(params.keys())))  # first parameter to __init__ is self
    else:
        params = inspect.signature(cls).parameters
    types_from = cls.__init__ if inspect.isclass(cls) else cls  # type: ignore[misc]
    hints = fix_annotated_optional_type_hints(
        get_type_hints(types_from, include_extras=True)
    )
    processed: List[inspect.Parameter] = []
    for param_name, param in params.items():
        if param.kind not in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            continue
        processed.append(
            param.replace(annotation=hints.get(param_name, param.annotation))
        )
    return processed


def get_type(param: inspect.Parameter) -> Optional[Some[Any]]:
    annotation = param.annotation
    if annotation is param.empty:
        return None
    if get_origin(annotation) is Annotated:
        annotation = next(iter(get_args(annotation)))
    return Some(annotation)
