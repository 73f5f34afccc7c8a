from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from dipipe._utils.topsort import topsort
from dipipe.api.providers import (
    AliasProvider,
    ProviderDefinition,
    Token,
    token_repr,
)
from dipipe.container._registry import ProviderRegistry
from dipipe.exceptions import CircularDependencyError, TokenNotFoundError

Binding = Tuple["Module", ProviderDefinition]


class Module:
    """A group of providers with import/export visibility rules.

    A module can see its own providers and whatever its direct imports export.
    Exports are not transitive: to pass an imported token on, list it
    (or the imported module) in `exports`.
    Global modules export to every module without an explicit import.
    """

    __slots__ = ("name", "registry", "imports", "exports", "is_global")

    def __init__(
        self,
        name: str,
        *,
        providers: Iterable[ProviderDefinition] = (),
        imports: Sequence["Module"] = (),
        exports: Iterable[Union[Token, "Module"]] = (),
        is_global: bool = False,
    ) -> None:
        self.name = name
        self.registry = ProviderRegistry(providers, owner=repr(self))
        self.imports = list(imports)
        self.exports = list(exports)
        self.is_global = is_global

    def register(self, definition: ProviderDefinition) -> None:
        self.registry.register(definition)

    def __repr__(self) -> str:
        return f"Module({self.name!r})"


def _collect(root: Module) -> Dict[Module, List[Module]]:
    graph: Dict[Module, List[Module]] = {}
    stack = [root]
    while stack:
        module = stack.pop()
        if module in graph:
            continue
        graph[module] = list(module.imports)
        stack.extend(reversed(module.imports))
    return graph


class ModuleGraph:
    """Which tokens each module can resolve, and which module provides them.

    Built once from a root module; the graph and the registries
    of every module in it are frozen afterwards.
    """

    __slots__ = ("root", "modules", "_exported", "_visible")

    _exported: Dict[Module, Dict[Token, Binding]]
    _visible: Dict[Module, Dict[Token, Binding]]

    def __init__(self, root: Module) -> None:
        self.root = root
        graph = _collect(root)
        self.modules: List[Module] = [
            module for group in topsort(graph) for module in group
        ]
        self._exported = {}
        self._visible = {}
        # exports only depend on own providers and imports,
        # so they can be computed imports-first in a single pass
        for module in self.modules:
            self._exported[module] = self._compute_exports(module)
        globals_ = [module for module in self.modules if module.is_global]
        for module in self.modules:
            visible = self._from_imports(module)
            for global_module in globals_:
                if global_module is module:
                    continue
                for token, binding in self._exported[global_module].items():
                    visible.setdefault(token, binding)
            visible.update(self._own(module))
            self._visible[module] = visible
        for module in self.modules:
            module.registry.freeze()
        for module in self.modules:
            for definition in module.registry:
                if isinstance(definition, AliasProvider):
                    self.follow_aliases(module, definition.token)

    def _own(self, module: Module) -> Dict[Token, Binding]:
        return {definition.token: (module, definition) for definition in module.registry}

    def _from_imports(self, module: Module) -> Dict[Token, Binding]:
        visible: Dict[Token, Binding] = {}
        for imported in module.imports:
            for token, binding in self._exported[imported].items():
                visible.setdefault(token, binding)
        return visible

    def _compute_exports(self, module: Module) -> Dict[Token, Binding]:
        visible = self._from_imports(module)
        visible.update(self._own(module))
        exported: Dict[Token, Binding] = {}
        for export in module.exports:
            if isinstance(export, Module):
                if export not in module.imports:
                    raise TokenNotFoundError(
                        f"{module!r} re-exports {export!r} but does not import it",
                        path=[],
                    )
                exported.update(self._exported[export])
                continue
            if export not in visible:
                raise TokenNotFoundError(
                    f"{module!r} exports {token_repr(export)} but neither provides nor imports it",
                    path=[export],
                )
            exported[export] = visible[export]
        return exported

    def _check_module(self, module: Module) -> None:
        if module not in self._visible:
            raise ValueError(f"{module!r} is not part of the module graph of {self.root!r}")

    def can_resolve(self, module: Module, token: Token) -> bool:
        self._check_module(module)
        return token in self._visible[module]

    def lookup(self, module: Module, token: Token) -> Optional[Binding]:
        self._check_module(module)
        return self._visible[module].get(token)

    def exports_of(self, module: Module) -> List[Token]:
        self._check_module(module)
        return list(self._exported[module])

    def follow_aliases(self, module: Module, token: Token) -> Binding:
        """Find the non-alias provider `token` stands for, as seen from `module`"""
        path: List[Token] = [token]
        seen: List[Tuple[Module, Token]] = []
        current_module = module
        current_token = token
        while True:
            binding = self.lookup(current_module, current_token)
            if binding is None:
                raise TokenNotFoundError(
                    f"{token_repr(current_token)} is not visible from {current_module!r}"
                    f"\nPath: {' -> '.join(token_repr(t) for t in path)}",
                    path=path,
                )
            owner, definition = binding
            if not isinstance(definition, AliasProvider):
                return binding
            if (owner, definition.token) in seen:
                raise CircularDependencyError(
                    "Aliases are in a cycle: "
                    + " -> ".join(token_repr(t) for t in path),
                    path=path,
                )
            seen.append((owner, definition.token))
            path.append(definition.alias_of)
            current_module = owner
            current_token = definition.alias_of
