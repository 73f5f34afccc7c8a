from dipipe.container._container import Container
from dipipe.container._module import Module, ModuleGraph
from dipipe.container._registry import ProviderRegistry
from dipipe.container._resolver import Resolver
from dipipe.container._scope_manager import ScopeManager
from dipipe.container._state import RequestScope

__all__ = (
    "Container",
    "Module",
    "ModuleGraph",
    "ProviderRegistry",
    "RequestScope",
    "Resolver",
    "ScopeManager",
)
