from importlib import import_module
from typing import Any

from ape import plugins


@plugins.register(plugins.Config)
def config_class():
    from .config import CoordinatorConfig

    return CoordinatorConfig


def __getattr__(name: str) -> Any:
    if name == "CoordinatorContext":
        from .context import CoordinatorContext

        return CoordinatorContext

    elif name in ("ChainGateway", "ApeChainGateway"):
        return getattr(import_module("ape_safe_coordinator.gateway"), name)

    elif name in ("TransactionStore", "SafeStore"):
        module = "store" if name == "TransactionStore" else "safes"
        return getattr(import_module(f"ape_safe_coordinator.{module}"), name)

    else:
        raise AttributeError(name)


__all__ = [
    "ApeChainGateway",
    "ChainGateway",
    "CoordinatorContext",
    "SafeStore",
    "TransactionStore",
]
