# registry.py
from __future__ import annotations

from typing import Callable, Dict, Generic, List, TypeVar

from .errors import ConfigError

T = TypeVar("T")


class Registry(Generic[T]):
    """
    Name -> implementation map, filled at import/load time and resolved
    once when a pipeline is parsed or planned, never during execution.

    Example:
        plungers: Registry[PlungerFn] = Registry("plunger", UNKNOWN_PLUNGER)
        plungers.register("simpleEcho", simple_echo)
        fn = plungers.get("simpleEcho")
    """

    def __init__(self, what: str, missing_kind: str):
        self._items: Dict[str, T] = {}
        self._what = what
        self._missing_kind = missing_kind

    def register(self, name: str, item: T) -> T:
        self._items[name] = item
        return item

    def entry(self, name: str) -> Callable[[T], T]:
        """Decorator form of register()."""
        def deco(item: T) -> T:
            return self.register(name, item)
        return deco

    def get(self, name: str) -> T:
        if name not in self._items:
            raise ConfigError(
                kind=self._missing_kind,
                message=f"Unknown {self._what} '{name}'",
                details={"available": ", ".join(self.names()) or "<none>"},
            )
        return self._items[name]

    def has(self, name: str) -> bool:
        return name in self._items

    def names(self) -> List[str]:
        return sorted(self._items)

    def copy(self) -> Registry[T]:
        out: Registry[T] = Registry(self._what, self._missing_kind)
        out._items = dict(self._items)
        return out
