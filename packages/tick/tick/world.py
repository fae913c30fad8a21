"""World - entity and component storage with queries."""

from __future__ import annotations

import dataclasses
from typing import Any, Generator, TypeVar, cast

from tick.types import DeadEntityError, EntityId, SnapshotError

T = TypeVar("T")


class World:
    def __init__(self) -> None:
        self._components: dict[type, dict[int, Any]] = {}
        self._next_id: int = 0
        self._alive: set[int] = set()
        self._registry: dict[str, type] = {}

    def spawn(self) -> EntityId:
        eid = self._next_id
        self._next_id += 1
        self._alive.add(eid)
        return eid

    def despawn(self, entity_id: EntityId) -> None:
        """Remove an entity and all its components. Unknown ids are ignored."""
        self._alive.discard(entity_id)
        for store in self._components.values():
            store.pop(entity_id, None)

    def _register(self, ctype: type) -> None:
        key = f"{ctype.__module__}.{ctype.__qualname__}"
        self._registry[key] = ctype

    def register_component(self, ctype: type) -> None:
        """Explicit registration for cross-process restore."""
        self._register(ctype)

    def attach(self, entity_id: EntityId, component: Any) -> None:
        ctype = type(component)
        if entity_id not in self._alive:
            raise DeadEntityError(
                entity_id,
                f"Cannot attach {ctype.__name__} to dead entity {entity_id}",
            )
        self._register(ctype)
        self._components.setdefault(ctype, {})[entity_id] = component

    def detach(self, entity_id: EntityId, component_type: type) -> None:
        store = self._components.get(component_type)
        if store is not None:
            store.pop(entity_id, None)

    def get(self, entity_id: EntityId, component_type: type[T]) -> T:
        if entity_id not in self._alive:
            raise DeadEntityError(
                entity_id, f"Entity {entity_id} is not alive"
            )
        store = self._components.get(component_type)
        if store is None or entity_id not in store:
            raise KeyError(
                f"Entity {entity_id} has no {component_type.__name__} component"
            )
        return cast(T, store[entity_id])

    def find(self, entity_id: EntityId, component_type: type[T]) -> T | None:
        """Like :meth:`get` but returns None for dead entities or missing components."""
        if entity_id not in self._alive:
            return None
        store = self._components.get(component_type)
        if store is None:
            return None
        return cast("T | None", store.get(entity_id))

    def has(self, entity_id: EntityId, component_type: type) -> bool:
        if entity_id not in self._alive:
            return False
        store = self._components.get(component_type)
        return store is not None and entity_id in store

    def query(
        self, *ctypes: type
    ) -> Generator[tuple[EntityId, tuple[Any, ...]], None, None]:
        """Yield ``(eid, components)`` for live entities holding every type.

        Iteration follows ascending entity id so results are reproducible.
        """
        if not ctypes:
            return
        stores = [self._components.get(ct) for ct in ctypes]
        if any(s is None for s in stores):
            return
        base = min(stores, key=len)
        for eid in sorted(base):
            if eid not in self._alive:
                continue
            components: list[Any] = []
            for store in stores:
                if eid not in store:
                    break
                components.append(store[eid])
            else:
                yield eid, tuple(components)

    def entities(self) -> frozenset[EntityId]:
        return frozenset(self._alive)

    def alive(self, entity_id: EntityId) -> bool:
        return entity_id in self._alive

    # -- Snapshot / restore --

    def snapshot(self) -> dict[str, Any]:
        components: dict[str, dict[str, dict[str, Any]]] = {}
        for ctype, store in self._components.items():
            if not store:
                continue
            key = f"{ctype.__module__}.{ctype.__qualname__}"
            if not dataclasses.is_dataclass(ctype):
                raise TypeError(
                    f"Cannot snapshot non-dataclass component {ctype.__qualname__}"
                )
            components[key] = {
                str(eid): dataclasses.asdict(comp)
                for eid, comp in store.items()
                if eid in self._alive
            }
        return {
            "entities": sorted(self._alive),
            "next_id": self._next_id,
            "components": components,
        }

    def restore(self, data: dict[str, Any]) -> None:
        alive = set(data["entities"])
        restored: dict[type, dict[int, Any]] = {}
        for type_name, store_data in data["components"].items():
            ctype = self._registry.get(type_name)
            if ctype is None:
                raise SnapshotError(
                    f"Unregistered component type: {type_name!r}"
                )
            restored[ctype] = {
                int(eid_str): ctype(**fields)
                for eid_str, fields in store_data.items()
            }
        self._alive = alive
        self._next_id = data["next_id"]
        self._components = restored
