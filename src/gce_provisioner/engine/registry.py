"""Adapter registry for resource-kind dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gce_provisioner.engine.errors import UnknownResourceKindError

if TYPE_CHECKING:
    from gce_provisioner.engine.adapters import ResourceAdapter


class AdapterRegistry:
    """Registry mapping resource kind -> adapter."""

    def __init__(self) -> None:
        self._adapters: dict[str, ResourceAdapter] = {}

    def register(self, kind: str, adapter: ResourceAdapter) -> None:
        if not kind:
            raise ValueError("Resource kind must be a non-empty string")
        if kind in self._adapters:
            raise ValueError(f"Resource kind already registered: {kind}")
        self._adapters[kind] = adapter

    def get(self, kind: str) -> ResourceAdapter:
        try:
            return self._adapters[kind]
        except KeyError as e:
            raise UnknownResourceKindError(kind) from e

    def __contains__(self, kind: object) -> bool:
        return kind in self._adapters

    def kinds(self) -> list[str]:
        return sorted(self._adapters)
