"""Service definitions and an in-memory service registry."""

from __future__ import annotations

import copy
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


class NotFoundError(LookupError):
    """Raised when a service is not known to the registry."""


def _mapping(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"invalid {what} definition")
    return data


def _str_map(data: Any) -> dict[str, str]:
    if not data:
        return {}
    return {str(k): str(v) for k, v in _mapping(data, "metadata").items()}


@dataclass
class Value:
    """A named, typed field of a request or response, possibly nested."""

    name: str = ""
    type: str = ""
    values: list["Value"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Value"]:
        if data is None:
            return None
        data = _mapping(data, "value")
        return cls(
            name=str(data.get("name") or ""),
            type=str(data.get("type") or ""),
            values=[cls.from_dict(v) for v in data.get("values") or [] if v is not None],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "values": [v.to_dict() for v in self.values],
        }


@dataclass
class Endpoint:
    """An endpoint a service exposes."""

    name: str = ""
    request: Optional[Value] = None
    response: Optional[Value] = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Endpoint":
        data = _mapping(data, "endpoint")
        return cls(
            name=str(data.get("name") or ""),
            request=Value.from_dict(data.get("request")),
            response=Value.from_dict(data.get("response")),
            metadata=_str_map(data.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "request": self.request.to_dict() if self.request else None,
            "response": self.response.to_dict() if self.response else None,
            "metadata": dict(self.metadata),
        }


@dataclass
class Node:
    """One running instance of a service."""

    id: str = ""
    address: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Node":
        data = _mapping(data, "node")
        return cls(
            id=str(data.get("id") or ""),
            address=str(data.get("address") or ""),
            metadata=_str_map(data.get("metadata")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "address": self.address, "metadata": dict(self.metadata)}


@dataclass
class Service:
    """A named, versioned service with its endpoints and nodes."""

    name: str = ""
    version: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    endpoints: list[Endpoint] = field(default_factory=list)
    nodes: list[Node] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Service":
        data = _mapping(data, "service")
        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            metadata=_str_map(data.get("metadata")),
            endpoints=[Endpoint.from_dict(e) for e in data.get("endpoints") or []],
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "metadata": dict(self.metadata),
            "endpoints": [e.to_dict() for e in self.endpoints],
            "nodes": [n.to_dict() for n in self.nodes],
        }


class MemoryRegistry:
    """A thread-safe registry keeping services in memory, by name and version."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._services: dict[str, dict[str, Service]] = {}

    def register(self, service: Service) -> None:
        with self._lock:
            versions = self._services.setdefault(service.name, {})
            existing = versions.get(service.version)
            if existing is None:
                versions[service.version] = copy.deepcopy(service)
                return
            nodes = {node.id: node for node in existing.nodes}
            for node in service.nodes:
                nodes[node.id] = copy.deepcopy(node)
            existing.nodes = list(nodes.values())
            existing.endpoints = copy.deepcopy(service.endpoints)
            existing.metadata = dict(service.metadata)

    def deregister(self, service: Service) -> None:
        with self._lock:
            versions = self._services.get(service.name)
            if not versions or service.version not in versions:
                return
            existing = versions[service.version]
            removed = {node.id for node in service.nodes}
            existing.nodes = [n for n in existing.nodes if n.id not in removed]
            if not existing.nodes:
                del versions[service.version]
            if not versions:
                del self._services[service.name]

    def get_service(self, name: str) -> list[Service]:
        with self._lock:
            versions = self._services.get(name)
            if not versions:
                raise NotFoundError("service not found")
            return [copy.deepcopy(s) for s in versions.values()]

    def list_services(self) -> list[Service]:
        with self._lock:
            return [
                copy.deepcopy(s)
                for versions in self._services.values()
                for s in versions.values()
            ]


_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def camel_to_snake(name: str) -> str:
    """Convert a CamelCase identifier to snake_case."""
    name = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    name = _WORD_BOUNDARY.sub(r"\1_\2", name)
    return name.lower()


def format_endpoint(value: Value, depth: int) -> str:
    """Render a request or response field, indented by depth plus one tab."""
    tabs = "\t" * (depth + 1)
    head = f"{tabs}{camel_to_snake(value.name)} {value.type}"
    if not value.values:
        return head + "\n"
    inner = "".join(format_endpoint(v, depth + 1) for v in value.values)
    return f"{head} {{\n{inner}{tabs}}}\n"


def sort_services(services: Iterable[Service]) -> list[Service]:
    """Return the services ordered by name."""
    return sorted(services, key=lambda s: s.name)