"""Service dependency graph and dependency-ordered traversal."""

from __future__ import annotations

import enum
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable

from composekit.model import NotFoundError, Project, ServiceConfig

Visitor = Callable[[str], None]


class ServiceStatus(enum.Enum):
    """Lifecycle state of a service during a traversal."""

    STOPPED = 0
    STARTED = 1


class CycleError(ValueError):
    """The services depend on each other in a loop."""


@dataclass(eq=False, repr=False)
class Vertex:
    """A service in the dependency graph; children are its dependencies."""

    key: str
    service: str
    status: ServiceStatus = ServiceStatus.STOPPED
    children: dict[str, "Vertex"] = field(default_factory=dict)
    parents: dict[str, "Vertex"] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"Vertex(key={self.key!r}, service={self.service!r}, status={self.status}, "
            f"children={list(self.children)}, parents={list(self.parents)})"
        )


class Graph:
    """Services as vertices, with an edge from each service to its dependencies."""

    def __init__(self) -> None:
        self.vertices: dict[str, Vertex] = {}
        self._lock = threading.RLock()

    def add_vertex(self, key: str, service: str, initial_status: ServiceStatus) -> None:
        with self._lock:
            self.vertices[key] = Vertex(key=key, service=service, status=initial_status)

    def add_edge(self, source: str, destination: str) -> None:
        """Record that ``source`` depends on ``destination``."""
        with self._lock:
            source_vertex = self.vertices.get(source)
            destination_vertex = self.vertices.get(destination)
            if source_vertex is None:
                raise NotFoundError(f"could not find {source}")
            if destination_vertex is None:
                raise NotFoundError(f"could not find {destination}")
            if destination in source_vertex.children:
                return
            source_vertex.children[destination] = destination_vertex
            destination_vertex.parents[source] = source_vertex

    def leaves(self) -> list[Vertex]:
        """Vertices without dependencies."""
        with self._lock:
            return [v for v in self.vertices.values() if not v.children]

    def roots(self) -> list[Vertex]:
        """Vertices nothing depends on."""
        with self._lock:
            return [v for v in self.vertices.values() if not v.parents]

    def update_status(self, key: str, status: ServiceStatus) -> None:
        with self._lock:
            self.vertices[key].status = status

    def filter_children(self, key: str, status: ServiceStatus) -> list[Vertex]:
        with self._lock:
            return [c for c in self.vertices[key].children.values() if c.status is status]

    def filter_parents(self, key: str, status: ServiceStatus) -> list[Vertex]:
        with self._lock:
            return [p for p in self.vertices[key].parents.values() if p.status is status]

    def check_cycles(self) -> None:
        """Raise :class:`CycleError` if the graph has a dependency cycle."""
        discovered: set[str] = set()
        finished: set[str] = set()

        def visit(key: str, path: list[str]) -> None:
            discovered.add(key)
            for child in self.vertices[key].children.values():
                child_path = [*path, child.key]
                if child.key in discovered:
                    raise CycleError(f"cycle found: {' -> '.join(child_path)}")
                if child.key not in finished:
                    visit(child.key, child_path)
            discovered.discard(key)
            finished.add(key)

        with self._lock:
            for key in self.vertices:
                if key not in discovered and key not in finished:
                    visit(key, [key])


def new_graph(services: Iterable[ServiceConfig], initial_status: ServiceStatus) -> Graph:
    """Build the dependency graph of ``services``; dependencies outside it are ignored."""
    services = list(services)
    graph = Graph()
    for service in services:
        graph.add_vertex(service.name, service.name, initial_status)
    for service in services:
        for name in service.get_dependencies():
            try:
                graph.add_edge(service.name, name)
            except NotFoundError:
                pass
    graph.check_cycles()
    return graph


def _traverse(
    graph: Graph,
    fn: Visitor,
    start: list[Vertex],
    adjacent: Callable[[Vertex], Iterable[Vertex]],
    blockers: Callable[[str, ServiceStatus], list[Vertex]],
    blocking_status: ServiceStatus,
    target_status: ServiceStatus,
) -> None:
    seen: set[str] = set()

    def ready(nodes: Iterable[Vertex]) -> list[Vertex]:
        out = []
        for node in nodes:
            if blockers(node.key, blocking_status) or node.key in seen:
                continue
            seen.add(node.key)
            out.append(node)
        return out

    error: BaseException | None = None
    with ThreadPoolExecutor() as pool:
        pending: dict[Future, Vertex] = {pool.submit(fn, v.service): v for v in ready(start)}
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                node = pending.pop(future)
                exc = future.exception()
                if exc is not None:
                    error = error or exc
                    continue
                if error is not None:
                    continue
                graph.update_status(node.key, target_status)
                for nxt in ready(list(adjacent(node))):
                    pending[pool.submit(fn, nxt.service)] = nxt
    if error is not None:
        raise error


def in_dependency_order(project: Project, fn: Visitor) -> None:
    """Call ``fn`` on each service name once all of its dependencies were visited."""
    graph = new_graph(project.services, ServiceStatus.STOPPED)
    _traverse(
        graph,
        fn,
        graph.leaves(),
        lambda v: v.parents.values(),
        graph.filter_children,
        ServiceStatus.STOPPED,
        ServiceStatus.STARTED,
    )


def in_reverse_dependency_order(project: Project, fn: Visitor) -> None:
    """Call ``fn`` on each service name once every service depending on it was visited."""
    graph = new_graph(project.services, ServiceStatus.STARTED)
    _traverse(
        graph,
        fn,
        graph.roots(),
        lambda v: v.children.values(),
        graph.filter_parents,
        ServiceStatus.STARTED,
        ServiceStatus.STOPPED,
    )