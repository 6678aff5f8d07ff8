import threading
from collections import Counter

import pytest

from composekit.dependencies import (
    CycleError,
    Graph,
    ServiceStatus,
    in_dependency_order,
    in_reverse_dependency_order,
    new_graph,
)
from composekit.model import NotFoundError, Project, ServiceConfig, ServiceDependency


def chain_project():
    return Project(
        services=[
            ServiceConfig(name="test1", depends_on={"test2": ServiceDependency()}),
            ServiceConfig(name="test2", depends_on={"test3": ServiceDependency()}),
            ServiceConfig(name="test3"),
        ]
    )


def test_traversal_with_multiple_parents():
    dependent = ServiceConfig(name="dependent")
    project = Project(services=[dependent])
    for i in range(1, 101):
        name = f"svc_{i}"
        dependent.depends_on[name] = ServiceDependency()
        project.services.append(ServiceConfig(name=name))

    seen = Counter()
    lock = threading.Lock()

    def visit(service):
        with lock:
            seen[service] += 1

    in_dependency_order(project, visit)
    graph = new_graph(project.services, ServiceStatus.STOPPED)
    assert set(seen) == set(graph.vertices)
    assert len(graph.vertices) == 101
    assert all(count == 1 for count in seen.values())


def test_traversal_with_multiple_parents_visits_dependent_last():
    dependent = ServiceConfig(name="dependent")
    project = Project(services=[dependent])
    for i in range(1, 11):
        dependent.depends_on[f"svc_{i}"] = ServiceDependency()
        project.services.append(ServiceConfig(name=f"svc_{i}"))
    order = []
    lock = threading.Lock()

    def visit(service):
        with lock:
            order.append(service)

    in_dependency_order(project, visit)
    graph = new_graph(project.services, ServiceStatus.STOPPED)
    roots = [v.key for v in graph.roots()]
    assert roots == ["dependent"]
    assert order[-1] == roots[0]
    assert sorted(order) == sorted(graph.vertices)


def test_in_dependency_up_command_order():
    order = []
    in_dependency_order(chain_project(), order.append)
    assert order == ["test3", "test2", "test1"]


def test_in_dependency_reverse_down_command_order():
    order = []
    in_reverse_dependency_order(chain_project(), order.append)
    assert order == ["test1", "test2", "test3"]


def _edges(vertex):
    return set(vertex.children), set(vertex.parents)


@pytest.mark.parametrize(
    "services, expected",
    [
        (
            [ServiceConfig(name="test")],
            {"test": (set(), set())},
        ),
        (
            [ServiceConfig(name="test"), ServiceConfig(name="another")],
            {"test": (set(), set()), "another": (set(), set())},
        ),
        (
            [
                ServiceConfig(name="test", depends_on={"another": ServiceDependency()}),
                ServiceConfig(name="another"),
            ],
            {"test": ({"another"}, set()), "another": (set(), {"test"})},
        ),
        (
            [
                ServiceConfig(name="test", depends_on={"another": ServiceDependency()}),
                ServiceConfig(name="another", depends_on={"another_dep": ServiceDependency()}),
                ServiceConfig(name="another_dep"),
            ],
            {
                "test": ({"another"}, set()),
                "another": ({"another_dep"}, {"test"}),
                "another_dep": (set(), {"another"}),
            },
        ),
    ],
    ids=["single", "two-separate", "one-dependency", "multiple-levels"],
)
def test_build_graph(services, expected):
    graph = new_graph(services, ServiceStatus.STOPPED)
    assert set(graph.vertices) == set(expected)
    for key, vertex in graph.vertices.items():
        assert vertex.key == key
        assert vertex.service == key
        assert vertex.status is ServiceStatus.STOPPED
        assert _edges(vertex) == expected[key]


def test_new_graph_detects_cycle():
    services = [
        ServiceConfig(name="a", depends_on={"b": ServiceDependency()}),
        ServiceConfig(name="b", depends_on={"a": ServiceDependency()}),
    ]
    with pytest.raises(CycleError, match="cycle found"):
        new_graph(services, ServiceStatus.STOPPED)


def test_new_graph_ignores_unknown_dependency():
    graph = new_graph(
        [ServiceConfig(name="a", depends_on={"missing": ServiceDependency()})],
        ServiceStatus.STOPPED,
    )
    assert list(graph.vertices) == ["a"]
    assert graph.vertices["a"].children == {}


def test_add_edge_unknown_vertex_raises():
    graph = Graph()
    graph.add_vertex("a", "a", ServiceStatus.STOPPED)
    with pytest.raises(NotFoundError, match="could not find b"):
        graph.add_edge("a", "b")
    with pytest.raises(NotFoundError, match="could not find z"):
        graph.add_edge("z", "a")


def test_leaves_roots_and_filters():
    graph = new_graph(chain_project().services, ServiceStatus.STOPPED)
    assert [v.key for v in graph.leaves()] == ["test3"]
    assert [v.key for v in graph.roots()] == ["test1"]
    assert [v.key for v in graph.filter_children("test2", ServiceStatus.STOPPED)] == ["test3"]
    graph.update_status("test3", ServiceStatus.STARTED)
    assert graph.filter_children("test2", ServiceStatus.STOPPED) == []
    assert [v.key for v in graph.filter_parents("test2", ServiceStatus.STOPPED)] == ["test1"]


def test_visitor_error_stops_traversal():
    visited = []

    def visit(service):
        visited.append(service)
        if service == "test2":
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        in_dependency_order(chain_project(), visit)
    assert "test1" not in visited