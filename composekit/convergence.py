"""Reconciling service containers: scaling, links and waiting on dependencies."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, Mapping

from composekit.containers import ComposeService, Containers, OneOff
from composekit.create import get_dependent_service_from_mode
from composekit.model import (
    CONTAINER_NUMBER_LABEL,
    NETWORK_MODE_CONTAINER_PREFIX,
    ONEOFF_LABEL,
    SEPARATOR,
    SERVICE_CONDITION_COMPLETED_SUCCESSFULLY,
    SERVICE_CONDITION_HEALTHY,
    SERVICE_CONDITION_RUNNING_OR_HEALTHY,
    SERVICE_CONDITION_STARTED,
    SERVICE_LABEL,
    Container,
    NotFoundError,
    Project,
    ServiceConfig,
    ServiceDependency,
    get_canonical_container_name,
    get_container_name_without_project,
)

logger = logging.getLogger(__name__)

EXT_LIFECYCLE = "x-lifecycle"
FORCE_RECREATE = "force_recreate"

DOUBLED_CONTAINER_NAME_WARNING = (
    'WARNING: The "{service}" service is using the custom container name "{container}". '
    "Docker requires each container to have a unique name. "
    "Remove the custom name to scale the service.\n"
)

HEALTH_HEALTHY = "healthy"
HEALTH_UNHEALTHY = "unhealthy"
HEALTH_STARTING = "starting"


class ScaleError(ValueError):
    """A service cannot run the requested number of containers."""


def get_scale(service: ServiceConfig) -> int:
    """Number of containers the service should run."""
    scale = 1
    if service.deploy is not None and service.deploy.replicas is not None:
        scale = int(service.deploy.replicas)
    if scale > 1 and service.container_name:
        raise ScaleError(
            DOUBLED_CONTAINER_NAME_WARNING.format(
                service=service.name, container=service.container_name
            )
        )
    return scale


def update_services(service: ServiceConfig, containers: Iterable[Container]) -> None:
    """Point ``service:`` references and links of ``service`` at converged containers."""
    containers = list(containers)
    if not containers:
        return
    first = containers[0]
    converged = first.labels.get(SERVICE_LABEL, "")
    reference = NETWORK_MODE_CONTAINER_PREFIX + first.id

    if get_dependent_service_from_mode(service.network_mode) == converged:
        service.network_mode = reference
    if get_dependent_service_from_mode(service.ipc) == converged:
        service.ipc = reference
    if get_dependent_service_from_mode(service.pid) == converged:
        service.pid = reference

    links: list[str] = []
    for service_link in service.links:
        parts = service_link.split(":")
        link_service = service_link
        alias = ""
        if len(parts) == 2:
            link_service, alias = parts
        if link_service != service.name:
            links.append(service_link)
            continue
        for container in containers:
            name = get_canonical_container_name(container)
            if alias:
                links.append(f"{name}:{alias}")
            links.append(f"{name}:{name}")
            links.append(f"{name}:{get_container_name_without_project(container)}")
        service.links = list(links)


def next_container_number(containers: Iterable[Container]) -> int:
    """One more than the highest container number label; 1 for no containers."""
    highest = 0
    for container in containers:
        number = int(container.labels.get(CONTAINER_NUMBER_LABEL, ""))
        highest = max(highest, number)
    return highest + 1


def get_container_progress_name(container: Container) -> str:
    return "Container " + get_canonical_container_name(container)


def should_wait_for_dependency(
    service_name: str, dependency: ServiceDependency, project: Project
) -> bool:
    """Whether starting a service must wait on the condition of ``service_name``."""
    if dependency.condition == SERVICE_CONDITION_STARTED:
        # already handled by starting services in dependency order
        return False
    try:
        service = project.get_service(service_name)
    except NotFoundError:
        if any(ds.name == service_name for ds in project.disabled_services):
            return False
        raise
    return service.scale != 0


def set_dependent_lifecycle(project: Project, service: str, strategy: str) -> None:
    """Set the lifecycle strategy of every service depending on ``service``."""
    for candidate in project.services:
        if service in candidate.get_dependencies():
            candidate.extensions[EXT_LIFECYCLE] = strategy


def short_id_alias_exists(container_id: str, *args: str) -> bool:
    short_id = container_id[:12]
    return any(alias == short_id for alias in args)


def get_links(
    compose: ComposeService, project_name: str, service: ServiceConfig, number: int
) -> list[str]:
    """Legacy container links for container ``number`` of ``service``."""

    def service_containers(name: str) -> Containers:
        return compose.get_containers(project_name, OneOff.EXCLUDE, True, name)

    links: list[str] = []
    for raw_link in service.links:
        parts = raw_link.split(":")
        link_service = parts[0]
        link_name = parts[1] if len(parts) == 2 else link_service
        for container in service_containers(link_service):
            name = get_canonical_container_name(container)
            links.extend(
                [
                    f"{name}:{link_name}",
                    f"{name}:{link_service}{SEPARATOR}{number}",
                    f"{name}:{SEPARATOR.join([project_name, link_service, str(number)])}",
                ]
            )

    if service.labels.get(ONEOFF_LABEL) == "True":
        prefix = project_name + SEPARATOR
        for container in service_containers(service.name):
            name = get_canonical_container_name(container)
            short = name[len(prefix):] if name.startswith(prefix) else name
            links.extend([f"{name}:{service.name}", f"{name}:{short}", f"{name}:{name}"])

    for raw_link in service.external_links:
        parts = raw_link.split(":")
        external = parts[0]
        link_name = parts[1] if len(parts) == 2 else external
        links.append(f"{external}:{link_name}")
    return links


def _state(inspected: Mapping[str, Any]) -> Mapping[str, Any] | None:
    return inspected.get("State")


def is_service_healthy(
    compose: ComposeService, project: Project, service: str, fallback_running: bool
) -> bool:
    """Whether every container of ``service`` reports healthy.

    The client's ``container_inspect(id)`` returns the engine's inspect
    document, with ``Config.Healthcheck`` and ``State`` (``Status``,
    ``ExitCode``, ``Health.Status``).
    """
    containers = compose.get_containers(project.name, OneOff.EXCLUDE, False, service)
    if not containers:
        return False
    for container in containers:
        inspected = compose.client.container_inspect(container.id)
        state = _state(inspected)
        config = inspected.get("Config") or {}
        if config.get("Healthcheck") is None and fallback_running:
            # no health check defined: being up is good enough
            return state is not None and state.get("Status") == "running"
        health = state.get("Health") if state is not None else None
        if health is None:
            raise RuntimeError(f'container for service "{service}" has no healthcheck configured')
        status = health.get("Status", "")
        if status == HEALTH_HEALTHY:
            continue
        if status == HEALTH_UNHEALTHY:
            raise RuntimeError(f'container for service "{service}" is unhealthy')
        if status == HEALTH_STARTING:
            return False
        raise RuntimeError(
            f'container for service "{service}" had unexpected health status "{status}"'
        )
    return True


def is_service_completed(
    compose: ComposeService, project: Project, dependency: str
) -> tuple[bool, int]:
    """Whether a container of ``dependency`` has exited, and its exit code."""
    containers = compose.get_containers(project.name, OneOff.EXCLUDE, True, dependency)
    for container in containers:
        state = _state(compose.client.container_inspect(container.id))
        if state is not None and state.get("Status") == "exited":
            return True, int(state.get("ExitCode", 0))
    return False, 0


def wait_dependencies(
    compose: ComposeService,
    project: Project,
    dependencies: Mapping[str, ServiceDependency],
    poll_interval: float = 0.5,
) -> None:
    """Block until every dependency meets its ``depends_on`` condition."""
    waiting = [
        (name, dependency)
        for name, dependency in dependencies.items()
        if should_wait_for_dependency(name, dependency, project)
    ]
    if not waiting:
        return

    stop = threading.Event()

    def watch(name: str, dependency: ServiceDependency) -> None:
        condition = dependency.condition
        while not stop.wait(poll_interval):
            if condition == SERVICE_CONDITION_RUNNING_OR_HEALTHY:
                if is_service_healthy(compose, project, name, True):
                    return
            elif condition == SERVICE_CONDITION_HEALTHY:
                if is_service_healthy(compose, project, name, False):
                    return
            elif condition == SERVICE_CONDITION_COMPLETED_SUCCESSFULLY:
                exited, code = is_service_completed(compose, project, name)
                if exited:
                    if code != 0:
                        raise RuntimeError(
                            f'service "{name}" didn\'t completed successfully: exit {code}'
                        )
                    return
            else:
                logger.warning("unsupported depends_on condition: %s", condition)
                return

    with ThreadPoolExecutor(max_workers=len(waiting)) as pool:
        futures = [pool.submit(watch, name, dependency) for name, dependency in waiting]
        try:
            for future in as_completed(futures):
                future.result()
        finally:
            stop.set()