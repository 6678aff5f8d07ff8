"""Listing and selecting the containers that belong to a project."""

from __future__ import annotations

import enum
from typing import Any, Callable, Iterable

from composekit.model import (
    CONTAINER_NUMBER_LABEL,
    ONEOFF_LABEL,
    PROJECT_LABEL,
    SEPARATOR,
    SERVICE_LABEL,
    Container,
    NotFoundError,
    ServiceConfig,
    get_canonical_container_name,
)

Filter = tuple[str, str]
ContainerPredicate = Callable[[Container], bool]


class OneOff(enum.Enum):
    """How one-off containers are treated when listing."""

    INCLUDE = "include"
    EXCLUDE = "exclude"
    ONLY = "only"


def project_filter(project_name: str) -> Filter:
    return ("label", f"{PROJECT_LABEL}={project_name}")


def service_filter(service_name: str) -> Filter:
    return ("label", f"{SERVICE_LABEL}={service_name}")


def one_off_filter(one_off: bool) -> Filter:
    return ("label", f"{ONEOFF_LABEL}={'True' if one_off else 'False'}")


def container_number_filter(number: int) -> Filter:
    return ("label", f"{CONTAINER_NUMBER_LABEL}={number}")


def get_default_filters(project_name: str, one_off: OneOff, *args: str) -> list[Filter]:
    filters = [project_filter(project_name)]
    if len(args) == 1:
        filters.append(service_filter(args[0]))
    if one_off is OneOff.ONLY:
        filters.append(one_off_filter(True))
    elif one_off is OneOff.EXCLUDE:
        filters.append(one_off_filter(False))
    return filters


def get_container_name(project_name: str, service: ServiceConfig, number: int) -> str:
    if service.container_name:
        return service.container_name
    return SEPARATOR.join([project_name, service.name, str(number)])


def is_service(*args: str) -> ContainerPredicate:
    return lambda c: c.labels.get(SERVICE_LABEL, "") in args


def is_not_service(*args: str) -> ContainerPredicate:
    return lambda c: c.labels.get(SERVICE_LABEL, "") not in args


def is_not_one_off(container: Container) -> bool:
    value = container.labels.get(ONEOFF_LABEL)
    return value is None or value == "False"


class Containers(list):
    """A list of containers with selection helpers."""

    def filter(self, predicate: ContainerPredicate) -> "Containers":
        return Containers(c for c in self if predicate(c))

    def names(self) -> list[str]:
        return [get_canonical_container_name(c) for c in self]

    def sorted(self) -> "Containers":
        """Sort in place by canonical name and return self."""
        self.sort(key=get_canonical_container_name)
        return self


class ComposeService:
    """Project operations on top of an engine client.

    The client must offer ``container_list(filters=..., all=...)`` returning
    an iterable of :class:`Container`.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def _list(self, filters: list[Filter], stopped: bool) -> Containers:
        listed: Iterable[Container] = self.client.container_list(filters=filters, all=stopped)
        return Containers(listed)

    def get_containers(self, project: str, one_off: OneOff, stopped: bool, *args: str) -> Containers:
        containers = self._list(get_default_filters(project, one_off, *args), stopped)
        if len(args) > 1:
            containers = containers.filter(is_service(*args))
        return containers

    def get_specified_container(
        self,
        project_name: str,
        one_off: OneOff,
        stopped: bool,
        service_name: str,
        container_index: int,
    ) -> Container:
        filters = get_default_filters(project_name, one_off, service_name)
        filters.append(container_number_filter(container_index))
        containers = self._list(filters, stopped)
        if not containers:
            raise NotFoundError(
                f'service "{service_name}" is not running container #{container_index}'
            )
        return containers[0]