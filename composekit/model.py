"""Compose project model: services, networks, volumes, projects and containers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import timedelta
from typing import Any

import yaml

SEPARATOR = "-"
COMPOSE_VERSION = "2.12.0"

PROJECT_LABEL = "com.docker.compose.project"
SERVICE_LABEL = "com.docker.compose.service"
ONEOFF_LABEL = "com.docker.compose.oneoff"
CONTAINER_NUMBER_LABEL = "com.docker.compose.container-number"
CONFIG_HASH_LABEL = "com.docker.compose.config-hash"
IMAGE_DIGEST_LABEL = "com.docker.compose.image"
DEPENDENCIES_LABEL = "com.docker.compose.depends_on"
VERSION_LABEL = "com.docker.compose.version"
VOLUME_LABEL = "com.docker.compose.volume"
NETWORK_LABEL = "com.docker.compose.network"
IMAGE_BUILDER_LABEL = "com.docker.compose.image.builder"

NETWORK_MODE_SERVICE_PREFIX = "service:"
NETWORK_MODE_CONTAINER_PREFIX = "container:"

SERVICE_CONDITION_STARTED = "service_started"
SERVICE_CONDITION_HEALTHY = "service_healthy"
SERVICE_CONDITION_COMPLETED_SUCCESSFULLY = "service_completed_successfully"
SERVICE_CONDITION_RUNNING_OR_HEALTHY = "running_or_healthy"

VOLUME_TYPE_BIND = "bind"
VOLUME_TYPE_VOLUME = "volume"
VOLUME_TYPE_TMPFS = "tmpfs"
VOLUME_TYPE_NAMED_PIPE = "npipe"

PULL_POLICY_BUILD = "build"

CONTAINER_CREATED = "created"
CONTAINER_RESTARTING = "restarting"
CONTAINER_RUNNING = "running"
CONTAINER_REMOVING = "removing"
CONTAINER_PAUSED = "paused"
CONTAINER_EXITED = "exited"
CONTAINER_DEAD = "dead"


class NotFoundError(LookupError):
    """A requested project, service or container does not exist."""


@dataclass
class ServiceDependency:
    condition: str = ""


@dataclass
class ServiceNetworkConfig:
    priority: int = 0
    aliases: list[str] = field(default_factory=list)
    ipv4_address: str = ""
    ipv6_address: str = ""
    link_local_ips: list[str] = field(default_factory=list)


@dataclass
class ServiceVolumeBind:
    propagation: str = ""
    create_host_path: bool = False


@dataclass
class ServiceVolumeVolume:
    no_copy: bool = False


@dataclass
class ServiceVolumeTmpfs:
    size: int = 0


@dataclass
class ServiceVolumeConfig:
    type: str = ""
    source: str = ""
    target: str = ""
    read_only: bool = False
    consistency: str = ""
    bind: ServiceVolumeBind | None = None
    volume: ServiceVolumeVolume | None = None
    tmpfs: ServiceVolumeTmpfs | None = None


@dataclass
class ServicePortConfig:
    target: int = 0
    published: str = ""
    protocol: str = "tcp"
    host_ip: str = ""
    mode: str = ""


@dataclass
class FileObjectReference:
    """A secret or config as referenced by a service."""

    source: str = ""
    target: str = ""


@dataclass
class HealthCheckConfig:
    test: list[str] = field(default_factory=list)
    interval: timedelta | None = None
    timeout: timedelta | None = None
    start_period: timedelta | None = None
    retries: int | None = None
    disable: bool = False


@dataclass
class DeployConfig:
    """Deployment settings.

    ``restart_policy`` holds the keys ``condition`` and ``max_attempts``;
    ``resources`` holds ``limits`` and ``reservations`` mappings.
    """

    replicas: int | None = None
    restart_policy: dict[str, Any] | None = None
    resources: dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceConfig:
    name: str = ""
    image: str = ""
    build: dict[str, Any] | None = None
    container_name: str = ""
    scale: int = 1
    platform: str = ""
    pull_policy: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    custom_labels: dict[str, str] = field(default_factory=dict)
    depends_on: dict[str, ServiceDependency] = field(default_factory=dict)
    links: list[str] = field(default_factory=list)
    external_links: list[str] = field(default_factory=list)
    network_mode: str = ""
    ipc: str = ""
    pid: str = ""
    networks: dict[str, ServiceNetworkConfig | None] = field(default_factory=dict)
    volumes: list[ServiceVolumeConfig] = field(default_factory=list)
    volumes_from: list[str] = field(default_factory=list)
    secrets: list[FileObjectReference] = field(default_factory=list)
    configs: list[FileObjectReference] = field(default_factory=list)
    environment: dict[str, str | None] = field(default_factory=dict)
    command: list[str] | None = None
    entrypoint: list[str] | None = None
    health_check: HealthCheckConfig | None = None
    stop_grace_period: timedelta | None = None
    deploy: DeployConfig | None = None
    extensions: dict[str, Any] = field(default_factory=dict)
    ports: list[ServicePortConfig] = field(default_factory=list)
    expose: list[str] = field(default_factory=list)
    tmpfs: list[str] = field(default_factory=list)
    security_opt: list[str] = field(default_factory=list)
    restart: str = ""
    devices: list[str] = field(default_factory=list)
    ulimits: dict[str, dict[str, int]] = field(default_factory=dict)
    blkio_config: dict[str, Any] | None = None
    cgroup_parent: str = ""
    mem_limit: int = 0
    mem_swap_limit: int = 0
    mem_swappiness: int = 0
    mem_reservation: int = 0
    oom_kill_disable: bool = False
    cpu_count: int = 0
    cpu_period: int = 0
    cpu_quota: int = 0
    cpu_rt_period: int = 0
    cpu_rt_runtime: int = 0
    cpu_shares: int = 0
    cpus: float = 0.0
    cpuset: str = ""
    device_cgroup_rules: list[str] = field(default_factory=list)
    pids_limit: int = 0

    def get_dependencies(self) -> list[str]:
        """Names of the services this one depends on, without duplicates."""
        deps: dict[str, None] = dict.fromkeys(self.depends_on)
        for link in self.links:
            parts = link.split(":")
            deps[parts[0] if len(parts) == 2 else link] = None
        for mode in (self.network_mode, self.ipc, self.pid):
            if mode.startswith(NETWORK_MODE_SERVICE_PREFIX):
                deps[mode[len(NETWORK_MODE_SERVICE_PREFIX):]] = None
        for volume in self.volumes_from:
            if not volume.startswith(NETWORK_MODE_CONTAINER_PREFIX):
                deps[volume.split(":")[0]] = None
        return list(deps)

    def networks_by_priority(self) -> list[str]:
        """Network names, highest priority first."""

        def priority(name: str) -> int:
            config = self.networks[name]
            return config.priority if config is not None else 0

        return sorted(self.networks, key=lambda n: (-priority(n), n))


@dataclass
class NetworkConfig:
    name: str = ""
    driver: str = ""
    driver_opts: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    external: bool = False
    internal: bool = False
    attachable: bool = False
    enable_ipv6: bool = False
    ipam_driver: str = ""
    ipam_config: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class VolumeConfig:
    name: str = ""
    driver: str = ""
    driver_opts: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    external: bool = False


@dataclass
class FileObjectConfig:
    """A secret or config defined at project level."""

    name: str = ""
    file: str = ""
    environment: str = ""
    external: bool = False


@dataclass
class Project:
    name: str = ""
    working_dir: str = ""
    services: list[ServiceConfig] = field(default_factory=list)
    disabled_services: list[ServiceConfig] = field(default_factory=list)
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    volumes: dict[str, VolumeConfig] = field(default_factory=dict)
    secrets: dict[str, FileObjectConfig] = field(default_factory=dict)
    configs: dict[str, FileObjectConfig] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)

    def get_service(self, name: str) -> ServiceConfig:
        for service in self.services:
            if service.name == name:
                return service
        raise NotFoundError(f"no such service: {name}")

    def get_services(self, *args: str) -> list[ServiceConfig]:
        """The named services, or all services when none is named."""
        if not args:
            return list(self.services)
        return [self.get_service(name) for name in args]

    def service_names(self) -> list[str]:
        return [service.name for service in self.services]

    def all_services(self) -> list[ServiceConfig]:
        return [*self.services, *self.disabled_services]

    def for_services(self, names) -> None:
        """Keep only the named services and their dependencies enabled."""
        names = list(names)
        if not names:
            return
        wanted: set[str] = set()
        pending = list(names)
        while pending:
            name = pending.pop()
            if name in wanted:
                continue
            service = self.get_service(name)
            wanted.add(name)
            pending.extend(service.get_dependencies())
        enabled = [s for s in self.services if s.name in wanted]
        disabled = [s for s in self.services if s.name not in wanted]
        self.services = enabled
        self.disabled_services.extend(disabled)

    def relative_path(self, path: str) -> str:
        if path.startswith("~"):
            return os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.join(self.working_dir, path)


@dataclass
class MountPoint:
    type: str = ""
    name: str = ""
    source: str = ""
    destination: str = ""
    rw: bool = True


@dataclass
class Container:
    """A container as listed by the engine."""

    id: str = ""
    names: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    image: str = ""
    state: str = ""
    mounts: list[MountPoint] = field(default_factory=list)
    networks: dict[str, list[str]] = field(default_factory=dict)


def image_name(service: ServiceConfig, project_name: str) -> str:
    """The service image, or the default name built from project and service."""
    return service.image or f"{project_name}{SEPARATOR}{service.name}"


def get_canonical_container_name(container: Container) -> str:
    if not container.names:
        # happens during removal; the short id is a safe fallback
        return container.id[:12]
    for name in container.names:
        if name.rfind("/") == 0:
            return name[1:]
    return container.names[0][1:]


def get_container_name_without_project(container: Container) -> str:
    name = get_canonical_container_name(container)
    project = container.labels.get(PROJECT_LABEL, "")
    prefix = f"{project}_{container.labels.get(SERVICE_LABEL, '')}_"
    if name.startswith(prefix):
        return name[len(project) + 1:]
    return name


def project_from_name(containers, project_name: str, *args: str) -> Project:
    """Rebuild a project from the labels of its running containers."""
    containers = list(containers)
    project = Project(name=project_name)
    if not containers:
        raise NotFoundError(f'no container found for project "{project_name}"')
    by_service: dict[str, ServiceConfig] = {}
    for container in containers:
        label = container.labels.get(SERVICE_LABEL, "")
        service = by_service.get(label)
        if service is None:
            service = ServiceConfig(
                name=label, image=container.image, labels=dict(container.labels), scale=0
            )
            by_service[label] = service
        service.scale += 1
    for service in by_service.values():
        dependencies = service.labels.get(DEPENDENCIES_LABEL, "")
        if dependencies:
            service.depends_on = {}
            for entry in dependencies.split(","):
                parts = entry.split(":")
                condition = parts[1] if len(parts) > 1 else SERVICE_CONDITION_RUNNING_OR_HEALTHY
                service.depends_on[parts[0]] = ServiceDependency(condition=condition)
        project.services.append(service)
    known = set(project.service_names())
    for name in args:
        if name not in known:
            raise NotFoundError(f'no such service: "{name}"')
    project.for_services(args)
    return project


def _format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    return f"{int(seconds)}s" if seconds == int(seconds) else f"{seconds}s"


def _is_empty(value: Any) -> bool:
    return value is None or value is False or value == "" or (
        isinstance(value, (list, dict, tuple)) and not value
    )


def _plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _plain(getattr(value, f.name))
            for f in fields(value)
            if not _is_empty(getattr(value, f.name))
        }
    if isinstance(value, timedelta):
        return _format_duration(value)
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def convert_project(project: Project, fmt: str) -> bytes:
    """Serialise a project as ``json`` or ``yaml``."""
    data = _plain(project)
    if fmt == "json":
        return json.dumps(data, indent=2).encode()
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False).encode()
    raise ValueError(f'unsupported format "{fmt}"')