"""Preparing a project and its services for container creation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from composekit.containers import get_container_name
from composekit.model import (
    COMPOSE_VERSION,
    NETWORK_LABEL,
    NETWORK_MODE_SERVICE_PREFIX,
    PROJECT_LABEL,
    SERVICE_CONDITION_STARTED,
    VERSION_LABEL,
    NetworkConfig,
    Project,
    ServiceConfig,
    ServiceDependency,
    ServiceNetworkConfig,
)


@dataclass
class RestartPolicy:
    name: str = ""
    maximum_retry_count: int = 0


@dataclass
class PortBinding:
    host_ip: str = ""
    host_port: str = ""


@dataclass
class Resources:
    """Container resource settings as the engine expects them.

    Devices, block I/O entries, ulimits and device requests are plain dicts.
    """

    cgroup_parent: str = ""
    memory: int = 0
    memory_swap: int = 0
    memory_swappiness: int | None = None
    memory_reservation: int = 0
    oom_kill_disable: bool = False
    cpu_count: int = 0
    cpu_period: int = 0
    cpu_quota: int = 0
    cpu_realtime_period: int = 0
    cpu_realtime_runtime: int = 0
    cpu_shares: int = 0
    cpu_percent: int = 0
    cpuset_cpus: str = ""
    nano_cpus: int = 0
    device_cgroup_rules: list[str] = field(default_factory=list)
    pids_limit: int | None = None
    blkio_weight: int = 0
    blkio_weight_device: list[dict[str, Any]] = field(default_factory=list)
    blkio_device_read_bps: list[dict[str, Any]] = field(default_factory=list)
    blkio_device_read_iops: list[dict[str, Any]] = field(default_factory=list)
    blkio_device_write_bps: list[dict[str, Any]] = field(default_factory=list)
    blkio_device_write_iops: list[dict[str, Any]] = field(default_factory=list)
    devices: list[dict[str, str]] = field(default_factory=list)
    ulimits: list[dict[str, Any]] = field(default_factory=list)
    device_requests: list[dict[str, Any]] = field(default_factory=list)


def get_dependent_service_from_mode(mode: str) -> str:
    """The service named by a ``service:<name>`` mode, or an empty string."""
    if mode.startswith(NETWORK_MODE_SERVICE_PREFIX):
        return mode[len(NETWORK_MODE_SERVICE_PREFIX):]
    return ""


def get_volumes_from(project: Project, volumes_from: list[str]) -> tuple[list[str], list[str]]:
    """Resolve ``volumes_from`` entries to containers and the services they refer to."""
    volumes: list[str] = []
    services: list[str] = []
    for entry in volumes_from:
        spec = entry.split(":")
        if spec[0] == "container":
            volumes.append(entry)
            continue
        service_name = spec[0]
        services.append(service_name)
        service = project.get_service(service_name)
        first_container = get_container_name(project.name, service, 1)
        if len(spec) > 2:
            volumes.append(f"container:{first_container}:{':'.join(spec[1:])}")
        else:
            volumes.append(f"container:{first_container}")
    return volumes, services


def prepare_volumes(project: Project) -> None:
    """Resolve ``volumes_from`` and make services depend on the services they borrow from."""
    for service in project.services:
        volumes, depend_services = get_volumes_from(project, service.volumes_from)
        service.volumes_from = volumes
        if not depend_services:
            continue
        for other in project.services:
            if other.name not in depend_services:
                continue
            existing = service.depends_on.get(other.name)
            if existing is None or not existing.condition:
                service.depends_on[other.name] = ServiceDependency(
                    condition=SERVICE_CONDITION_STARTED
                )


def prepare_networks(project: Project) -> None:
    """Label every project network with its key, the project and the compose version."""
    for key, network in project.networks.items():
        network.labels[NETWORK_LABEL] = key
        network.labels[PROJECT_LABEL] = project.name
        network.labels[VERSION_LABEL] = COMPOSE_VERSION


def prepare_services_depends_on(project: Project) -> None:
    """Turn implicit dependencies (modes, volumes_from, links) into ``depends_on`` entries."""
    everything = Project(services=project.all_services())
    for service in project.services:
        dependencies: list[str] = []
        for mode in (service.network_mode, service.ipc, service.pid):
            dependency = get_dependent_service_from_mode(mode)
            if dependency:
                dependencies.append(dependency)
        for entry in service.volumes_from:
            spec = entry.split(":")
            if spec[0] == "container":
                continue
            dependencies.append(spec[0])
        dependencies.extend(link.split(":")[0] for link in service.links)
        dependencies.extend(service.depends_on)
        if not dependencies:
            continue
        for dependency in everything.get_services(*dependencies):
            service.depends_on.setdefault(
                dependency.name, ServiceDependency(condition=SERVICE_CONDITION_STARTED)
            )


def parse_security_opts(project: Project, security_opts: list[str]) -> list[str]:
    """Validate security options and inline seccomp profiles as compact JSON."""
    result = list(security_opts)
    for index, opt in enumerate(security_opts):
        parts = opt.split("=", 1)
        if len(parts) == 1 and parts[0] != "no-new-privileges":
            if ":" not in opt:
                raise ValueError(f'Invalid security-opt: "{opt}"')
            parts = opt.split(":", 1)
        if parts[0] == "seccomp" and parts[1] != "unconfined":
            profile = parts[1]
            try:
                with open(project.relative_path(profile), "rb") as handle:
                    content = handle.read()
            except OSError as exc:
                raise ValueError(
                    f"opening seccomp profile ({profile}) failed: {exc}"
                ) from exc
            try:
                compact = json.dumps(
                    json.loads(content), separators=(",", ":"), ensure_ascii=False
                )
            except ValueError as exc:
                raise ValueError(
                    f"compacting json for seccomp profile ({profile}) failed: {exc}"
                ) from exc
            result[index] = f"seccomp={compact}"
    return result


def get_default_network_mode(project: Project, service: ServiceConfig) -> str:
    if not project.networks:
        return "none"
    if service.networks:
        name = service.networks_by_priority()[0]
        return project.networks.get(name, NetworkConfig()).name
    return project.networks.get("default", NetworkConfig()).name


def get_restart_policy(service: ServiceConfig) -> RestartPolicy:
    """Restart policy from ``restart``, overridden by the deploy restart policy."""
    restart = RestartPolicy()
    if service.restart:
        split = service.restart.split(":")
        attempts = 0
        if len(split) > 1:
            try:
                attempts = int(split[1])
            except ValueError:
                attempts = 0
        restart = RestartPolicy(name=split[0], maximum_retry_count=attempts)
    if service.deploy is not None and service.deploy.restart_policy is not None:
        policy = service.deploy.restart_policy
        attempts = policy.get("max_attempts")
        restart = RestartPolicy(
            name=policy.get("condition", ""),
            maximum_retry_count=int(attempts) if attempts is not None else 0,
        )
    return restart


def _set_blkio(blkio: dict[str, Any] | None, resources: Resources) -> None:
    if blkio is None:
        return
    resources.blkio_weight = blkio.get("weight", 0)
    resources.blkio_weight_device = [
        {"path": d.get("path", ""), "weight": d.get("weight", 0)}
        for d in blkio.get("weight_device", [])
    ]
    for key in ("device_read_bps", "device_read_iops", "device_write_bps", "device_write_iops"):
        throttles = [
            {"path": d.get("path", ""), "rate": d.get("rate", 0)} for d in blkio.get(key, [])
        ]
        setattr(resources, f"blkio_{key}", throttles)


def _set_limits(limits: dict[str, Any] | None, resources: Resources) -> None:
    if limits is None:
        return
    if limits.get("memory_bytes"):
        resources.memory = int(limits["memory_bytes"])
    nano_cpus = limits.get("nano_cpus", "")
    if nano_cpus:
        try:
            resources.nano_cpus = int(float(nano_cpus) * 1e9)
        except ValueError:
            pass
    pids = limits.get("pids", 0)
    if pids > 0:
        resources.pids_limit = pids


def _set_reservations(reservations: dict[str, Any] | None, resources: Resources) -> None:
    if reservations is None:
        return
    for device in reservations.get("devices", []):
        resources.device_requests.append(
            {
                "capabilities": [list(device.get("capabilities", []))],
                "count": int(device.get("count", 0)),
                "device_ids": list(device.get("device_ids", [])),
                "driver": device.get("driver", ""),
            }
        )


def _parse_device(device: str) -> dict[str, str]:
    src = dst = ""
    permissions = "rwm"
    parts = device.split(":")
    if len(parts) == 3:
        src, dst, permissions = parts
    elif len(parts) == 2:
        src, dst = parts
    elif len(parts) == 1:
        src = parts[0]
    return {
        "path_on_host": src,
        "path_in_container": dst or src,
        "cgroup_permissions": permissions,
    }


def get_deploy_resources(service: ServiceConfig) -> Resources:
    """Resource settings for a service container."""
    resources = Resources(
        cgroup_parent=service.cgroup_parent,
        memory=int(service.mem_limit),
        memory_swap=int(service.mem_swap_limit),
        memory_swappiness=int(service.mem_swappiness) if service.mem_swappiness else None,
        memory_reservation=int(service.mem_reservation),
        oom_kill_disable=service.oom_kill_disable,
        cpu_count=service.cpu_count,
        cpu_period=service.cpu_period,
        cpu_quota=service.cpu_quota,
        cpu_realtime_period=service.cpu_rt_period,
        cpu_realtime_runtime=service.cpu_rt_runtime,
        cpu_shares=service.cpu_shares,
        cpu_percent=int(service.cpus * 100),
        cpuset_cpus=service.cpuset,
        device_cgroup_rules=list(service.device_cgroup_rules),
    )
    if service.pids_limit:
        resources.pids_limit = service.pids_limit

    _set_blkio(service.blkio_config, resources)

    if service.deploy is not None:
        _set_limits(service.deploy.resources.get("limits"), resources)
        _set_reservations(service.deploy.resources.get("reservations"), resources)

    resources.devices = [_parse_device(device) for device in service.devices]

    for name, limit in service.ulimits.items():
        single = limit.get("single", 0)
        resources.ulimits.append(
            {
                "name": name,
                "hard": int(limit.get("hard") or single),
                "soft": int(limit.get("soft") or single),
            }
        )
    return resources


def _port_key(target: int, protocol: str) -> str:
    return f"{target}/{protocol}"


def build_container_ports(service: ServiceConfig) -> set[str]:
    """Exposed ports as ``port/protocol`` strings."""
    ports = set(service.expose)
    ports.update(_port_key(p.target, p.protocol) for p in service.ports)
    return ports


def build_container_port_binding_options(service: ServiceConfig) -> dict[str, list[PortBinding]]:
    bindings: dict[str, list[PortBinding]] = {}
    for port in service.ports:
        bindings.setdefault(_port_key(port.target, port.protocol), []).append(
            PortBinding(host_ip=port.host_ip, host_port=port.published)
        )
    return bindings


def get_aliases(service: ServiceConfig, config: ServiceNetworkConfig | None) -> list[str]:
    aliases = [service.name]
    if config is not None:
        aliases.extend(config.aliases)
    return aliases