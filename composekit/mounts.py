"""Mounts for service containers: volumes, binds, secrets and configs."""

from __future__ import annotations

import enum
import logging
import os
import posixpath
from dataclasses import dataclass, replace
from typing import Any, Iterable

from composekit.model import (
    VOLUME_TYPE_BIND,
    VOLUME_TYPE_TMPFS,
    VOLUME_TYPE_VOLUME,
    Container,
    FileObjectConfig,
    Project,
    ServiceConfig,
    ServiceVolumeBind,
    ServiceVolumeConfig,
    ServiceVolumeTmpfs,
    ServiceVolumeVolume,
)

logger = logging.getLogger(__name__)

SECRETS_DIR = "/run/secrets/"
CONFIGS_BASE_DIR = "/"


class MountType(str, enum.Enum):
    """Kinds of mount the engine understands."""

    BIND = "bind"
    VOLUME = "volume"
    TMPFS = "tmpfs"
    NAMED_PIPE = "npipe"


@dataclass
class Mount:
    """A mount as handed to the engine.

    ``bind_options`` holds ``propagation``, ``volume_options`` holds
    ``no_copy`` and ``tmpfs_options`` holds ``size_bytes``.
    """

    type: MountType
    source: str = ""
    target: str = ""
    read_only: bool = False
    consistency: str = ""
    bind_options: dict[str, Any] | None = None
    volume_options: dict[str, Any] | None = None
    tmpfs_options: dict[str, Any] | None = None


def _mount_type(value: str) -> MountType:
    try:
        return MountType(value)
    except ValueError:
        raise ValueError(f"unsupported mount type {value!r}") from None


def _clean_path(path: str) -> str:
    """Lexically clean a slash-separated path."""
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def is_unix_abs(path: str) -> bool:
    return path.startswith("/")


def _bind_option(bind: ServiceVolumeBind | None) -> dict[str, Any] | None:
    if bind is None:
        return None
    return {"propagation": bind.propagation}


def _volume_option(volume: ServiceVolumeVolume | None) -> dict[str, Any] | None:
    if volume is None:
        return None
    return {"no_copy": volume.no_copy}


def _tmpfs_option(tmpfs: ServiceVolumeTmpfs | None) -> dict[str, Any] | None:
    if tmpfs is None:
        return None
    return {"size_bytes": int(tmpfs.size)}


def build_mount_options(
    project: Project, volume: ServiceVolumeConfig
) -> tuple[dict[str, Any] | None, dict[str, Any] | None, dict[str, Any] | None]:
    """Bind, volume and tmpfs options for ``volume``; at most one is set."""
    if volume.type == VOLUME_TYPE_BIND:
        if volume.volume is not None:
            logger.warning("mount of type `bind` should not define `volume` option")
        if volume.tmpfs is not None:
            logger.warning("mount of type `tmpfs` should not define `tmpfs` option")
        return _bind_option(volume.bind), None, None
    if volume.type == VOLUME_TYPE_VOLUME:
        if volume.bind is not None:
            logger.warning("mount of type `volume` should not define `bind` option")
        if volume.tmpfs is not None:
            logger.warning("mount of type `volume` should not define `tmpfs` option")
        declared = project.volumes.get(volume.source)
        if declared is not None and declared.driver_opts.get("o") == VOLUME_TYPE_BIND:
            return _bind_option(ServiceVolumeBind(create_host_path=True)), None, None
        return None, _volume_option(volume.volume), None
    if volume.type == VOLUME_TYPE_TMPFS:
        if volume.bind is not None:
            logger.warning("mount of type `tmpfs` should not define `bind` option")
        if volume.volume is not None:
            logger.warning("mount of type `tmpfs` should not define `volume` option")
        return None, None, _tmpfs_option(volume.tmpfs)
    return None, None, None


def build_mount(project: Project, volume: ServiceVolumeConfig) -> Mount:
    """The engine mount for a service volume declaration."""
    source = volume.source
    # unix-style absolute paths are kept as they are, even on Windows
    if volume.type == VOLUME_TYPE_BIND and not os.path.isabs(source) and not source.startswith("/"):
        source = os.path.abspath(source)
    if volume.type == VOLUME_TYPE_VOLUME and volume.source:
        declared = project.volumes.get(volume.source)
        if declared is not None:
            source = declared.name

    bind, vol, tmpfs = build_mount_options(project, volume)
    mount_type = MountType.BIND if bind is not None else _mount_type(volume.type)

    return Mount(
        type=mount_type,
        source=source,
        target=_clean_path(volume.target),
        read_only=volume.read_only,
        consistency=volume.consistency,
        bind_options=bind,
        volume_options=vol,
        tmpfs_options=tmpfs,
    )


def _file_target(target: str, source: str, base_dir: str) -> str:
    if not target:
        return base_dir + source
    if not is_unix_abs(target):
        return base_dir + target
    return target


def build_container_secret_mounts(project: Project, service: ServiceConfig) -> list[Mount]:
    """Read-only bind mounts for the service's file-based secrets."""
    mounts: dict[str, Mount] = {}
    for secret in service.secrets:
        target = _file_target(secret.target, secret.source, SECRETS_DIR)
        defined = project.secrets.get(secret.source, FileObjectConfig())
        if defined.external:
            raise ValueError(f"unsupported external secret {defined.name}")
        if defined.environment:
            continue
        mounts[target] = build_mount(
            project,
            ServiceVolumeConfig(
                type=VOLUME_TYPE_BIND, source=defined.file, target=target, read_only=True
            ),
        )
    return list(mounts.values())


def build_container_config_mounts(project: Project, service: ServiceConfig) -> list[Mount]:
    """Read-only bind mounts for the service's configs."""
    mounts: dict[str, Mount] = {}
    for config in service.configs:
        target = _file_target(config.target, config.source, CONFIGS_BASE_DIR)
        defined = project.configs.get(config.source, FileObjectConfig())
        if defined.external:
            raise ValueError(f"unsupported external config {defined.name}")
        mounts[target] = build_mount(
            project,
            ServiceVolumeConfig(
                type=VOLUME_TYPE_BIND, source=defined.file, target=target, read_only=True
            ),
        )
    return list(mounts.values())


def fill_bind_mounts(
    project: Project, service: ServiceConfig, mounts: dict[str, Mount]
) -> dict[str, Mount]:
    """Add service volumes, then secrets and configs where the target is still free."""
    for volume in service.volumes:
        built = build_mount(project, volume)
        mounts[built.target] = built
    for extra in (
        *build_container_secret_mounts(project, service),
        *build_container_config_mounts(project, service),
    ):
        mounts.setdefault(extra.target, extra)
    return mounts


def build_container_mount_options(
    project: Project,
    service: ServiceConfig,
    image_volumes: Iterable[str] | None,
    inherit: Container | None,
) -> list[Mount]:
    """All mounts of a new container, reusing anonymous volumes of ``inherit``.

    ``image_volumes`` are the volume paths declared by the service image.
    """
    declared = set(image_volumes or ())
    mounts: dict[str, Mount] = {}
    volumes = list(service.volumes)
    if inherit is not None:
        for point in inherit.mounts:
            if point.type == VOLUME_TYPE_TMPFS:
                continue
            source = point.name if point.type == VOLUME_TYPE_VOLUME else point.source
            destination = _clean_path(point.destination)

            def inherited() -> Mount:
                return Mount(
                    type=_mount_type(point.type),
                    source=source,
                    target=destination,
                    read_only=not point.rw,
                )

            if destination in declared:
                mounts[destination] = inherited()
            kept = []
            for volume in volumes:
                if volume.target != destination or volume.source:
                    kept.append(volume)
                    continue
                mounts[destination] = inherited()
            volumes = kept

    mounts = fill_bind_mounts(project, replace(service, volumes=volumes), mounts)
    return list(mounts.values())