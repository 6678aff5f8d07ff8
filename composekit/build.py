"""Build settings derived from a project: build args, Dockerfile paths, labels, platforms."""

from __future__ import annotations

import os
import platform as _host
import re
import sys
from typing import Iterable, Mapping

from composekit.model import (
    COMPOSE_VERSION,
    PROJECT_LABEL,
    SERVICE_LABEL,
    VERSION_LABEL,
    Project,
    ServiceConfig,
)

DEFAULT_PLATFORM_ENV = "DOCKER_DEFAULT_PLATFORM"

_GIT_URL_SUFFIX = re.compile(r".git(?:#.+)?$")
_GIT_PREFIXES = ("git://", "github.com/", "git@")
_PLATFORM_PART = re.compile(r"^[A-Za-z0-9_-]+$")

_KNOWN_OS = frozenset(
    {
        "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos", "ios",
        "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris", "windows", "zos",
    }
)
_KNOWN_ARCH = frozenset(
    {
        "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be", "ppc64",
        "ppc64le", "loong64", "mips", "mipsle", "mips64", "mips64le", "mips64p32",
        "mips64p32le", "ppc", "riscv", "riscv64", "s390", "s390x", "sparc", "sparc64",
        "wasm",
    }
)


def flatten(mapping: Mapping[str, str | None] | None) -> dict[str, str]:
    """Drop the entries whose value is unset."""
    if not mapping:
        return {}
    return {key: value for key, value in mapping.items() if value is not None}


def merge_args(*args: Mapping[str, str] | None) -> dict[str, str]:
    """Merge mappings; later ones win."""
    merged: dict[str, str] = {}
    for mapping in args:
        if mapping:
            merged.update(mapping)
    return merged


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def is_git_url(value: str) -> bool:
    """Whether a build context names a git repository."""
    if _is_url(value) and _GIT_URL_SUFFIX.search(value):
        return True
    return value.startswith(_GIT_PREFIXES)


def dockerfile_path(context: str, dockerfile: str) -> str:
    """The Dockerfile path relative to the context, unless it is absolute or the context is git."""
    if is_git_url(context) or os.path.isabs(dockerfile):
        return dockerfile
    return os.path.join(context, dockerfile)


def get_image_build_labels(project: Project, service: ServiceConfig) -> dict[str, str]:
    """Labels put on an image built for ``service``."""
    labels: dict[str, str] = {}
    if service.build is not None:
        labels.update(service.build.get("labels") or {})
    labels[VERSION_LABEL] = COMPOSE_VERSION
    labels[PROJECT_LABEL] = project.name
    labels[SERVICE_LABEL] = service.name
    return labels


def _normalize_os(value: str) -> str:
    value = value.lower()
    return "darwin" if value == "macos" else value


def _normalize_arch(arch: str, variant: str) -> tuple[str, str]:
    arch, variant = arch.lower(), variant.lower()
    if arch == "i386":
        return "386", ""
    if arch in ("x86_64", "x86-64", "amd64"):
        return "amd64", "" if variant == "v1" else variant
    if arch in ("aarch64", "arm64"):
        return "arm64", "" if variant in ("8", "v8") else variant
    if arch == "armhf":
        return "arm", "v7"
    if arch == "armel":
        return "arm", "v6"
    if arch == "arm":
        if variant in ("", "7"):
            return "arm", "v7"
        if variant in ("5", "6", "8"):
            return "arm", "v" + variant
    return arch, variant


def _host_os() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return _normalize_os(sys.platform.rstrip("0123456789"))


def _host_arch() -> tuple[str, str]:
    return _normalize_arch(_host.machine() or "amd64", "")


def _format_platform(os_name: str, arch: str, variant: str) -> str:
    return "/".join(p for p in (os_name, arch, variant) if p)


def _parse_platform(spec: str) -> str:
    """Normalise an ``os[/arch[/variant]]`` specifier."""
    if "*" in spec:
        raise ValueError(f'"{spec}": wildcards not yet supported: invalid argument')
    parts = spec.split("/")
    for part in parts:
        if not _PLATFORM_PART.match(part):
            raise ValueError(f'"{spec}": invalid platform component "{part}": invalid argument')
    if len(parts) == 1:
        os_name = _normalize_os(parts[0])
        if os_name in _KNOWN_OS:
            arch, variant = _host_arch()
            return _format_platform(os_name, arch, variant)
        arch, variant = _normalize_arch(parts[0], "")
        if arch in _KNOWN_ARCH:
            return _format_platform(_host_os(), arch, variant)
        raise ValueError(
            f'"{spec}": unknown operating system or architecture: invalid argument'
        )
    if len(parts) == 2:
        arch, variant = _normalize_arch(parts[1], "")
        return _format_platform(_normalize_os(parts[0]), arch, variant)
    if len(parts) == 3:
        arch, variant = _normalize_arch(parts[1], parts[2])
        return _format_platform(_normalize_os(parts[0]), arch, variant)
    raise ValueError(f'"{spec}": cannot parse platform specifier: invalid argument')


def _quote_list(values: Iterable[str]) -> str:
    return "[" + " ".join(f'"{v}"' for v in values) + "]"


def _build_platforms(service: ServiceConfig) -> list[str]:
    if service.build is None:
        return []
    return list(service.build.get("platforms") or [])


def use_docker_default_platform(project: Project, platform_list: Iterable[str] | None) -> list[str]:
    """The platform from ``DOCKER_DEFAULT_PLATFORM``, if set, as a one-element list."""
    platform_list = list(platform_list or [])
    default = project.environment.get(DEFAULT_PLATFORM_ENV)
    if default is None:
        return []
    if platform_list and default not in platform_list:
        raise ValueError(
            f'the DOCKER_DEFAULT_PLATFORM "{default}" value should be part of the '
            f"service.build.platforms: {_quote_list(platform_list)}"
        )
    return [_parse_platform(default)]


def use_docker_default_or_service_platform(
    project: Project, service: ServiceConfig, use_one_platform: bool
) -> list[str]:
    """Platforms to build for from the default platform and the service platform."""
    build_platforms = _build_platforms(service)
    platforms = use_docker_default_platform(project, build_platforms)
    if platforms and use_one_platform:
        return platforms
    if service.platform and service.platform not in build_platforms:
        if build_platforms:
            raise ValueError(
                f'service.platform "{service.platform}" should be part of the '
                f"service.build.platforms: {_quote_list(build_platforms)}"
            )
        # no build platforms: keep the one defined at service level
        parsed = _parse_platform(service.platform)
        if parsed not in platforms:
            platforms.append(parsed)
    return platforms