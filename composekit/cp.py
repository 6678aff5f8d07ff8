"""Argument handling for copying files between the host and service containers."""

from __future__ import annotations

import enum
import os


class CopyDirection(enum.IntFlag):
    """Which side of a copy is a service container."""

    FROM_SERVICE = 1
    TO_SERVICE = 2
    ACROSS_SERVICES = FROM_SERVICE | TO_SERVICE


def split_cp_arg(arg: str) -> tuple[str, str]:
    """Split ``service:path`` into its service and path; local paths have no service."""
    if os.path.isabs(arg):
        # explicit local absolute path, e.g. C:\foo or /foo
        return "", arg
    parts = arg.split(":", 1)
    if len(parts) == 1 or parts[0].startswith("."):
        # no colon, or an explicit local relative path like ./file:name.txt
        return "", arg
    return parts[0], parts[1]


def _specifies_current_dir(path: str) -> bool:
    return os.path.basename(path) == "."


def _has_trailing_separator(path: str) -> bool:
    return path.endswith(os.sep)


def resolve_local_path(local_path: str) -> str:
    """Absolute form of ``local_path``, keeping a trailing ``.`` or separator."""
    cleaned = os.path.abspath(local_path).replace("/", os.sep)
    original = local_path.replace("/", os.sep)
    if not _specifies_current_dir(cleaned) and _specifies_current_dir(original):
        if not _has_trailing_separator(cleaned):
            cleaned += os.sep
        cleaned += "."
    if not _has_trailing_separator(cleaned) and _has_trailing_separator(original):
        cleaned += os.sep
    return cleaned


def copy_direction(
    source: str, destination: str, all_containers: bool
) -> tuple[CopyDirection, str, str, str]:
    """Direction, service name, source path and destination path of a copy."""
    src_service, src_path = split_cp_arg(source)
    dst_service, dst_path = split_cp_arg(destination)

    direction = CopyDirection(0)
    service_name = ""
    if src_service:
        direction |= CopyDirection.FROM_SERVICE
        service_name = src_service
        # copying from several containers of one service makes no sense
        if all_containers:
            raise ValueError("cannot use the --all flag when copying from a service")
    if dst_service:
        direction |= CopyDirection.TO_SERVICE
        service_name = dst_service
    if direction == CopyDirection.ACROSS_SERVICES:
        raise ValueError("copying between services is not supported")
    if not direction:
        raise ValueError("unknown copy direction")
    return direction, service_name, src_path, dst_path