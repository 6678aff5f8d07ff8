import os

import pytest

from composekit.model import (
    Container,
    FileObjectConfig,
    FileObjectReference,
    MountPoint,
    Project,
    ServiceConfig,
    ServiceVolumeBind,
    ServiceVolumeConfig,
    ServiceVolumeTmpfs,
    VolumeConfig,
)
from composekit.mounts import (
    Mount,
    MountType,
    build_container_config_mounts,
    build_container_mount_options,
    build_container_secret_mounts,
    build_mount,
    build_mount_options,
    fill_bind_mounts,
    is_unix_abs,
)


def test_build_bind_mount():
    volume = ServiceVolumeConfig(type="bind", source="", target="/data")
    mount = build_mount(Project(), volume)
    assert os.path.isabs(mount.source)
    assert os.path.exists(mount.source)
    assert mount.type is MountType.BIND


def test_build_named_pipe_mount():
    volume = ServiceVolumeConfig(
        type="npipe",
        source="\\\\.\\pipe\\docker_engine_windows",
        target="\\\\.\\pipe\\docker_engine",
    )
    mount = build_mount(Project(), volume)
    assert mount.type is MountType.NAMED_PIPE
    assert mount.target == "\\\\.\\pipe\\docker_engine"


def test_build_volume_mount():
    project = Project(
        name="myProject",
        volumes={"myVolume": VolumeConfig(name="myProject_myVolume")},
    )
    volume = ServiceVolumeConfig(type="volume", source="myVolume", target="/data")
    mount = build_mount(project, volume)
    assert mount.source == "myProject_myVolume"
    assert mount.type is MountType.VOLUME


def test_volume_with_bind_driver_becomes_bind():
    project = Project(
        volumes={"v": VolumeConfig(name="p_v", driver_opts={"o": "bind"})},
    )
    mount = build_mount(project, ServiceVolumeConfig(type="volume", source="v", target="/x"))
    assert mount.type is MountType.BIND
    assert mount.bind_options == {"propagation": ""}
    assert mount.source == "p_v"


def test_target_is_cleaned():
    mount = build_mount(Project(), ServiceVolumeConfig(type="volume", target="/var//data/../lib/"))
    assert mount.target == "/var/lib"


def test_tmpfs_options():
    volume = ServiceVolumeConfig(type="tmpfs", target="/tmp", tmpfs=ServiceVolumeTmpfs(size=1024))
    assert build_mount_options(Project(), volume) == (None, None, {"size_bytes": 1024})


def test_bind_options_propagation():
    volume = ServiceVolumeConfig(
        type="bind", source="/src", target="/dst", bind=ServiceVolumeBind(propagation="rshared")
    )
    bind, vol, tmpfs = build_mount_options(Project(), volume)
    assert bind == {"propagation": "rshared"}
    assert vol is None and tmpfs is None


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        build_mount(Project(), ServiceVolumeConfig(type="weird", target="/x"))


def test_is_unix_abs():
    assert is_unix_abs("/etc")
    assert not is_unix_abs("etc")


def test_build_container_mount_options():
    service = ServiceConfig(
        name="myService",
        volumes=[
            ServiceVolumeConfig(type="volume", target="/var/myvolume1"),
            ServiceVolumeConfig(type="volume", target="/var/myvolume2"),
            ServiceVolumeConfig(
                type="npipe",
                source="\\\\.\\pipe\\docker_engine_windows",
                target="\\\\.\\pipe\\docker_engine",
            ),
        ],
    )
    project = Project(
        name="myProject",
        services=[service],
        volumes={
            "myVolume1": VolumeConfig(name="myProject_myVolume1"),
            "myVolume2": VolumeConfig(name="myProject_myVolume2"),
        },
    )
    inherit = Container(
        mounts=[
            MountPoint(type="volume", destination="/var/myvolume1"),
            MountPoint(type="volume", destination="/var/myvolume2"),
        ]
    )
    for _ in range(2):
        mounts = sorted(
            build_container_mount_options(project, project.services[0], set(), inherit),
            key=lambda m: m.target,
        )
        assert [m.target for m in mounts] == [
            "/var/myvolume1",
            "/var/myvolume2",
            "\\\\.\\pipe\\docker_engine",
        ]
    assert len(project.services[0].volumes) == 3


def test_inherit_image_declared_volume():
    inherit = Container(
        mounts=[
            MountPoint(type="volume", name="anon123", destination="/data/", rw=False),
            MountPoint(type="tmpfs", destination="/tmp"),
        ]
    )
    mounts = build_container_mount_options(Project(), ServiceConfig(name="s"), {"/data"}, inherit)
    assert mounts == [
        Mount(type=MountType.VOLUME, source="anon123", target="/data", read_only=True)
    ]


def test_secret_mounts_targets():
    project = Project(
        secrets={
            "a": FileObjectConfig(name="a", file="/secrets/a"),
            "b": FileObjectConfig(name="b", file="/secrets/b"),
            "c": FileObjectConfig(name="c", file="/secrets/c"),
            "env": FileObjectConfig(name="env", environment="VAR"),
        }
    )
    service = ServiceConfig(
        secrets=[
            FileObjectReference(source="a"),
            FileObjectReference(source="b", target="other"),
            FileObjectReference(source="c", target="/abs/c"),
            FileObjectReference(source="env"),
        ]
    )
    mounts = build_container_secret_mounts(project, service)
    assert sorted(m.target for m in mounts) == ["/abs/c", "/run/secrets/a", "/run/secrets/other"]
    assert all(m.read_only and m.type is MountType.BIND for m in mounts)


def test_external_secret_rejected():
    project = Project(secrets={"x": FileObjectConfig(name="x", external=True)})
    with pytest.raises(ValueError, match="unsupported external secret x"):
        build_container_secret_mounts(project, ServiceConfig(secrets=[FileObjectReference(source="x")]))


def test_config_mounts_targets():
    project = Project(configs={"cfg": FileObjectConfig(name="cfg", file="/conf/cfg")})
    service = ServiceConfig(
        configs=[FileObjectReference(source="cfg"), FileObjectReference(source="cfg", target="etc/c")]
    )
    mounts = build_container_config_mounts(project, service)
    assert sorted(m.target for m in mounts) == ["/cfg", "/etc/c"]
    assert all(m.source == "/conf/cfg" for m in mounts)


def test_external_config_rejected():
    project = Project(configs={"x": FileObjectConfig(name="x", external=True)})
    with pytest.raises(ValueError, match="unsupported external config x"):
        build_container_config_mounts(project, ServiceConfig(configs=[FileObjectReference(source="x")]))


def test_fill_bind_mounts_keeps_existing_targets():
    project = Project(secrets={"s": FileObjectConfig(name="s", file="/f/s")})
    existing = Mount(type=MountType.VOLUME, source="keep", target="/run/secrets/s")
    service = ServiceConfig(
        secrets=[FileObjectReference(source="s")],
        volumes=[ServiceVolumeConfig(type="volume", target="/data")],
    )
    result = fill_bind_mounts(project, service, {existing.target: existing})
    assert result["/run/secrets/s"].source == "keep"
    assert result["/data"].type is MountType.VOLUME