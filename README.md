# composekit

Building blocks for tools that manage multi-container application
projects: a service/project model, dependency graphs with ordered
traversal, and helpers that turn service definitions into container
creation options.

## Installation

```
pip install composekit
```

For running the test suite:

```
pip install "composekit[test]"
pytest
```

## What is inside

- `composekit.model`: dataclasses for `Project`, `ServiceConfig`,
  `NetworkConfig`, `VolumeConfig`, `FileObjectConfig`, `Container`,
  `MountPoint` and friends, the `NotFoundError` exception, plus
  `image_name`, `get_canonical_container_name`,
  `get_container_name_without_project`, `project_from_name` (rebuilds a
  project from container labels) and `convert_project`, which renders a
  project as `json` or `yaml` bytes.
- `composekit.containers`: the `Containers` list with `filter`, `names`
  and `sorted`, the `OneOff` selector, `get_default_filters`,
  `get_container_name`, the predicates `is_service`, `is_not_service`
  and `is_not_one_off`, and `ComposeService`.
- `composekit.dependencies`: `Graph`, `Vertex`, `ServiceStatus`,
  `new_graph`, `in_dependency_order` and `in_reverse_dependency_order`.
  Cycles raise `CycleError`.
- `composekit.convert`: `HealthConfig`, `to_moby_env`,
  `to_moby_health_check` and `to_seconds`.
- `composekit.mounts`: `Mount` and `MountType`, with `build_mount`,
  `build_mount_options`, the secret and config mount builders,
  `fill_bind_mounts` and `build_container_mount_options`, which reuses
  anonymous volumes of a container being replaced.
- `composekit.create`: `prepare_networks`, `prepare_volumes`,
  `prepare_services_depends_on`, `parse_security_opts` (inlines seccomp
  profiles as compact JSON), `get_default_network_mode`,
  `get_restart_policy`, `get_deploy_resources`, `build_container_ports`,
  `build_container_port_binding_options` and `get_aliases`.
- `composekit.convergence`: scaling rules (`get_scale`, `ScaleError`),
  `next_container_number`, `update_services`, `get_links`,
  `is_service_healthy`, `is_service_completed` and `wait_dependencies`,
  which polls until each `depends_on` condition holds.
- `composekit.build`: `flatten`, `merge_args`, `is_git_url`,
  `dockerfile_path`, `get_image_build_labels` and platform selection from
  `DOCKER_DEFAULT_PLATFORM` and the service platform.
- `composekit.cp`: `split_cp_arg`, `resolve_local_path`,
  `copy_direction` and `CopyDirection`.

## The engine client

`ComposeService` wraps a client object that you provide. It must offer
`container_list(filters=..., all=...)`, returning `Container` objects;
filters are `("label", "key=value")` pairs. The health and completion
checks in `composekit.convergence` also call
`container_inspect(container_id)`, which must return the engine's
inspect document as a mapping (`Config.Healthcheck`, `State.Status`,
`State.ExitCode`, `State.Health.Status`).

## Example

```python
from composekit.model import Project, ServiceConfig, ServiceDependency
from composekit.dependencies import in_dependency_order

project = Project(
    name="shop",
    services=[
        ServiceConfig(name="web", depends_on={"db": ServiceDependency()}),
        ServiceConfig(name="db"),
    ],
)

started = []
in_dependency_order(project, started.append)
print(started)  # ['db', 'web']
```

Services are visited only once every service they depend on has been
visited; `in_reverse_dependency_order` walks the other way, which suits
shutting a project down.

## What it does not do

composekit has no command line and does not talk to a container engine
on its own: all engine access goes through the client you pass to
`ComposeService`. It does not load compose files, build images, create
or start containers, or copy files; `composekit.build` and
`composekit.cp` only work out the settings and arguments for those
operations.