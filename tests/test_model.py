import json
import os

import pytest
import yaml

from composekit.model import (
    DEPENDENCIES_LABEL,
    PROJECT_LABEL,
    SERVICE_CONDITION_HEALTHY,
    SERVICE_CONDITION_RUNNING_OR_HEALTHY,
    SERVICE_LABEL,
    Container,
    NotFoundError,
    Project,
    ServiceConfig,
    ServiceDependency,
    ServiceNetworkConfig,
    convert_project,
    get_canonical_container_name,
    get_container_name_without_project,
    image_name,
    project_from_name,
)


def _container(project, service, name, image="img"):
    return Container(
        id="c" * 20,
        names=[name],
        labels={PROJECT_LABEL: project, SERVICE_LABEL: service},
        image=image,
    )


def test_image_name_uses_image_or_default():
    assert image_name(ServiceConfig(image="myImage"), "myProject") == "myImage"
    assert image_name(ServiceConfig(name="aService"), "myProject") == "myProject-aService"


def test_canonical_name_without_names_uses_short_id():
    c = Container(id="0123456789abcdef0123", names=[])
    assert get_canonical_container_name(c) == "0123456789ab"


def test_canonical_name_skips_link_aliases():
    c = Container(names=["/linked/foo", "/foo"])
    assert get_canonical_container_name(c) == "foo"


def test_canonical_name_falls_back_to_first():
    c = Container(names=["/a/b"])
    assert get_canonical_container_name(c) == "a/b"


def test_container_name_without_project_strips_prefix():
    c = _container("proj", "web", "/proj_web_1")
    assert get_container_name_without_project(c) == "web_1"


def test_container_name_without_project_keeps_other_names():
    c = _container("proj", "web", "/proj-web-1")
    assert get_container_name_without_project(c) == "proj-web-1"


def test_get_dependencies_collects_all_sources():
    s = ServiceConfig(
        name="web",
        depends_on={"db": ServiceDependency()},
        links=["cache:alias", "db"],
        network_mode="service:net",
        volumes_from=["data", "container:xyz"],
    )
    assert s.get_dependencies() == ["db", "cache", "net", "data"]


def test_networks_by_priority_highest_first():
    s = ServiceConfig(
        networks={
            "myNetwork1": ServiceNetworkConfig(priority=10),
            "myNetwork2": ServiceNetworkConfig(priority=1000),
            "other": None,
        }
    )
    assert s.networks_by_priority() == ["myNetwork2", "myNetwork1", "other"]


def test_get_services_raises_for_unknown():
    p = Project(services=[ServiceConfig(name="a")])
    assert [s.name for s in p.get_services()] == ["a"]
    with pytest.raises(NotFoundError):
        p.get_services("a", "missing")


def test_for_services_keeps_dependencies():
    p = Project(
        services=[
            ServiceConfig(name="web", depends_on={"db": ServiceDependency()}),
            ServiceConfig(name="db"),
            ServiceConfig(name="worker"),
        ]
    )
    p.for_services(["web"])
    assert set(p.service_names()) == {"web", "db"}
    assert [s.name for s in p.disabled_services] == ["worker"]
    assert len(p.all_services()) == 3


def test_relative_path(tmp_path):
    p = Project(working_dir=str(tmp_path))
    assert p.relative_path("profile.json") == os.path.join(str(tmp_path), "profile.json")
    assert p.relative_path(str(tmp_path)) == str(tmp_path)


def test_project_from_name_counts_scale_and_dependencies():
    web1 = _container("proj", "web", "/proj-web-1")
    web1.labels[DEPENDENCIES_LABEL] = f"db:{SERVICE_CONDITION_HEALTHY},cache"
    web2 = _container("proj", "web", "/proj-web-2")
    web2.labels[DEPENDENCIES_LABEL] = web1.labels[DEPENDENCIES_LABEL]
    db = _container("proj", "db", "/proj-db-1")
    cache = _container("proj", "cache", "/proj-cache-1")
    project = project_from_name([web1, web2, db, cache], "proj")
    web = project.get_service("web")
    assert web.scale == 2
    assert web.depends_on["db"].condition == SERVICE_CONDITION_HEALTHY
    assert web.depends_on["cache"].condition == SERVICE_CONDITION_RUNNING_OR_HEALTHY
    assert project.get_service("db").scale == 1


def test_project_from_name_without_containers():
    with pytest.raises(NotFoundError, match="no container found"):
        project_from_name([], "proj")


def test_project_from_name_unknown_service():
    with pytest.raises(NotFoundError, match="no such service"):
        project_from_name([_container("proj", "web", "/proj-web-1")], "proj", "nope")


def test_project_from_name_selects_services():
    containers = [_container("proj", "web", "/proj-web-1"), _container("proj", "db", "/proj-db-1")]
    project = project_from_name(containers, "proj", "db")
    assert project.service_names() == ["db"]


def test_convert_json_and_yaml_round_trip():
    p = Project(name="myProject", services=[ServiceConfig(name="web", image="nginx")])
    as_json = json.loads(convert_project(p, "json"))
    as_yaml = yaml.safe_load(convert_project(p, "yaml"))
    assert as_json == as_yaml
    assert as_json["name"] == "myProject"
    assert as_json["services"][0]["image"] == "nginx"


def test_convert_rejects_unknown_format():
    with pytest.raises(ValueError, match="unsupported format"):
        convert_project(Project(name="x"), "toml")