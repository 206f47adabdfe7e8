from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from terrarium.adapters.cloud import RESOURCE_TYPES
from terrarium.adapters.document import load_configuration, parse_configuration
from terrarium.domain.errors import ConfigError
from terrarium.domain.model import ResourceAddress
from terrarium.domain.reconciliation import build_graph

if TYPE_CHECKING:
    from terrarium.domain.ports import ResourceSchema

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
_SCHEMAS = {resource.name: resource.schema for resource in RESOURCE_TYPES}


def _schema_for(resource_type: str) -> ResourceSchema:
    return _SCHEMAS[resource_type]


def test_load_yaml_document_into_configuration() -> None:
    configuration = load_configuration(DATA_DIR / "control_plane.yaml")

    assert [(entry.type, entry.name) for entry in configuration.resources][:2] == [
        ("network", "vpc"),
        ("internet_gateway", "gw"),
    ]
    subnet = configuration.resources[2]
    assert subnet.count == 2
    assert configuration.variables["image"].has_default
    assert configuration.variables["image"].description == "Base image for the web instance"
    assert not configuration.variables["web_zone"].has_default
    assert configuration.outputs == {
        "web_ip": "${compute_instance.web.public_ip}",
        "subnet_ids": "${subnet.public[*].id}",
    }


def test_sample_document_builds_a_graph_for_the_cloud_types() -> None:
    configuration = load_configuration(DATA_DIR / "control_plane.yaml")

    graph = build_graph(configuration, schema_for=_schema_for, variables={"web_zone": "eu-1a"})

    assert len(graph) == 7
    assert graph.addresses[0] == ResourceAddress("network", "vpc")
    assert graph.addresses[-1] == ResourceAddress("compute_instance", "web")
    assert set(graph.dependencies_of(ResourceAddress("route_table", "public"))) == {
        ResourceAddress("network", "vpc"),
        ResourceAddress("internet_gateway", "gw"),
        ResourceAddress("subnet", "public", 0),
        ResourceAddress("subnet", "public", 1),
    }
    web = graph.node_for(ResourceAddress("compute_instance", "web"))
    assert web.attributes["image"] == "ubuntu-22.04"
    assert ResourceAddress("route_table", "public") in web.dependencies


def test_json_and_toml_documents_are_equivalent(tmp_path: Path) -> None:
    document = {
        "resources": [
            {
                "type": "network",
                "name": "main",
                "attributes": {"name": "main", "cidr_block": "10.0.0.0/16"},
            }
        ],
        "outputs": {"network_id": "${network.main.id}"},
    }
    json_path = tmp_path / "stack.json"
    json_path.write_text(json.dumps(document), encoding="utf-8")
    toml_path = tmp_path / "stack.toml"
    toml_path.write_text(
        "\n".join(
            [
                "[[resources]]",
                'type = "network"',
                'name = "main"',
                'attributes = { name = "main", cidr_block = "10.0.0.0/16" }',
                "",
                "[outputs]",
                'network_id = "${network.main.id}"',
            ]
        ),
        encoding="utf-8",
    )

    assert load_configuration(json_path) == load_configuration(toml_path)


def test_empty_document_is_an_empty_configuration(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    configuration = load_configuration(path)

    assert configuration.resources == ()
    assert configuration.outputs == {}


@pytest.mark.parametrize(
    ("filename", "content", "message"),
    [
        ("stack.ini", "", "Unsupported configuration format '.ini'"),
        ("stack.json", "{not json", "Cannot parse configuration"),
        ("stack.yaml", "resources: [unclosed", "Cannot parse configuration"),
        ("stack.toml", "resources = ", "Cannot parse configuration"),
    ],
)
def test_unreadable_documents_raise_config_error(
    tmp_path: Path, filename: str, content: str, message: str
) -> None:
    path = tmp_path / filename
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_configuration(path)


def test_missing_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Cannot read configuration"):
        load_configuration(tmp_path / "absent.json")


def test_non_utf8_document_raises_config_error(tmp_path: Path) -> None:
    path = tmp_path / "stack.yaml"
    path.write_bytes(b"\xff\xferesources: []\n")

    with pytest.raises(ConfigError, match="Cannot read configuration"):
        load_configuration(path)


@pytest.mark.parametrize(
    "raw",
    [
        {"resources": [{"type": "network", "name": "main", "colour": "red"}]},
        {"resources": [{"type": "Network", "name": "main"}]},
        {"resources": [{"type": "network", "name": "main", "count": 1.5}]},
        {"outputs": {"ip": 42}},
        {"providers": {}},
    ],
)
def test_schema_violations_raise_config_error(raw: object) -> None:
    with pytest.raises(ConfigError, match="Invalid configuration <document>"):
        parse_configuration(raw)
