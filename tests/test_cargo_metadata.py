import json

import pytest

from cratesfyi.cargo_metadata import CargoMetadata, Dependency, Target
from cratesfyi.errors import CratesfyiError

ROOT_ID = "demo 0.1.0 (path+file:///demo)"
SERDE_ID = "serde 1.0.0 (registry+index)"
UNUSED_ID = "unused 0.3.0 (registry+index)"


def _bare_package(package_id, name, version):
    return {
        "id": package_id,
        "name": name,
        "version": version,
        "dependencies": [],
        "targets": [],
        "keywords": [],
        "authors": [],
    }


def _sample():
    root = {
        "id": ROOT_ID,
        "name": "demo",
        "version": "0.1.0",
        "license": "MIT",
        "repository": None,
        "homepage": None,
        "description": "A demo crate",
        "documentation": None,
        "dependencies": [{"name": "serde", "req": "^1.0", "kind": None}],
        "targets": [{"name": "demo", "kind": ["lib"], "src_path": "/demo/src/lib.rs"}],
        "readme": None,
        "keywords": ["demo"],
        "authors": ["Jane Doe <jane@example.com>"],
    }
    return {
        "packages": [
            root,
            _bare_package(SERDE_ID, "serde", "1.0.0"),
            _bare_package(UNUSED_ID, "unused", "0.3.0"),
        ],
        "resolve": {
            "root": ROOT_ID,
            "nodes": [
                {"id": ROOT_ID, "deps": [{"pkg": SERDE_ID}]},
                {"id": SERDE_ID, "deps": []},
                {"id": UNUSED_ID, "deps": []},
            ],
        },
    }


def test_root_package_fields():
    metadata = CargoMetadata.from_json(json.dumps(_sample()))
    root = metadata.root()
    assert root.name == "demo"
    assert root.version == "0.1.0"
    assert root.license == "MIT"
    assert root.repository is None
    assert root.description == "A demo crate"
    assert root.dependencies == [Dependency("serde", "^1.0", None)]
    assert root.targets == [Target("demo", ["lib"], "/demo/src/lib.rs")]
    assert root.keywords == ["demo"]
    assert root.authors == ["Jane Doe <jane@example.com>"]


def test_root_dependencies_follow_the_graph():
    metadata = CargoMetadata.from_json(json.dumps(_sample()))
    assert [p.name for p in metadata.root_dependencies()] == ["serde"]


def test_missing_optional_fields_are_none():
    metadata = CargoMetadata.from_json(json.dumps(_sample()))
    serde = metadata.packages[SERDE_ID]
    assert serde.license is None
    assert serde.readme is None
    assert serde.documentation is None


def test_invalid_json_raises():
    with pytest.raises(CratesfyiError):
        CargoMetadata.from_json("{not json")


def test_missing_resolve_raises():
    data = _sample()
    del data["resolve"]
    with pytest.raises(CratesfyiError):
        CargoMetadata.from_json(json.dumps(data))


def test_missing_required_package_field_raises():
    data = _sample()
    del data["packages"][0]["targets"]
    with pytest.raises(CratesfyiError):
        CargoMetadata.from_json(json.dumps(data))


def test_unknown_root_raises():
    data = _sample()
    data["resolve"]["root"] = "missing"
    metadata = CargoMetadata.from_json(json.dumps(data))
    with pytest.raises(CratesfyiError):
        metadata.root()
    with pytest.raises(CratesfyiError):
        metadata.root_dependencies()


def _script(tmp_path, body):
    script = tmp_path / "fake-cargo"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(0o755)
    return script


def test_load_reads_single_line_output(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    (source / "metadata.json").write_text(json.dumps(_sample()))
    cargo = _script(tmp_path, "cat metadata.json\n")
    metadata = CargoMetadata.load(source, cargo)
    assert metadata.root().name == "demo"
    assert metadata.root_id == ROOT_ID


def test_load_rejects_multiline_output(tmp_path):
    cargo = _script(tmp_path, "echo one\necho two\n")
    with pytest.raises(CratesfyiError):
        CargoMetadata.load(tmp_path, cargo)


def test_load_rejects_failing_command(tmp_path):
    cargo = _script(tmp_path, "exit 1\n")
    with pytest.raises(CratesfyiError):
        CargoMetadata.load(tmp_path, cargo)


def test_load_rejects_missing_command(tmp_path):
    with pytest.raises(CratesfyiError):
        CargoMetadata.load(tmp_path, tmp_path / "no-such-cargo")