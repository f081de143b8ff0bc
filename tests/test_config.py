from pathlib import Path

import pytest

from solution_upgrader.core.config import (
    DEFAULT_PACKAGE_SOURCES,
    load_settings,
    parse_settings,
    split_package_sources,
)
from solution_upgrader.core.errors import ConfigError


def test_defaults_without_config(tmp_path, monkeypatch):
    monkeypatch.delenv("SOLUTION_UPGRADER_POLL_INTERVAL", raising=False)
    monkeypatch.delenv("SOLUTION_UPGRADER_TIMEOUT", raising=False)
    sln = tmp_path / "App.sln"

    settings = load_settings(None, str(sln))

    assert settings.product.package_id == "Telerik.Sitefinity.All"
    assert settings.package_sources == DEFAULT_PACKAGE_SOURCES
    assert settings.executor.timeout is None
    assert settings.workdir == tmp_path.resolve() / ".upgrade"
    assert settings.catalog_dir == tmp_path.resolve() / "packages-catalog"


def test_default_config_beside_solution(tmp_path):
    (tmp_path / "solution-upgrader.yaml").write_text(
        "product:\n"
        "  package_id: Acme.Suite\n"
        "executor:\n"
        "  command: run-upgrade {config}\n"
        "  poll_interval: 0.1\n"
        "  exit_grace: 2\n"
        "package_catalog: trees\n",
        encoding="utf-8",
    )
    settings = load_settings(None, str(tmp_path / "App.sln"))

    assert settings.product.package_id == "Acme.Suite"
    assert settings.product.public_key_token == "b28c218413bdf563"
    assert settings.executor.command == ["run-upgrade", "{config}"]
    assert settings.executor.poll_interval == 0.1
    assert settings.executor.exit_grace == 2.0
    assert settings.catalog_dir == tmp_path.resolve() / "trees"


def test_explicit_config_missing(tmp_path):
    with pytest.raises(ConfigError) as exc:
        load_settings(str(tmp_path / "nope.yaml"))
    assert exc.value.code == "E_FILE_NOT_FOUND"


def test_invalid_yaml(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("executor: [unterminated", encoding="utf-8")
    with pytest.raises(ConfigError) as exc:
        load_settings(str(p))
    assert exc.value.code == "E_CONFIG_INVALID"


def test_invalid_value_carries_file_and_key(tmp_path):
    p = tmp_path / "cfg.yaml"
    p.write_text("executor:\n  timeout: -3\n", encoding="utf-8")
    with pytest.raises(ConfigError) as exc:
        load_settings(str(p))
    assert exc.value.file == str(p)
    assert exc.value.path == "executor.timeout"


@pytest.mark.parametrize(
    "raw",
    [
        ["not", "a", "mapping"],
        {"product": {"package_id": ""}},
        {"product": {"reference_keywords": "Acme"}},
        {"executor": {"poll_interval": True}},
        {"executor": {"workdir": 3}},
        {"executor": {"exit_grace": 0}},
        {"package_sources": [""]},
        {"package_catalog": ["a"]},
    ],
)
def test_parse_settings_rejects(raw):
    with pytest.raises(ConfigError):
        parse_settings(raw)


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("SOLUTION_UPGRADER_POLL_INTERVAL", "0.05")
    monkeypatch.setenv("SOLUTION_UPGRADER_TIMEOUT", "30")
    settings = load_settings(None, str(tmp_path / "App.sln"))
    assert settings.executor.poll_interval == 0.05
    assert settings.executor.timeout == 30.0


def test_env_override_invalid(tmp_path, monkeypatch):
    monkeypatch.setenv("SOLUTION_UPGRADER_TIMEOUT", "soon")
    with pytest.raises(ConfigError) as exc:
        load_settings(None, str(tmp_path / "App.sln"))
    assert exc.value.path == "SOLUTION_UPGRADER_TIMEOUT"


def test_absolute_paths_are_kept(tmp_path):
    settings = parse_settings({"executor": {"workdir": str(tmp_path / "w")}}, base_dir="/elsewhere")
    assert settings.workdir == Path(tmp_path / "w")


def test_split_package_sources():
    assert split_package_sources(None, ["a"]) == ["a"]
    assert split_package_sources(" x , ,y ", ["a"]) == ["x", "y"]
