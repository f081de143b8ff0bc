import json

from typer.testing import CliRunner

from solution_upgrader.cli import app

runner = CliRunner()


def test_cli_projects_json():
    r = runner.invoke(app, ["projects", "examples/sample/Sample.sln", "--format", "json"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["command"] == "projects"
    assert payload["ok"] is True
    rows = {p["name"]: p for p in payload["projects"]}
    assert list(rows) == ["Web", "Lib", "Solution Items", "Utils"]
    assert rows["Web"]["references_product"] is True
    assert rows["Web"]["product_version"] == "13.1.7400"
    assert rows["Utils"]["references_product"] is False
    assert rows["Utils"]["product_version"] is None
    assert rows["Solution Items"]["references_product"] is False
    assert rows["Lib"]["project_id"] == "0A1B2C3D-4E5F-4061-8293-A4B5C6D7E8F9"


def test_cli_projects_text():
    r = runner.invoke(app, ["projects", "examples/sample/Sample.sln"])
    assert r.exit_code == 0
    assert "Web" in r.stdout
    assert "13.1.7400" in r.stdout


def test_cli_projects_missing_solution():
    r = runner.invoke(app, ["projects", "examples/sample/Missing.sln", "--format", "json"])
    assert r.exit_code == 1
    payload = json.loads(r.stdout)
    assert payload["ok"] is False
    assert payload["errors"][0]["code"] == "E_FILE_NOT_FOUND"


def test_cli_projects_malformed_solution(tmp_path):
    sln = tmp_path / "Bad.sln"
    sln.write_text('Project("{nope}") = "A", "A\\A.csproj", "{also-nope}"\n', encoding="utf-8")
    r = runner.invoke(app, ["projects", str(sln)])
    assert r.exit_code == 2
    assert "E_MALFORMED_SOLUTION" in (r.stdout + r.stderr)


def test_cli_unknown_format():
    r = runner.invoke(app, ["projects", "examples/sample/Sample.sln", "--format", "xml"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_FORMAT" in (r.stdout + r.stderr)
