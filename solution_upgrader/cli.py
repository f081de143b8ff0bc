from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from solution_upgrader.core.config import UpgradeSettings, load_settings
from solution_upgrader.core.errors import (
    ConfigError,
    InputError,
    MalformedSolutionError,
    SolutionStructureError,
    UpgradeError,
    UpgradeNotice,
)
from solution_upgrader.core.model import PlanDocument
from solution_upgrader.core.plan.write_plan import dump_plan_xml
from solution_upgrader.core.project.project_files import detect_product_version, product_references
from solution_upgrader.core.solution.solution_file import load_solution, new_entry, save_solution
from solution_upgrader.core.upgrade import (
    UpgradeRequest,
    build_plan,
    default_source,
    resolve_target_tree,
    run_upgrade,
    select_projects,
    validate_request,
)

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()

FORMATS = ("text", "json")


@app.callback()
def _callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output"),
) -> None:
    """Upgrade the packages of a multi-project solution to a newer product version."""
    _configure_logging(verbose)


class _EchoHandler(logging.Handler):
    """Route log records through typer.echo so they land on the current stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            typer.echo(self.format(record), err=True)
        except Exception:  # pragma: no cover
            self.handleError(record)


def _configure_logging(verbose: bool) -> None:
    log = logging.getLogger("solution_upgrader")
    for h in list(log.handlers):
        log.removeHandler(h)
    handler = _EchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if verbose else logging.INFO)


def _exit_code(e: UpgradeError) -> int:
    if isinstance(e, (MalformedSolutionError, SolutionStructureError, ConfigError)):
        return 2
    return 1


def _check_format(format: str, exit_code: int = 2) -> None:
    if format not in FORMATS:
        err = InputError(
            code="E_UNKNOWN_FORMAT",
            message=f"unknown format: {format} (choose one of: text, json)",
            path="format",
        )
        _print_errors([err])
        raise typer.Exit(code=exit_code)


def _settings(config: Optional[str], solution: str, timeout: Optional[float] = None) -> UpgradeSettings:
    settings = load_settings(config, solution)
    if timeout is not None:
        settings = replace(settings, executor=replace(settings.executor, timeout=timeout))
    return settings


def _error_item(e: UpgradeError) -> dict[str, Any]:
    return {"code": e.code, "message": e.message, "file": e.file, "path": e.path, "severity": "error"}


def _notice_item(n: UpgradeNotice) -> dict[str, Any]:
    return {"code": n.code, "message": n.message, "project": n.project, "severity": "warning"}


def _plan_summary(plan: Optional[PlanDocument]) -> Optional[list[dict[str, Any]]]:
    if plan is None:
        return None
    return [
        {
            "project": s.project_name,
            "current_version": s.current_version,
            "packages": [{"name": p.id, "version": p.version} for p in s.packages],
        }
        for s in plan.sections
    ]


def _emit_json(command: str, *, ok: bool, exit_code: int, errors: list[UpgradeError], **extra: Any) -> None:
    payload = {
        "tool": "solution-upgrader",
        "command": command,
        "ok": ok,
        "error_count": len(errors),
        "errors": [_error_item(e) for e in errors],
    }
    payload.update(extra)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    raise typer.Exit(code=exit_code)


def _confirm(message: str) -> bool:
    return typer.confirm(message, default=False)


@app.command("upgrade")
def upgrade(
    solution: str = typer.Argument(..., help="Path to the solution file (.sln)"),
    version: str = typer.Argument(..., help="Version to upgrade to, e.g. 14.0.7700 or 14.1.7800-preview"),
    skip_prompts: bool = typer.Option(False, "--skip-prompts", help="Do not ask for confirmation"),
    accept_license: bool = typer.Option(
        False, "--accept-license", help="Accept the license terms of the target package"
    ),
    package_sources: Optional[str] = typer.Option(
        None, "--package-sources", help="Comma-separated package sources"
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Optional YAML settings file"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Give up waiting for the executor after this many seconds"
    ),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Build the upgrade plan, run the executor and wait for it to finish."""
    # Any fault exits 1 here, structural ones included.
    _check_format(format, exit_code=1)

    try:
        settings = _settings(config, solution, timeout)
        request = UpgradeRequest(
            solution_path=solution,
            version=version,
            skip_prompts=skip_prompts,
            accept_license=accept_license,
            package_sources=package_sources,
        )
        result = asyncio.run(
            run_upgrade(
                request,
                settings=settings,
                confirm=_confirm,
            )
        )
    except UpgradeError as e:
        if format == "json":
            _emit_json("upgrade", ok=False, exit_code=1, errors=[e])
        _print_errors([e])
        raise typer.Exit(code=1)

    if format == "json":
        _emit_json(
            "upgrade",
            ok=True,
            exit_code=0,
            errors=[],
            notices=[_notice_item(n) for n in result.notices],
            plan=_plan_summary(result.plan),
            plan_path=result.plan_path,
            restored_configs=result.restored_configs,
        )

    if result.plan is None:
        typer.echo("OK: nothing to upgrade")
        return
    typer.echo(f"OK: upgraded {solution} to {version}")


@app.command("plan")
def plan_cmd(
    solution: str = typer.Argument(..., help="Path to the solution file (.sln)"),
    version: str = typer.Argument(..., help="Version to upgrade to"),
    out: str = typer.Option(..., "--out", help="Path to write the plan document (XML)"),
    package_sources: Optional[str] = typer.Option(
        None, "--package-sources", help="Comma-separated package sources"
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Optional YAML settings file"),
) -> None:
    """Write the upgrade plan without running the executor."""
    notices: list[UpgradeNotice] = []
    try:
        settings = _settings(config, solution)
        request = UpgradeRequest(solution_path=solution, version=version, package_sources=package_sources)
        document, _ = validate_request(request)
        selection = select_projects(document, version, settings.product, notices)
        if not selection.upgradeable:
            typer.echo("WARN: no projects to upgrade; no plan written", err=True)
            return
        source = default_source(settings)
        target_tree, sources = resolve_target_tree(request, settings, source)
        plan = build_plan(settings, selection, target_tree, sources, source, notices)
        dump_plan_xml(plan, Path(out))
    except UpgradeError as e:
        _print_errors([e])
        raise typer.Exit(code=_exit_code(e))

    count = sum(len(s.packages) for s in plan.sections)
    typer.echo(f"OK: wrote {out} (projects={len(plan.sections)}, packages={count})")


@app.command("projects")
def projects(
    solution: str = typer.Argument(..., help="Path to the solution file (.sln)"),
    config: Optional[str] = typer.Option(None, "--config", help="Optional YAML settings file"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """List the projects of a solution and the product version each one references."""
    _check_format(format)

    try:
        settings = _settings(config, solution)
        document = load_solution(solution)
        entries = document.entries
    except UpgradeError as e:
        if format == "json":
            _emit_json("projects", ok=False, exit_code=_exit_code(e), errors=[e])
        _print_errors([e])
        raise typer.Exit(code=_exit_code(e))

    base = Path(solution).resolve().parent
    rows: list[dict[str, Any]] = []
    for e in entries:
        path = (base / e.relative_path.replace("\\", "/")).resolve()
        product_version: Optional[str] = None
        references_product = False
        if path.is_file() and path.suffix.lower() in (".csproj", ".vbproj"):
            try:
                references_product = bool(product_references(path, settings.product))
                detected = detect_product_version(path, settings.product)
            except InputError as err:
                _print_errors([err])
                detected = None
            product_version = str(detected) if detected is not None else None
        rows.append(
            {
                "name": e.name,
                "relative_path": e.relative_path,
                "project_id": e.project_id,
                "project_type_id": e.project_type_id,
                "references_product": references_product,
                "product_version": product_version,
            }
        )

    if format == "json":
        _emit_json("projects", ok=True, exit_code=0, errors=[], projects=rows)

    table = Table(title=f"{Path(solution).name} ({len(rows)} projects)")
    table.add_column("Name")
    table.add_column("Path")
    table.add_column("Product")
    table.add_column("Version")
    for r in rows:
        table.add_row(
            r["name"],
            r["relative_path"],
            "yes" if r["references_product"] else "no",
            r["product_version"] or "-",
        )
    console.print(table)


@app.command("add-project")
def add_project(
    solution: str = typer.Argument(..., help="Path to the solution file (.sln)"),
    name: str = typer.Argument(..., help="Project name as shown in the solution"),
    relative_path: str = typer.Argument(..., help="Project file path relative to the solution"),
    project_id: Optional[str] = typer.Option(None, "--project-id", help="Project GUID (default: new)"),
    type_id: Optional[str] = typer.Option(None, "--type-id", help="Project type GUID (default: C#)"),
) -> None:
    """Add a project entry and its build configurations to a solution."""
    try:
        document = load_solution(solution)
        kwargs: dict[str, Any] = {"project_id": project_id}
        if type_id:
            kwargs["project_type_id"] = type_id
        entry = new_entry(name, relative_path, **kwargs)
        save_solution(solution, document.with_entry(entry))
    except UpgradeError as e:
        _print_errors([e])
        raise typer.Exit(code=_exit_code(e))

    typer.echo(f"OK: added {entry.name} {{{entry.project_id}}} to {solution}")


def _print_errors(errors: list[UpgradeError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="solution-upgrader")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
