from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from packaging.version import Version

from solution_upgrader.core.config import ProductSettings, UpgradeSettings, load_settings, split_package_sources
from solution_upgrader.core.errors import ExecutionFailure, InputError, UpgradeCancelled, UpgradeNotice
from solution_upgrader.core.execute.executor import start_executor
from solution_upgrader.core.execute.synchronizer import ExecutionResult, ExecutionSynchronizer, ProgressFn
from solution_upgrader.core.model import PackageNode, PlanDocument
from solution_upgrader.core.packages.package_source import CatalogPackageSource, PackageTreeSource
from solution_upgrader.core.plan.build_plan import UpgradeRun, build_for_solution
from solution_upgrader.core.plan.write_plan import PLAN_FILE_NAME, dump_plan_xml
from solution_upgrader.core.project.project_files import detect_product_version, product_references, project_config_path
from solution_upgrader.core.solution.solution_file import SolutionDocument, load_solution
from solution_upgrader.core.version.version_codec import is_upgradeable, parse_requested

logger = logging.getLogger(__name__)


UPGRADE_WARNING = (
    "Upgrading replaces packages and rewrites project files in place. "
    "Make sure the solution is backed up or committed. Proceed?"
)

ConfirmFn = Callable[[str], bool]


@dataclass(frozen=True)
class UpgradeRequest:
    solution_path: str
    version: str
    skip_prompts: bool = False
    accept_license: bool = False
    # Comma-separated; None falls back to the configured sources.
    package_sources: Optional[str] = None


@dataclass(frozen=True)
class ProjectSelection:
    upgradeable: list[str]
    others: list[str]
    versions: dict[str, Version] = field(default_factory=dict)


@dataclass(frozen=True)
class UpgradeResult:
    ok: bool
    plan: Optional[PlanDocument]
    plan_path: Optional[str]
    notices: list[UpgradeNotice]
    restored_configs: list[str] = field(default_factory=list)
    execution: Optional[ExecutionResult] = None


def validate_request(request: UpgradeRequest) -> tuple[SolutionDocument, Version]:
    """Load the solution and parse the requested version; both are fatal on failure."""
    document = load_solution(request.solution_path)
    requested = parse_requested(request.version)
    return document, requested


def select_projects(
    document: SolutionDocument,
    requested_version: str,
    product: ProductSettings,
    notices: list[UpgradeNotice],
) -> ProjectSelection:
    """Split solution projects into those to upgrade and everything else."""
    upgradeable: list[str] = []
    others: list[str] = []
    versions: dict[str, Version] = {}

    for path in document.project_paths():
        p = str(path)
        if not path.exists():
            message = f"Project file '{p}' was not found; it will not be upgraded."
            logger.warning(message)
            notices.append(UpgradeNotice(code="W_PROJECT_NOT_FOUND", message=message, project=p))
            others.append(p)
            continue

        if not product_references(p, product):
            others.append(p)
            continue

        current = detect_product_version(p, product)
        if current is not None and not is_upgradeable(current, requested_version):
            message = (
                f"Project '{path.name}' is on version {current}, which is the same as or newer "
                f"than {requested_version}. It will not be upgraded."
            )
            logger.warning(message)
            notices.append(UpgradeNotice(code="W_VERSION_NOT_NEWER", message=message, project=p))
            others.append(p)
            continue

        # Undetectable versions stay in; the plan builder skips them with a note.
        upgradeable.append(p)
        if current is not None:
            versions[p] = current

    return ProjectSelection(upgradeable=upgradeable, others=others, versions=versions)


def capture_configs(project_paths: list[str]) -> dict[str, bytes]:
    captured: dict[str, bytes] = {}
    for p in project_paths:
        config_path = project_config_path(p)
        if config_path is None:
            continue
        try:
            captured[str(config_path)] = config_path.read_bytes()
        except OSError as e:
            raise InputError(code="E_FILE_READ", message=f"could not read config: {e}", file=str(config_path)) from e
    return captured


def restore_configs(captured: dict[str, bytes]) -> list[str]:
    """Write captured config files back byte-for-byte."""
    restored: list[str] = []
    for path, content in captured.items():
        Path(path).write_bytes(content)
        restored.append(path)
    if restored:
        logger.info("Restored %d config file(s) of projects that were not upgraded.", len(restored))
    return restored


def resolve_target_tree(
    request: UpgradeRequest,
    settings: UpgradeSettings,
    source: PackageTreeSource,
) -> tuple[PackageNode, list[str]]:
    sources = split_package_sources(request.package_sources, settings.package_sources)
    logger.info("Collecting package tree for version \"%s\"...", request.version)
    return source.get_package_tree(request.version, sources), sources


def build_plan(
    settings: UpgradeSettings,
    selection: ProjectSelection,
    target_tree: PackageNode,
    sources: list[str],
    source: PackageTreeSource,
    notices: list[UpgradeNotice],
) -> PlanDocument:
    run = UpgradeRun(
        target_tree=target_tree,
        package_source=source,
        product=settings.product,
        package_sources=sources,
        notices=notices,
    )
    return build_for_solution(run, selection.upgradeable, selection.versions)


def default_source(settings: UpgradeSettings) -> PackageTreeSource:
    return CatalogPackageSource(settings.catalog_dir, settings.product.package_id)


async def run_upgrade(
    request: UpgradeRequest,
    *,
    settings: Optional[UpgradeSettings] = None,
    package_source: Optional[PackageTreeSource] = None,
    confirm: Optional[ConfirmFn] = None,
    on_progress: Optional[ProgressFn] = None,
) -> UpgradeResult:
    """Detect, plan, hand the plan to the executor and wait for it."""
    settings = settings or load_settings(None, request.solution_path)
    document, _ = validate_request(request)
    solution = Path(request.solution_path).resolve()

    if not request.skip_prompts:
        if confirm is None:
            raise InputError(
                code="E_CONFIRMATION_REQUIRED",
                message="confirmation is required; pass --skip-prompts to run unattended",
            )
        if not confirm(UPGRADE_WARNING):
            raise UpgradeCancelled(code="E_CANCELLED", message="Upgrade was canceled.")

    notices: list[UpgradeNotice] = []
    logger.info("Searching the provided project/s for product references...")
    selection = select_projects(document, request.version, settings.product, notices)
    if not selection.upgradeable:
        message = "No projects with product references that can be upgraded were found."
        logger.warning(message)
        notices.append(UpgradeNotice(code="W_NO_PROJECTS", message=message))
        return UpgradeResult(ok=True, plan=None, plan_path=None, notices=notices)

    logger.info("%d project(s) with product references found.", len(selection.upgradeable))
    captured = capture_configs(selection.others)

    source = package_source or default_source(settings)
    target_tree, sources = resolve_target_tree(request, settings, source)

    if not request.accept_license:
        prompt = f"Do you accept the license terms of {target_tree.id} {target_tree.version}?"
        if confirm is None or not confirm(prompt):
            raise UpgradeCancelled(code="E_CANCELLED", message="Upgrade was canceled.")

    plan = build_plan(settings, selection, target_tree, sources, source, notices)

    sync = ExecutionSynchronizer(
        settings.workdir,
        poll_interval=settings.executor.poll_interval,
        timeout=settings.executor.timeout,
        on_progress=on_progress,
        exit_grace=settings.executor.exit_grace,
    )
    try:
        sync.reset()
    except OSError as e:
        raise InputError(
            code="E_FILE_WRITE",
            message=f"could not prepare work directory: {e}",
            file=str(settings.workdir),
        ) from e

    logger.info("Exporting upgrade config...")
    plan_path = dump_plan_xml(plan, settings.workdir / PLAN_FILE_NAME)
    logger.info("Successfully exported upgrade config!")

    try:
        sync.process = start_executor(
            settings.executor.command,
            config=plan_path,
            solution=solution,
            workdir=settings.workdir,
        )
        execution = await sync.wait()
    except (ExecutionFailure, asyncio.CancelledError):
        restore_configs(captured)
        raise

    restored = restore_configs(captured)
    if not execution.ok:
        raise ExecutionFailure(
            code="E_EXECUTION_FAILED",
            message=f"Error occurred while upgrading packages. {execution.detail}",
            file=str(sync.result_file),
        )

    for p in selection.upgradeable:
        source.sync_references(p, str(solution.parent))

    logger.info("Successfully upgraded '%s' to version %s.", request.solution_path, request.version)
    return UpgradeResult(
        ok=True,
        plan=plan,
        plan_path=str(plan_path),
        notices=notices,
        restored_configs=restored,
        execution=execution,
    )
