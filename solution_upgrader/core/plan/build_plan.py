from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from packaging.version import Version

from solution_upgrader.core.config import ProductSettings
from solution_upgrader.core.errors import UpgradeNotice
from solution_upgrader.core.match.match_tree import ProcessedPackageCache, match_tree
from solution_upgrader.core.model import PackageNode, PlanDocument, PlannedPackage, PlanSection, UpgradeTarget
from solution_upgrader.core.packages.package_source import PackageTreeSource
from solution_upgrader.core.project.project_files import PackageManifest, detect_product_version, project_name

logger = logging.getLogger(__name__)


ManifestFn = Callable[[str], PackageManifest]


@dataclass
class UpgradeRun:
    """State for one upgrade run. Nothing here outlives the run or crosses projects."""

    target_tree: PackageNode
    package_source: PackageTreeSource
    product: ProductSettings = field(default_factory=ProductSettings)
    package_sources: list[str] = field(default_factory=list)
    manifest_for: ManifestFn = PackageManifest.for_project
    notices: list[UpgradeNotice] = field(default_factory=list)
    caches: dict[str, ProcessedPackageCache] = field(default_factory=dict)

    def new_cache(self, project_path: str) -> ProcessedPackageCache:
        cache = ProcessedPackageCache()
        self.caches[project_path] = cache
        return cache

    def note(self, code: str, message: str, project: Optional[str] = None, *, level: int = logging.WARNING) -> None:
        logger.log(level, message)
        self.notices.append(UpgradeNotice(code=code, message=message, project=project))


def build_target(run: UpgradeRun, project_path: str, current_version: Version) -> UpgradeTarget:
    """Match the project's current package tree against the run's target tree."""
    logger.info("Collecting package tree for '%s'...", project_path)
    current_tree = run.package_source.get_package_tree(str(current_version), run.package_sources)

    manifest = run.manifest_for(project_path)
    cache = run.new_cache(project_path)
    matched = match_tree(
        project_path,
        current_tree,
        run.target_tree,
        cache,
        is_installed=manifest.is_installed,
        notices=run.notices,
    )

    target = UpgradeTarget(project_path=project_path, current_version=str(current_version))
    for node in matched:
        target.packages[node.id] = node
    return target


def build_for_project(
    run: UpgradeRun,
    project_path: str | Path,
    current_version: Optional[Version] = None,
) -> PlanSection:
    path = str(project_path)
    name = project_name(path)

    version = current_version or detect_product_version(path, run.product)
    if version is None:
        run.note(
            "W_VERSION_NOT_DETECTED",
            f"Skip upgrade for project: '{path}'. Current version was not detected.",
            path,
            level=logging.INFO,
        )
        return PlanSection(project_name=name, project_path=path, packages=[])

    logger.info("Detected version for '%s' - '%s'.", path, version)
    target = build_target(run, path, version)
    return PlanSection(
        project_name=name,
        project_path=path,
        packages=[PlannedPackage(id=n.id, version=n.version) for n in target.packages.values()],
        current_version=target.current_version,
    )


def build_for_solution(
    run: UpgradeRun,
    project_paths: list[str] | list[Path],
    versions: Optional[dict[str, Version]] = None,
) -> PlanDocument:
    """One section per project, in input order. An empty plan is a warning, not an error."""
    logger.info("Building upgrade plan...")
    sections = [
        build_for_project(run, p, (versions or {}).get(str(p)))
        for p in project_paths
    ]
    doc = PlanDocument(sections=sections)
    if doc.is_empty():
        run.note("W_EMPTY_PLAN", "The upgrade plan contains no packages.")
    return doc
