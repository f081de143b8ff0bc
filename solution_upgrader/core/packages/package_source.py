from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml

from solution_upgrader.core.errors import PackageSourceError
from solution_upgrader.core.model import PackageNode

logger = logging.getLogger(__name__)


TREE_SUFFIXES: tuple[str, ...] = (".yaml", ".yml", ".json")


class PackageTreeSource(Protocol):
    def get_package_tree(self, version: str, sources: list[str]) -> PackageNode:
        """Resolved dependency tree of the product package at ``version``."""
        ...

    def sync_references(self, project_path: str, solution_dir: str) -> None:
        """Point the project's assembly references (HintPath) at the restored package folders."""
        ...


def parse_package_tree(obj: Any, *, file: Optional[str] = None, path: str = "root") -> PackageNode:
    """Build a PackageNode tree from ``{id, version, dependencies: [...]}`` mappings."""
    if not isinstance(obj, dict):
        raise PackageSourceError(
            code="E_PACKAGE_TREE_INVALID",
            message="package must be a mapping",
            file=file,
            path=path,
        )

    pid = obj.get("id")
    if not isinstance(pid, str) or not pid.strip():
        raise PackageSourceError(
            code="E_PACKAGE_TREE_INVALID",
            message="id is required and must be a non-empty string",
            file=file,
            path=f"{path}.id",
        )

    version = obj.get("version")
    if isinstance(version, (int, float)) and not isinstance(version, bool):
        version = str(version)
    if not isinstance(version, str) or not version.strip():
        raise PackageSourceError(
            code="E_PACKAGE_TREE_INVALID",
            message="version is required and must be a non-empty string",
            file=file,
            path=f"{path}.version",
        )

    deps_raw = obj.get("dependencies")
    if deps_raw is None:
        deps_raw = []
    if not isinstance(deps_raw, list):
        raise PackageSourceError(
            code="E_PACKAGE_TREE_INVALID",
            message="dependencies must be an array",
            file=file,
            path=f"{path}.dependencies",
        )

    deps = [
        parse_package_tree(d, file=file, path=f"{path}.dependencies[{i}]")
        for i, d in enumerate(deps_raw)
    ]
    return PackageNode(id=pid.strip(), version=version.strip(), dependencies=deps)


def load_package_tree(path: str | Path) -> PackageNode:
    p = Path(path)
    if not p.exists():
        raise PackageSourceError(code="E_PACKAGE_TREE_NOT_FOUND", message="file does not exist", file=str(p))

    text = p.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PackageSourceError(code="E_PACKAGE_TREE_INVALID", message=str(e), file=str(p)) from e
    return parse_package_tree(data, file=str(p))


class CatalogPackageSource:
    """Package trees already resolved by the package manager, one file per root.

    Files are named ``<id>.<version>.yaml`` (or ``.yml``/``.json``).
    """

    def __init__(self, catalog_dir: str | Path, package_id: str) -> None:
        self.catalog_dir = Path(catalog_dir)
        self.package_id = package_id

    def tree_path(self, version: str) -> Optional[Path]:
        if not self.catalog_dir.is_dir():
            return None
        wanted = {f"{self.package_id}.{version}{s}".lower() for s in TREE_SUFFIXES}
        for p in sorted(self.catalog_dir.iterdir()):
            if p.is_file() and p.name.lower() in wanted:
                return p
        return None

    def get_package_tree(self, version: str, sources: list[str]) -> PackageNode:
        logger.debug("Package sources: %s", ", ".join(sources))
        p = self.tree_path(version)
        if p is None:
            raise PackageSourceError(
                code="E_PACKAGE_TREE_NOT_FOUND",
                message=f"version '{version}' of '{self.package_id}' was not found",
                file=str(self.catalog_dir),
            )
        return load_package_tree(p)

    def sync_references(self, project_path: str, solution_dir: str) -> None:
        # Resolved trees carry no assembly paths; nothing to rewrite.
        logger.debug("No reference sync for '%s'", project_path)
