"""Minimal reads of MSBuild project files and their sibling manifests."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from packaging.version import Version

from solution_upgrader.core.config import ProductSettings
from solution_upgrader.core.errors import InputError
from solution_upgrader.core.version.version_codec import detect


PROJECT_FILE_EXTENSIONS: tuple[str, ...] = (".csproj", ".vbproj")

PACKAGES_CONFIG_NAME = "packages.config"

# web.config wins when a project carries both.
PROJECT_CONFIG_NAMES: tuple[str, ...] = ("web.config", "app.config")


def is_project_file(path: str) -> bool:
    return path.lower().endswith(PROJECT_FILE_EXTENSIONS)


def project_name(path: str) -> str:
    """File name without the project extension: ``src\\Web\\Web.csproj`` -> ``Web``."""
    name = path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
    for ext in PROJECT_FILE_EXTENSIONS:
        if name.lower().endswith(ext):
            return name[: -len(ext)]
    return name


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_xml(path: Path, code: str) -> ET.Element:
    if not path.exists():
        raise InputError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(path))
    try:
        return ET.parse(path).getroot()
    except ET.ParseError as e:
        raise InputError(code=code, message=str(e), file=str(path)) from e


def read_references(project_path: str | Path) -> list[str]:
    """Return every ``Reference/@Include`` in document order, namespace-agnostic."""
    root = _parse_xml(Path(project_path), "E_PROJECT_PARSE")
    out: list[str] = []
    for el in root.iter():
        if _local(el.tag) == "Reference":
            include = el.get("Include")
            if include:
                out.append(include)
    return out


def is_product_reference(include: str, product: ProductSettings) -> bool:
    has_keyword = any(k in include for k in product.reference_keywords)
    excluded = any(k in include for k in product.excluded_keywords)
    return (
        has_keyword
        and not excluded
        and f"PublicKeyToken={product.public_key_token}" in include
    )


def product_references(project_path: str | Path, product: ProductSettings) -> list[str]:
    return [r for r in read_references(project_path) if is_product_reference(r, product)]


def detect_product_version(project_path: str | Path, product: ProductSettings) -> Optional[Version]:
    """Version of the first product reference, or None when absent or undetectable."""
    refs = product_references(project_path, product)
    if not refs:
        return None
    return detect(refs[0])


class PackageManifest:
    """Packages installed for one project, read from its ``packages.config``."""

    def __init__(self, project_path: str | Path, package_ids: set[str]) -> None:
        self.project_path = str(project_path)
        self._ids = {p.casefold() for p in package_ids}

    def __contains__(self, package_id: object) -> bool:
        return isinstance(package_id, str) and package_id.casefold() in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def is_installed(self, package_id: str) -> bool:
        return package_id in self

    @classmethod
    def for_project(cls, project_path: str | Path) -> PackageManifest:
        manifest = Path(project_path).parent / PACKAGES_CONFIG_NAME
        if not manifest.exists():
            return cls(project_path, set())
        root = _parse_xml(manifest, "E_MANIFEST_PARSE")
        ids = {
            el.get("id", "")
            for el in root.iter()
            if _local(el.tag) == "package" and el.get("id")
        }
        return cls(project_path, ids)


def project_config_path(project_path: str | Path) -> Optional[Path]:
    folder = Path(project_path).parent
    if not folder.is_dir():
        return None
    by_lower = {p.name.lower(): p for p in folder.iterdir() if p.is_file()}
    for name in PROJECT_CONFIG_NAMES:
        if name in by_lower:
            return by_lower[name]
    return None
