from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PackageNode:
    id: str
    version: str
    # Ids may repeat across branches; a tree is not guaranteed to be a DAG with unique ids.
    dependencies: list[PackageNode] = field(default_factory=list)

    def same_id(self, other_id: str) -> bool:
        return self.id.casefold() == other_id.casefold()


@dataclass(frozen=True)
class PlannedPackage:
    id: str
    version: str


@dataclass(frozen=True)
class PlanSection:
    project_name: str
    project_path: str
    packages: list[PlannedPackage]
    current_version: Optional[str] = None


@dataclass(frozen=True)
class PlanDocument:
    sections: list[PlanSection]

    def is_empty(self) -> bool:
        return not any(s.packages for s in self.sections)


@dataclass(frozen=True)
class SolutionEntry:
    project_type_id: str
    name: str
    relative_path: str
    project_id: str


@dataclass(frozen=True)
class UpgradeTarget:
    """One project's detected version plus the packages chosen from the target tree."""

    project_path: str
    current_version: str
    packages: dict[str, PackageNode] = field(default_factory=dict)
