"""Match packages a project references against a target package tree.

The walk keeps trying one level deeper when a package has no counterpart:
package trees are not required to line up 1:1 between versions, so a parent
that vanished (or was never installed) may still have children that match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Literal, Optional

from solution_upgrader.core.errors import UpgradeNotice
from solution_upgrader.core.model import PackageNode

logger = logging.getLogger(__name__)


MatchStatus = Literal["matched", "not_installed", "not_in_target"]

InstalledFn = Callable[[str], bool]


class ProcessedPackageCache:
    """Per-project set of package ids already covered by the plan (case-insensitive)."""

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._ids: set[str] = set()
        for pid in ids:
            self.add(pid)

    def __contains__(self, package_id: object) -> bool:
        return isinstance(package_id, str) and package_id.casefold() in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._ids))

    def add(self, package_id: str) -> None:
        self._ids.add(package_id.casefold())

    def add_tree(self, root: PackageNode) -> None:
        stack = [root]
        while stack:
            node = stack.pop()
            self.add(node.id)
            stack.extend(node.dependencies)


@dataclass(frozen=True)
class MatchResult:
    status: MatchStatus
    package: PackageNode
    target: Optional[PackageNode] = None

    @property
    def ok(self) -> bool:
        return self.status == "matched"


def iter_preorder(root: PackageNode) -> Iterator[PackageNode]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.dependencies))


def find_package(tree: PackageNode, package_id: str) -> Optional[PackageNode]:
    """First node with ``package_id`` in pre-order; ids are compared case-insensitively."""
    for node in iter_preorder(tree):
        if node.same_id(package_id):
            return node
    return None


def match(
    project: str,
    current: PackageNode,
    target_tree: PackageNode,
    cache: ProcessedPackageCache,
    *,
    is_installed: InstalledFn,
    notices: Optional[list[UpgradeNotice]] = None,
) -> MatchResult:
    if not is_installed(current.id):
        logger.debug("'%s' is not installed in '%s'; skipping", current.id, project)
        return MatchResult(status="not_installed", package=current)

    target = find_package(target_tree, current.id)
    if target is None:
        message = f"New version for package '{current.id}' was not found. Package will not be upgraded."
        logger.warning(message)
        if notices is not None:
            notices.append(UpgradeNotice(code="W_PACKAGE_NOT_IN_TARGET", message=message, project=project))
        return MatchResult(status="not_in_target", package=current)

    # The matched package brings its whole subtree along; none of it is matched again.
    cache.add_tree(target)
    return MatchResult(status="matched", package=current, target=target)


def match_subtree(
    project: str,
    dependencies: list[PackageNode],
    target_tree: PackageNode,
    cache: ProcessedPackageCache,
    *,
    is_installed: InstalledFn,
    notices: Optional[list[UpgradeNotice]] = None,
) -> list[PackageNode]:
    """Match a level of dependencies, descending into the ones that did not match.

    A whole level is tried before any unmatched package's children are visited;
    those children are then handled depth-first in the order their parents appeared.
    """
    matched: list[PackageNode] = []
    pending: list[list[PackageNode]] = [list(dependencies)]

    while pending:
        level = pending.pop()
        unmatched: list[PackageNode] = []
        for dep in level:
            if dep.id in cache:
                continue
            result = match(project, dep, target_tree, cache, is_installed=is_installed, notices=notices)
            if result.ok:
                assert result.target is not None
                matched.append(result.target)
            else:
                unmatched.append(dep)

        for dep in reversed(unmatched):
            if dep.dependencies:
                pending.append(list(dep.dependencies))

    return matched


def match_tree(
    project: str,
    current_tree: PackageNode,
    target_tree: PackageNode,
    cache: ProcessedPackageCache,
    *,
    is_installed: InstalledFn,
    notices: Optional[list[UpgradeNotice]] = None,
) -> list[PackageNode]:
    """Match the root of ``current_tree`` first; fall back to its dependencies."""
    result = match(project, current_tree, target_tree, cache, is_installed=is_installed, notices=notices)
    if result.ok:
        assert result.target is not None
        return [result.target]
    return match_subtree(
        project,
        current_tree.dependencies,
        target_tree,
        cache,
        is_installed=is_installed,
        notices=notices,
    )
