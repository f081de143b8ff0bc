from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UpgradeError(Exception):
    """Base error envelope. The CLI prints these; core code raises them."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<upgrade>"
        return f"{loc}: {self.code}: {self.message}"


class InputError(UpgradeError):
    pass


class InvalidVersionError(InputError):
    pass


class MalformedSolutionError(UpgradeError):
    pass


class SolutionStructureError(UpgradeError):
    pass


class ConfigError(UpgradeError):
    pass


class PackageSourceError(UpgradeError):
    pass


class ExecutionFailure(UpgradeError):
    pass


class ExecutionTimeout(ExecutionFailure):
    pass


class UpgradeCancelled(UpgradeError):
    pass


@dataclass(frozen=True)
class UpgradeNotice:
    """A recoverable, per-project issue. Logged and collected, never raised."""

    code: str
    message: str
    project: Optional[str] = None

    def __str__(self) -> str:
        loc = self.project or "<upgrade>"
        return f"{loc}: {self.code}: {self.message}"
