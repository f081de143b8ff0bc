"""Version identifiers as they appear in build-file references."""

from __future__ import annotations

import re
from typing import Optional, Union

from packaging.version import InvalidVersion, Version

from solution_upgrader.core.errors import InvalidVersionError


# Assembly references look like:
#   Telerik.Sitefinity, Version=13.2.7500.76032, Culture=neutral, PublicKeyToken=...
_REFERENCE_VERSION_RE = re.compile(r"Version=(.*?),")

# major.minor[.build[.revision]]; nothing else is accepted as an assembly version.
_DOTTED_RE = re.compile(r"^\d+(\.\d+){1,3}$")

_SIGNIFICANT_PARTS = 3


def parse_version(text: str) -> Version:
    value = (text or "").strip()
    if not _DOTTED_RE.match(value):
        raise InvalidVersionError(
            code="E_INVALID_VERSION",
            message=f"not a dotted numeric version: {text!r}",
            path="version",
        )
    try:
        return Version(value)
    except InvalidVersion as e:  # pragma: no cover
        raise InvalidVersionError(code="E_INVALID_VERSION", message=str(e), path="version") from e


def truncate(version: Version, parts: int = _SIGNIFICANT_PARTS) -> Version:
    return Version(".".join(str(p) for p in version.release[:parts]))


def detect(reference: str) -> Optional[Version]:
    """Return major.minor.build from a reference's ``Version=...,`` field, or None."""
    m = _REFERENCE_VERSION_RE.search(reference or "")
    if not m:
        return None
    try:
        return truncate(parse_version(m.group(1)))
    except InvalidVersionError:
        return None


def parse_requested(text: str) -> Version:
    """Parse a requested target version, ignoring any ``-preview``-style suffix."""
    if not text or not text.strip():
        raise InvalidVersionError(
            code="E_INVALID_VERSION",
            message="the version you are trying to upgrade to is empty",
            path="version",
        )
    head = text.strip().split("-", 1)[0]
    try:
        return parse_version(head)
    except InvalidVersionError as e:
        raise InvalidVersionError(
            code="E_INVALID_VERSION",
            message=f"the version '{text}' you are trying to upgrade to is not valid",
            path="version",
        ) from e


def is_upgradeable(current: Union[Version, str], requested: str) -> bool:
    """True only when ``requested`` is strictly newer than ``current``.

    Raises InvalidVersionError when ``requested`` does not parse. Equal or older
    targets are a no-op; the caller reports them as a warning.
    """
    target = parse_requested(requested)
    cur = current if isinstance(current, Version) else parse_version(current)
    return target > cur
