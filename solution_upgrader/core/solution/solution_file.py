"""Read and extend Visual Studio solution documents.

Edits are textual insertions only: every byte outside the inserted blocks is
written back exactly as it was read (BOM and CRLF line endings included).
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from solution_upgrader.core.errors import InputError, MalformedSolutionError, SolutionStructureError
from solution_upgrader.core.model import SolutionEntry
from solution_upgrader.core.project.project_files import is_project_file


SOLUTION_EXTENSION = ".sln"

# C# project type; what the authoring tool writes for class libraries and web apps.
CSHARP_PROJECT_TYPE_ID = "FAE04EC0-301F-11D3-BF4B-00C04F79EFBC"

# Project("{FAE04EC0-301F-11D3-BF4B-00C04F79EFBC}") = "Lib", "Lib\Lib.csproj", "{05A5AD00-71B5-4612-AF2F-9EA9121C4111}"
_PROJECT_LINE_RE = re.compile(
    r'Project\("\{(?P<type_id>.*)\}"\)'
    r"\s*=\s*"
    r'"(?P<name>.*)"'
    r"\s*,\s*"
    r'"(?P<path>.*)"'
    r"\s*,\s*"
    r'"(?P<project_id>.*)"'
)

END_PROJECT = "EndProject"
CONFIGURATION_PLATFORMS = "GlobalSection(ProjectConfigurationPlatforms)"
END_GLOBAL_SECTION = "EndGlobalSection"

_CONFIGURATION_LINES: tuple[str, ...] = (
    "{{{0}}}.Debug|Any CPU.ActiveCfg = Debug|Any CPU",
    "{{{0}}}.Debug|Any CPU.Build.0 = Debug|Any CPU",
    "{{{0}}}.Release Pro|Any CPU.ActiveCfg = Release|Any CPU",
    "{{{0}}}.Release Pro|Any CPU.Build.0 = Release|Any CPU",
    "{{{0}}}.Release|Any CPU.ActiveCfg = Release|Any CPU",
    "{{{0}}}.Release|Any CPU.Build.0 = Release|Any CPU",
)


def normalize_guid(value: str, *, field: str = "guid") -> str:
    """Canonical upper-case, hyphenated, brace-less form. Raises ValueError."""
    text = (value or "").strip()
    try:
        return str(uuid.UUID(text)).upper()
    except ValueError as e:
        raise ValueError(f"{field} is not a valid GUID: {value!r}") from e


def new_entry(
    name: str,
    relative_path: str,
    *,
    project_id: Optional[str] = None,
    project_type_id: str = CSHARP_PROJECT_TYPE_ID,
) -> SolutionEntry:
    try:
        pid = normalize_guid(project_id, field="project_id") if project_id else str(uuid.uuid4()).upper()
        tid = normalize_guid(project_type_id, field="project_type_id")
    except ValueError as e:
        raise InputError(code="E_INVALID_GUID", message=str(e), path="guid") from e
    return SolutionEntry(
        project_type_id=tid,
        name=name.strip(),
        relative_path=relative_path.strip(),
        project_id=pid,
    )


def parse(document: str, *, file: Optional[str] = None) -> list[SolutionEntry]:
    """Every ``Project(...)`` line, in document order. All-or-nothing on bad GUIDs."""
    entries: list[SolutionEntry] = []
    for m in _PROJECT_LINE_RE.finditer(document):
        line_no = document.count("\n", 0, m.start()) + 1
        try:
            type_id = normalize_guid(m.group("type_id"), field="project type id")
            project_id = normalize_guid(m.group("project_id"), field="project id")
        except ValueError as e:
            raise MalformedSolutionError(
                code="E_MALFORMED_SOLUTION",
                message=str(e),
                file=file,
                path=f"line {line_no}",
            ) from e
        entries.append(
            SolutionEntry(
                project_type_id=type_id,
                name=m.group("name").strip(),
                relative_path=m.group("path").strip(),
                project_id=project_id,
            )
        )
    return entries


def _newline(document: str) -> str:
    return "\r\n" if "\r\n" in document else "\n"


def _structure_error(message: str, file: Optional[str]) -> SolutionStructureError:
    return SolutionStructureError(code="E_SOLUTION_STRUCTURE", message=message, file=file)


def add_entry(document: str, entry: SolutionEntry, *, file: Optional[str] = None) -> str:
    """Return ``document`` with ``entry`` and its build configurations inserted.

    Raises SolutionStructureError (and returns nothing) if either insertion point
    is missing.
    """
    try:
        type_id = normalize_guid(entry.project_type_id, field="project_type_id")
        project_id = normalize_guid(entry.project_id, field="project_id")
    except ValueError as e:
        raise InputError(code="E_INVALID_GUID", message=str(e), path="guid") from e

    nl = _newline(document)

    end_project = document.rfind(END_PROJECT)
    if end_project < 0:
        raise _structure_error(f"no '{END_PROJECT}' found; solution is not readable", file)

    project_block = (
        f"{END_PROJECT}{nl}"
        f'Project("{{{type_id}}}") = "{entry.name}", "{entry.relative_path}", "{{{project_id}}}"{nl}'
    )
    out = document[:end_project] + project_block + document[end_project:]

    section = out.find(CONFIGURATION_PLATFORMS)
    end_section = out.find(END_GLOBAL_SECTION, section) if section >= 0 else -1
    if end_section < 0:
        raise _structure_error(f"no '{CONFIGURATION_PLATFORMS}' section found; solution is not readable", file)

    lines = [tpl.format(project_id) for tpl in _CONFIGURATION_LINES]
    line_start = out.rfind("\n", 0, end_section) + 1
    if out[line_start:end_section].strip() == "":
        # Insert whole lines above the EndGlobalSection line, keeping its indentation.
        block = "".join(f"\t\t{line}{nl}" for line in lines)
        return out[:line_start] + block + out[line_start:]

    block = nl.join(lines) + nl
    return out[:end_section] + block + out[end_section:]


@dataclass(frozen=True)
class SolutionDocument:
    text: str
    file: Optional[str] = None

    @property
    def entries(self) -> list[SolutionEntry]:
        return parse(self.text, file=self.file)

    def with_entry(self, entry: SolutionEntry) -> SolutionDocument:
        return SolutionDocument(text=add_entry(self.text, entry, file=self.file), file=self.file)

    def project_paths(self, solution_dir: Optional[str | Path] = None) -> list[Path]:
        """Absolute paths of the C#/VB project entries."""
        base = Path(solution_dir) if solution_dir else Path(self.file or ".").resolve().parent
        out: list[Path] = []
        for e in self.entries:
            rel = e.relative_path.replace("\\", "/")
            if not is_project_file(rel):
                continue
            out.append((base / rel).resolve())
        return out


def load_solution(path: str | Path) -> SolutionDocument:
    p = Path(path)
    if not p.exists():
        raise InputError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))
    if not p.name.lower().endswith(SOLUTION_EXTENSION):
        raise InputError(
            code="E_NOT_A_SOLUTION",
            message=f"not a solution file (expected {SOLUTION_EXTENSION})",
            file=str(p),
        )
    with open(p, encoding="utf-8", newline="") as f:
        return SolutionDocument(text=f.read(), file=str(p))


def save_solution(path: str | Path, document: SolutionDocument) -> None:
    p = Path(path)
    try:
        with open(p, "w", encoding="utf-8", newline="") as f:
            f.write(document.text)
    except OSError as e:
        raise InputError(code="E_FILE_WRITE", message=f"could not write solution: {e}", file=str(p)) from e
