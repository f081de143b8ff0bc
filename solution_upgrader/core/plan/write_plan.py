from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path

from solution_upgrader.core.errors import InputError
from solution_upgrader.core.model import PlanDocument, PlannedPackage, PlanSection


PLAN_FILE_NAME = "config.xml"


def plan_to_xml(doc: PlanDocument) -> ET.Element:
    """``config > project[@name] > package[@name, @version]*``"""
    root = ET.Element("config")
    for section in doc.sections:
        project_el = ET.SubElement(root, "project", {"name": section.project_name})
        for pkg in section.packages:
            ET.SubElement(project_el, "package", {"name": pkg.id, "version": pkg.version})
    return root


def dump_plan_xml(doc: PlanDocument, path: str | Path) -> Path:
    p = Path(path)
    tree = ET.ElementTree(plan_to_xml(doc))
    ET.indent(tree)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        tree.write(p, encoding="utf-8", xml_declaration=True)
    except OSError as e:
        raise InputError(code="E_FILE_WRITE", message=f"could not write plan: {e}", file=str(p)) from e
    return p


def load_plan_document(path: str | Path) -> PlanDocument:
    p = Path(path)
    if not p.exists():
        raise InputError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))
    try:
        root = ET.parse(p).getroot()
    except ET.ParseError as e:
        raise InputError(code="E_PLAN_PARSE", message=str(e), file=str(p)) from e
    if root.tag != "config":
        raise InputError(code="E_PLAN_PARSE", message="root element must be <config>", file=str(p))

    sections: list[PlanSection] = []
    for project_el in root.findall("project"):
        name = project_el.get("name", "")
        packages = [
            PlannedPackage(id=el.get("name", ""), version=el.get("version", ""))
            for el in project_el.findall("package")
        ]
        sections.append(PlanSection(project_name=name, project_path=name, packages=packages))
    return PlanDocument(sections=sections)
