from pathlib import Path

import pytest

from solution_upgrader.core.errors import InputError, MalformedSolutionError, SolutionStructureError
from solution_upgrader.core.model import SolutionEntry
from solution_upgrader.core.solution.solution_file import (
    add_entry,
    load_solution,
    new_entry,
    parse,
    save_solution,
)


SAMPLE_SLN = "examples/sample/Sample.sln"

MINIMAL = (
    "Microsoft Visual Studio Solution File, Format Version 12.00\r\n"
    'Project("{FAE04EC0-301F-11D3-BF4B-00C04F79EFBC}") = "ClassLibrary1", "ClassLibrary1\\ClassLibrary1.csproj", '
    '"{05A5AD00-71B5-4612-AF2F-9EA9121C4111}"\r\n'
    "EndProject\r\n"
    "Global\r\n"
    "\tGlobalSection(ProjectConfigurationPlatforms) = postSolution\r\n"
    "\t\t{05A5AD00-71B5-4612-AF2F-9EA9121C4111}.Debug|Any CPU.ActiveCfg = Debug|Any CPU\r\n"
    "\tEndGlobalSection\r\n"
    "EndGlobal\r\n"
)


def test_parse_sample_solution():
    doc = load_solution(SAMPLE_SLN)
    entries = doc.entries
    assert [e.name for e in entries] == ["Web", "Lib", "Solution Items", "Utils"]
    assert entries[0] == SolutionEntry(
        project_type_id="FAE04EC0-301F-11D3-BF4B-00C04F79EFBC",
        name="Web",
        relative_path="Web\\Web.csproj",
        project_id="5D8E2B9A-1C3F-4A6B-9E7D-2F1A0B3C4D5E",
    )


def test_project_paths_skip_solution_folders():
    doc = load_solution(SAMPLE_SLN)
    names = [p.name for p in doc.project_paths()]
    assert names == ["Web.csproj", "Lib.csproj", "Utils.vbproj"]
    assert all(p.is_absolute() for p in doc.project_paths())


def test_parse_trims_fields():
    text = 'Project("{ fae04ec0-301f-11d3-bf4b-00c04f79efbc }") = " Lib ", " Lib\\Lib.csproj ", "{05a5ad00-71b5-4612-af2f-9ea9121c4111}"\n'
    (entry,) = parse(text)
    assert entry.name == "Lib"
    assert entry.relative_path == "Lib\\Lib.csproj"
    assert entry.project_type_id == "FAE04EC0-301F-11D3-BF4B-00C04F79EFBC"


def test_parse_malformed_guid_fails_whole_parse():
    text = MINIMAL + 'Project("{not-a-guid}") = "Bad", "Bad\\Bad.csproj", "{05A5AD00-71B5-4612-AF2F-9EA9121C4111}"\r\n'
    with pytest.raises(MalformedSolutionError) as exc:
        parse(text, file="x.sln")
    assert exc.value.code == "E_MALFORMED_SOLUTION"
    assert exc.value.path == "line 9"


def test_add_entry_round_trip_on_sample():
    text = load_solution(SAMPLE_SLN).text
    before = parse(text)
    entry = new_entry("Api", "Api\\Api.csproj", project_id="{7c9e6679-7425-40de-944b-e07fc1f90ae7}")

    after = parse(add_entry(text, entry))

    assert after.count(entry) == 1
    for e in before:
        assert e in after
    assert len(after) == len(before) + 1


def test_add_entry_only_inserts():
    entry = new_entry("Api", "Api\\Api.csproj", project_id="7C9E6679-7425-40DE-944B-E07FC1F90AE7")
    out = add_entry(MINIMAL, entry)

    project_block = (
        "EndProject\r\n"
        'Project("{FAE04EC0-301F-11D3-BF4B-00C04F79EFBC}") = "Api", "Api\\Api.csproj", '
        '"{7C9E6679-7425-40DE-944B-E07FC1F90AE7}"\r\n'
    )
    config_block = "".join(
        f"\t\t{{7C9E6679-7425-40DE-944B-E07FC1F90AE7}}.{cfg}\r\n"
        for cfg in (
            "Debug|Any CPU.ActiveCfg = Debug|Any CPU",
            "Debug|Any CPU.Build.0 = Debug|Any CPU",
            "Release Pro|Any CPU.ActiveCfg = Release|Any CPU",
            "Release Pro|Any CPU.Build.0 = Release|Any CPU",
            "Release|Any CPU.ActiveCfg = Release|Any CPU",
            "Release|Any CPU.Build.0 = Release|Any CPU",
        )
    )
    assert project_block in out
    assert config_block + "\tEndGlobalSection" in out
    # Removing both inserted blocks gives back the original bytes.
    assert out.replace(project_block, "", 1).replace(config_block, "", 1) == MINIMAL


def test_add_entry_uppercases_guids():
    entry = SolutionEntry(
        project_type_id="fae04ec0-301f-11d3-bf4b-00c04f79efbc",
        name="Api",
        relative_path="Api\\Api.csproj",
        project_id="7c9e6679-7425-40de-944b-e07fc1f90ae7",
    )
    out = add_entry(MINIMAL, entry)
    assert "{7C9E6679-7425-40DE-944B-E07FC1F90AE7}.Release Pro|Any CPU.Build.0" in out
    assert "7c9e6679" not in out


def test_add_entry_without_end_project():
    entry = new_entry("Api", "Api\\Api.csproj")
    with pytest.raises(SolutionStructureError) as exc:
        add_entry("Global\nEndGlobal\n", entry)
    assert exc.value.code == "E_SOLUTION_STRUCTURE"


def test_add_entry_without_configuration_section():
    text = MINIMAL.replace("GlobalSection(ProjectConfigurationPlatforms)", "GlobalSection(Other)")
    with pytest.raises(SolutionStructureError):
        add_entry(text, new_entry("Api", "Api\\Api.csproj"))


def test_new_entry_rejects_bad_guid():
    with pytest.raises(InputError) as exc:
        new_entry("Api", "Api\\Api.csproj", project_id="nope")
    assert exc.value.code == "E_INVALID_GUID"


def test_save_preserves_line_endings_and_bom(tmp_path):
    p = tmp_path / "App.sln"
    p.write_bytes(b"\xef\xbb\xbf" + MINIMAL.encode("utf-8"))

    doc = load_solution(p)
    save_solution(p, doc.with_entry(new_entry("Api", "Api\\Api.csproj")))

    raw = p.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    assert b"\r\nEndGlobal\r\n" in raw
    assert b"\n" not in raw.replace(b"\r\n", b"")


def test_load_solution_input_errors(tmp_path):
    with pytest.raises(InputError) as exc:
        load_solution(tmp_path / "missing.sln")
    assert exc.value.code == "E_FILE_NOT_FOUND"

    other = tmp_path / "App.csproj"
    other.write_text("<Project/>", encoding="utf-8")
    with pytest.raises(InputError) as exc:
        load_solution(other)
    assert exc.value.code == "E_NOT_A_SOLUTION"


def test_failed_insert_does_not_touch_file(tmp_path):
    p = tmp_path / "Broken.sln"
    p.write_text("Global\nEndGlobal\n", encoding="utf-8")
    doc = load_solution(p)
    with pytest.raises(SolutionStructureError):
        save_solution(p, doc.with_entry(new_entry("Api", "Api\\Api.csproj")))
    assert Path(p).read_text(encoding="utf-8") == "Global\nEndGlobal\n"
