import pytest
from packaging.version import Version

from solution_upgrader.core.config import ProductSettings
from solution_upgrader.core.errors import InputError
from solution_upgrader.core.project.project_files import (
    PackageManifest,
    detect_product_version,
    is_product_reference,
    project_config_path,
    project_name,
    read_references,
)


SAMPLE = "examples/sample"
PRODUCT = ProductSettings()


def test_project_name_strips_extension():
    assert project_name("src\\Web\\Web.csproj") == "Web"
    assert project_name("Utils/Utils.VBPROJ") == "Utils"
    assert project_name("notes.txt") == "notes.txt"


def test_read_references_ignores_namespace():
    refs = read_references(f"{SAMPLE}/Web/Web.csproj")
    assert refs[0] == "System"
    assert len(refs) == 4


@pytest.mark.parametrize(
    "include,expected",
    [
        ("Telerik.Sitefinity, Version=13.1.7400.0, Culture=neutral, PublicKeyToken=b28c218413bdf563", True),
        ("Progress.Sitefinity.Services, Version=14.0.7700.0, PublicKeyToken=b28c218413bdf563", True),
        ("Progress.Sitefinity.Renderer, Version=13.1.7400.0, PublicKeyToken=b28c218413bdf563", False),
        ("Telerik.Sitefinity.Fake, Version=13.1.7400.0, PublicKeyToken=0000000000000000", False),
        ("Newtonsoft.Json, Version=12.0.0.0, PublicKeyToken=b28c218413bdf563", False),
    ],
)
def test_is_product_reference(include, expected):
    assert is_product_reference(include, PRODUCT) is expected


def test_detect_skips_excluded_first_reference():
    assert detect_product_version(f"{SAMPLE}/Web/Web.csproj", PRODUCT) == Version("13.1.7400")


def test_detect_without_product_reference():
    assert detect_product_version(f"{SAMPLE}/Utils/Utils.vbproj", PRODUCT) is None


def test_missing_project_file(tmp_path):
    with pytest.raises(InputError) as exc:
        read_references(tmp_path / "Nope.csproj")
    assert exc.value.code == "E_FILE_NOT_FOUND"


def test_unparseable_project_file(tmp_path):
    p = tmp_path / "Bad.csproj"
    p.write_text("<Project><ItemGroup>", encoding="utf-8")
    with pytest.raises(InputError) as exc:
        read_references(p)
    assert exc.value.code == "E_PROJECT_PARSE"


def test_manifest_is_case_insensitive():
    manifest = PackageManifest.for_project(f"{SAMPLE}/Lib/Lib.csproj")
    assert manifest.is_installed("telerik.sitefinity.core")
    assert "Newtonsoft.Json" in manifest
    assert "Telerik.Sitefinity.All" not in manifest
    assert len(manifest) == 2


def test_manifest_missing_is_empty(tmp_path):
    manifest = PackageManifest.for_project(tmp_path / "App.csproj")
    assert len(manifest) == 0


def test_manifest_parse_error(tmp_path):
    (tmp_path / "packages.config").write_text("<packages>", encoding="utf-8")
    with pytest.raises(InputError) as exc:
        PackageManifest.for_project(tmp_path / "App.csproj")
    assert exc.value.code == "E_MANIFEST_PARSE"


def test_project_config_path_prefers_web_config(tmp_path):
    (tmp_path / "App.config").write_text("<configuration/>", encoding="utf-8")
    assert project_config_path(tmp_path / "App.csproj").name == "App.config"

    (tmp_path / "Web.config").write_text("<configuration/>", encoding="utf-8")
    assert project_config_path(tmp_path / "App.csproj").name == "Web.config"


def test_project_config_path_none(tmp_path):
    assert project_config_path(tmp_path / "App.csproj") is None
    assert project_config_path(tmp_path / "missing" / "App.csproj") is None
