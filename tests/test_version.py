import tomllib
from pathlib import Path

import projectboard

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def test_package_version_matches_pyproject() -> None:
    with PYPROJECT.open("rb") as handle:
        project = tomllib.load(handle)["project"]
    assert project["name"] == "projectboard"
    assert projectboard.__version__ == project["version"]
