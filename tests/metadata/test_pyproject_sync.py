from __future__ import annotations

from pathlib import Path
import tomllib

import chatrelay


REPO_ROOT = Path(__file__).resolve().parents[2]
README_PATH = REPO_ROOT / "README.md"
PYPROJECT_PATH = REPO_ROOT / "pyproject.toml"

EVENT_NAMES = ("TextDelta", "ModelUsed", "InputTokenCount", "OutputTokenCount", "Done", "ErrorEvent")


def load_pyproject() -> dict:
    with PYPROJECT_PATH.open("rb") as handle:
        return tomllib.load(handle)


def test_readme_and_pyproject_descriptions_are_in_sync() -> None:
    pyproject = load_pyproject()
    description = pyproject["project"]["description"]
    readme_text = README_PATH.read_text(encoding="utf-8")

    assert description in readme_text, "README must include the project description from pyproject.toml"


def test_package_version_matches_pyproject() -> None:
    assert chatrelay.__version__ == load_pyproject()["project"]["version"]


def test_readme_names_every_event() -> None:
    readme_text = README_PATH.read_text(encoding="utf-8")

    for name in EVENT_NAMES:
        assert f"`{name}`" in readme_text
        assert hasattr(chatrelay, name)


def test_console_script_points_at_cli() -> None:
    assert load_pyproject()["project"]["scripts"]["chatrelay"] == "chatrelay.cli:main"
