"""Tests for package metadata."""

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def test_metadata_does_not_publish_design_notes():
    project = tomllib.loads(PYPROJECT.read_text())["project"]

    assert project["name"] == "memhub"
    assert "readme" not in project
    assert project["scripts"]["memhub"] == "memhub.main:main"
