from __future__ import annotations

import json
from pathlib import Path

import pytest

from microtermi.errors import ExitCode, ValidationError
from microtermi.projects import common_script_names, coverage_report_path, load_project, load_projects


def _write_manifest(root: Path, payload: object) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(json.dumps(payload), encoding="utf-8")
    return root


def test_load_project_reads_name_and_sorted_scripts(tmp_path: Path) -> None:
    root = _write_manifest(
        tmp_path / "web",
        {"name": "@acme/web", "scripts": {"start": "node server.js", "build": "vite build", "dev": "vite"}},
    )

    project = load_project(root)

    assert project.name == "@acme/web"
    assert project.path == root.resolve()
    assert project.script_names() == ["build", "dev", "start"]
    assert project.has_script("dev")
    assert not project.has_script("test")


def test_name_falls_back_to_directory(tmp_path: Path) -> None:
    root = _write_manifest(tmp_path / "api", {"scripts": {"dev": "nodemon", "bad": 3}})

    project = load_project(root)

    assert project.name == "api"
    assert project.scripts == (("dev", "nodemon"),)


def test_missing_manifest_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ValidationError) as exc_info:
        load_project(tmp_path)

    assert exc_info.value.code == ExitCode.VALIDATION_ERROR


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_invalid_manifest_is_a_validation_error(tmp_path: Path, content: str) -> None:
    (tmp_path / "package.json").write_text(content, encoding="utf-8")

    with pytest.raises(ValidationError):
        load_project(tmp_path)


def test_load_projects_skips_invalid_and_duplicate_paths(tmp_path: Path) -> None:
    web = _write_manifest(tmp_path / "web", {"scripts": {"dev": "vite"}})

    projects = load_projects([web, tmp_path / "missing", str(web)])

    assert [project.name for project in projects] == ["web"]


def test_load_projects_strict_raises(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        load_projects([tmp_path / "missing"], strict=True)


def test_common_script_names_is_sorted_intersection(tmp_path: Path) -> None:
    web = load_project(_write_manifest(tmp_path / "web", {"scripts": {"dev": "a", "lint": "b", "test": "c"}}))
    api = load_project(_write_manifest(tmp_path / "api", {"scripts": {"test": "d", "dev": "e"}}))

    assert common_script_names([web, api]) == ["dev", "test"]
    assert common_script_names([]) == []


def test_coverage_report_lives_under_project_root(tmp_path: Path) -> None:
    project = load_project(_write_manifest(tmp_path / "api", {"scripts": {"test": "jest --coverage"}}))

    assert coverage_report_path(project) == project.path / "coverage" / "lcov-report" / "index.html"
