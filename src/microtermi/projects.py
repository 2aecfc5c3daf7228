"""package.json manifest reading for a single project directory."""

from __future__ import annotations

import json
import logging as py_logging
from collections.abc import Iterable
from pathlib import Path

from microtermi.errors import ValidationError
from microtermi.terminal.models import Project

logger = py_logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
TEST_SCRIPT = "test"
COVERAGE_REPORT = Path("coverage", "lcov-report", "index.html")


def load_project(path: str | Path) -> Project:
    root = Path(path).expanduser().resolve()
    manifest = root / MANIFEST_NAME
    if not manifest.is_file():
        raise ValidationError(
            f"No {MANIFEST_NAME} in {root}",
            hint="Point to a folder that contains a package.json.",
        )
    try:
        payload = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(
            f"Could not read {manifest}",
            hint=str(exc) or "Check that the manifest is valid JSON.",
        ) from exc
    if not isinstance(payload, dict):
        raise ValidationError(
            f"Unexpected manifest shape in {manifest}",
            hint="package.json must contain a JSON object.",
        )

    raw_name = payload.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else root.name
    raw_scripts = payload.get("scripts")
    scripts: list[tuple[str, str]] = []
    if isinstance(raw_scripts, dict):
        for script, command in raw_scripts.items():
            if isinstance(script, str) and isinstance(command, str):
                scripts.append((script, command))
    scripts.sort(key=lambda item: item[0])
    return Project(name=name, path=root, scripts=tuple(scripts))


def load_projects(paths: Iterable[str | Path], *, strict: bool = False) -> list[Project]:
    projects: list[Project] = []
    seen: set[Path] = set()
    for path in paths:
        try:
            project = load_project(path)
        except ValidationError as exc:
            if strict:
                raise
            logger.warning("project-skip path=%s reason=%s", path, exc.message)
            continue
        if project.path in seen:
            continue
        seen.add(project.path)
        projects.append(project)
    return projects


def common_script_names(projects: Iterable[Project]) -> list[str]:
    """Script names declared by every project, sorted."""
    common: set[str] | None = None
    for project in projects:
        names = set(project.script_names())
        common = names if common is None else common & names
    return sorted(common or ())


def coverage_report_path(project: Project) -> Path:
    """Where jest/nyc style runs leave the HTML coverage report."""
    return Path(project.path) / COVERAGE_REPORT
