from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from microtermi.config import AppConfig, load_config
from microtermi.errors import ExitCode, MicrotermiError
from microtermi.ui import app as app_module


@pytest.fixture(autouse=True)
def _clear_environment_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MICROTERMI_ENV", raising=False)


def _write_project(root: Path, scripts: dict[str, str]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(json.dumps({"scripts": scripts}), encoding="utf-8")
    return root


def test_build_screen_restores_saved_selection(tmp_path: Path) -> None:
    web = _write_project(tmp_path / "web", {"dev": "vite"})
    api = _write_project(tmp_path / "api", {"dev": "nodemon"})
    (api / ".env.staging").write_text("PORT=4000\n", encoding="utf-8")
    config = AppConfig(
        project_paths=[str(web), str(api), str(tmp_path / "gone")],
        environment="staging",
        multi_run_script="dev",
        multi_run_selected=[1],
        max_session_lines=200,
    )

    screen = app_module.build_screen(config)

    assert [project.name for project in screen.projects] == ["web", "api"]
    assert screen.selected_projects == [1]
    assert screen.script == "dev"
    assert screen.registry.max_lines == 200
    assert screen.env_provider(screen.projects[1]) == {"PORT": "4000"}


def test_persist_screen_saves_projects_selection_and_script(tmp_path: Path) -> None:
    web = _write_project(tmp_path / "web", {"dev": "vite", "build": "vite build"})
    config_path = tmp_path / "config.toml"
    config = AppConfig(project_paths=[str(web)])
    screen = app_module.build_screen(config)
    screen.toggle_project(0, True)
    screen.script = "build"

    app_module.persist_screen(config, screen, config_path)
    saved = load_config(config_path)

    assert saved.project_paths == [str(web.resolve())]
    assert saved.multi_run_selected == [0]
    assert saved.multi_run_script == "build"


def test_launch_app_without_pyside_raises_runtime_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "PySide6", None)

    with pytest.raises(MicrotermiError) as exc_info:
        app_module.launch_app(config_path=tmp_path / "config.toml", projects=[])

    assert exc_info.value.code == ExitCode.RUNTIME_ERROR
    assert "PySide6" in exc_info.value.hint
