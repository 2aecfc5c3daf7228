from __future__ import annotations

import io
import json
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import pytest

from microtermi import cli
from microtermi.errors import ExitCode, MicrotermiError
from microtermi.terminal.launcher import CapturedLaunch
from microtermi.terminal.models import Project
from microtermi.terminal.pump import line_channel
from microtermi.terminal.registry import SessionRegistry


class FakeProcess:
    def __init__(self, returncode=None) -> None:
        self.pid = None
        self.returncode = returncode
        self.killed = 0

    def poll(self):
        return self.returncode

    def kill(self) -> None:
        self.killed += 1
        if self.returncode is None:
            self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class ScriptedLauncher:
    """Every launched process has already printed ``lines`` and exited with ``returncode``."""

    def __init__(self, lines: list[str], returncode=0) -> None:
        self.lines = lines
        self.returncode = returncode
        self.processes: list[FakeProcess] = []

    def launch_captured(self, invocation):
        sender, receiver = line_channel()
        for line in self.lines:
            sender.send(line)
        process = FakeProcess(self.returncode)
        self.processes.append(process)
        return CapturedLaunch(process=process, receiver=receiver, pumps=[])

    def kill(self, process) -> None:
        process.kill()


@pytest.fixture(autouse=True)
def _isolated_log_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "default_log_path", lambda config_path=None: tmp_path / "logs" / "microtermi.log")
    monkeypatch.delenv("MICROTERMI_ENV", raising=False)


def _write_project(root: Path, scripts: dict[str, str]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(json.dumps({"scripts": scripts}), encoding="utf-8")
    return root


def _project(tmp_path: Path, name: str = "web") -> Project:
    root = tmp_path / name
    root.mkdir(exist_ok=True)
    return Project(name=name, path=root, scripts=(("dev", "vite"),))


def test_cli_help_includes_public_flags() -> None:
    help_text = cli.build_parser().format_help()

    for flag in ("--project", "--list", "--run", "--detached", "--mode", "--env", "--log-level", "--log-file"):
        assert flag in help_text


def test_no_args_triggers_gui_launcher(tmp_path: Path) -> None:
    calls: list[dict[str, object]] = []

    def fake_gui(**kwargs: object) -> int:
        calls.append(kwargs)
        return 0

    code = cli.main(["--config", str(tmp_path / "config.toml")], gui_launcher=fake_gui)

    assert code == 0
    assert calls == [{"config_path": tmp_path / "config.toml", "projects": None}]


def test_project_flags_are_passed_to_gui(tmp_path: Path) -> None:
    web = _write_project(tmp_path / "web", {"dev": "vite"})
    received: dict[str, object] = {}

    def fake_gui(**kwargs: object) -> None:
        received.update(kwargs)

    code = cli.main(["--project", str(web), "--config", str(tmp_path / "c.toml")], gui_launcher=fake_gui)

    assert code == 0
    projects = received["projects"]
    assert isinstance(projects, list)
    assert [project.name for project in projects] == ["web"]


def test_gui_error_is_reported_to_stderr(tmp_path: Path) -> None:
    def fake_gui(**kwargs: object) -> int:
        raise MicrotermiError("PySide6 missing", code=ExitCode.RUNTIME_ERROR, hint="Install PySide6.")

    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--config", str(tmp_path / "config.toml")], gui_launcher=fake_gui)

    assert code == int(ExitCode.RUNTIME_ERROR)
    assert "Install PySide6." in stream.getvalue()


def test_invalid_log_level_returns_argparse_code() -> None:
    with redirect_stderr(io.StringIO()):
        assert cli.main(["--log-level", "loud"]) == 2


def test_warning_alias_for_log_level_is_accepted() -> None:
    assert cli.parse_args(["--log-level", "warning"]).log_level == "WARN"


def test_detached_requires_run(tmp_path: Path) -> None:
    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--detached", "--config", str(tmp_path / "config.toml")], gui_launcher=lambda **_: 0)

    assert code == int(ExitCode.INVALID_ARGS)
    assert "--run SCRIPT" in stream.getvalue()


def test_list_prints_projects_and_common_scripts(tmp_path: Path) -> None:
    web = _write_project(tmp_path / "web", {"dev": "vite", "lint": "eslint ."})
    api = _write_project(tmp_path / "api", {"dev": "nodemon"})
    out = io.StringIO()

    with redirect_stdout(out):
        code = cli.main(["--list", "--project", str(web), "--project", str(api)])

    lines = out.getvalue().splitlines()
    assert code == 0
    assert lines[0].startswith("web\t")
    assert lines[0].endswith("dev, lint")
    assert lines[-1] == "common: dev"


def test_missing_project_folder_is_a_validation_error(tmp_path: Path) -> None:
    with redirect_stderr(io.StringIO()):
        code = cli.main(["--list", "--project", str(tmp_path / "nope")])

    assert code == int(ExitCode.VALIDATION_ERROR)


def test_run_with_undeclared_script_is_a_validation_error(tmp_path: Path) -> None:
    web = _write_project(tmp_path / "web", {"dev": "vite"})
    stream = io.StringIO()

    with redirect_stderr(stream):
        code = cli.main(["--run", "deploy", "--project", str(web), "--config", str(tmp_path / "c.toml")])

    assert code == int(ExitCode.VALIDATION_ERROR)
    assert 'script "deploy"' in stream.getvalue()


def test_headless_run_mirrors_stripped_lines(tmp_path: Path) -> None:
    registry = SessionRegistry(launcher=ScriptedLauncher(["\x1b[32mready\x1b[0m"]))
    out = io.StringIO()

    code = cli.run_headless(
        [_project(tmp_path)],
        "dev",
        env_for=lambda project: {},
        registry=registry,
        out=out,
        sleep=lambda seconds: None,
    )

    assert code == int(ExitCode.SUCCESS)
    assert out.getvalue().splitlines() == [
        "[web » dev] > web » npm run dev",
        "[web » dev] ready",
        "[web » dev] [process finished]",
    ]


def test_headless_run_reports_failed_scripts(tmp_path: Path) -> None:
    registry = SessionRegistry(launcher=ScriptedLauncher([], returncode=1))

    code = cli.run_headless(
        [_project(tmp_path, "web"), _project(tmp_path, "api")],
        "dev",
        env_for=lambda project: {},
        registry=registry,
        out=io.StringIO(),
        sleep=lambda seconds: None,
    )

    assert code == int(ExitCode.SCRIPT_FAILED)


def test_headless_interrupt_stops_every_session(tmp_path: Path) -> None:
    launcher = ScriptedLauncher(["starting"], returncode=None)
    registry = SessionRegistry(launcher=launcher)
    out = io.StringIO()

    def interrupt(seconds: float) -> None:
        raise KeyboardInterrupt

    code = cli.run_headless(
        [_project(tmp_path)],
        "dev",
        env_for=lambda project: {},
        registry=registry,
        out=out,
        sleep=interrupt,
    )

    assert code == int(ExitCode.SCRIPT_FAILED)
    assert launcher.processes[0].killed == 1
    assert out.getvalue().splitlines()[-1] == "[web » dev] [process stopped]"
