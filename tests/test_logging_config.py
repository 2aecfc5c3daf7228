from __future__ import annotations

import io
import logging as py_logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

import microtermi.logging as mt_logging
from microtermi.config import DEFAULT_CONFIG_PATH
from microtermi.errors import SpawnError
from microtermi.terminal.launcher import CapturedLaunch
from microtermi.terminal.models import Project
from microtermi.terminal.pump import line_channel
from microtermi.terminal.registry import SessionRegistry


class _Process:
    pid = None
    returncode = None

    def poll(self):
        return self.returncode

    def kill(self) -> None:
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class _Launcher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def launch_captured(self, invocation):
        if self.error is not None:
            raise self.error
        _, receiver = line_channel()
        return CapturedLaunch(process=_Process(), receiver=receiver, pumps=[])

    def kill(self, process) -> None:
        process.kill()


def test_log_file_sits_beside_the_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "profile" / "config.toml"

    assert mt_logging.default_log_path(config_path) == tmp_path / "profile" / "logs" / "microtermi.log"
    assert mt_logging.default_log_path() == DEFAULT_CONFIG_PATH.parent / "logs" / "microtermi.log"


@pytest.mark.parametrize(
    ("level", "expected"),
    [
        ("debug", py_logging.DEBUG),
        ("WARN", py_logging.WARNING),
        (" warning ", py_logging.WARNING),
        ("ERROR", py_logging.ERROR),
        ("loud", py_logging.INFO),
        (None, py_logging.INFO),
    ],
)
def test_resolve_level(level: str | None, expected: int) -> None:
    assert mt_logging.resolve_level(level) == expected


def test_reconfiguring_replaces_handlers() -> None:
    mt_logging.configure_logging("INFO", io.StringIO())
    logger = mt_logging.configure_logging("ERROR", io.StringIO())

    assert len(logger.handlers) == 1
    assert logger.level == py_logging.ERROR
    assert not logger.propagate


def test_registry_events_carry_session_id_into_the_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "microtermi.log"
    mt_logging.configure_logging("DEBUG", io.StringIO(), log_file=log_file)
    root = tmp_path / "web"
    root.mkdir()
    registry = SessionRegistry(launcher=_Launcher())

    session = registry.start(Project(name="web", path=root, scripts=(("dev", "vite"),)), "dev")
    py_logging.getLogger("microtermi.projects").info("project-scan done")

    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert any(f"session={session.session_id} session-event" in line and "step=start" in line for line in lines)
    assert any("session=- project-scan done" in line for line in lines)
    registry.shutdown()


def test_console_keeps_short_format(tmp_path: Path) -> None:
    stream = io.StringIO()
    mt_logging.configure_logging("INFO", stream)
    root = tmp_path / "api"
    root.mkdir()
    registry = SessionRegistry(launcher=_Launcher(error=SpawnError("npm not found")))

    registry.start(Project(name="api", path=root, scripts=(("dev", "node ."),)), "dev")

    assert "INFO microtermi.terminal.registry session-event id=1 step=start-failed" in stream.getvalue()
    registry.shutdown()


def test_file_handler_rotates_at_debug_level(tmp_path: Path) -> None:
    log_file = tmp_path / "nested" / "logs" / "microtermi.log"

    logger = mt_logging.configure_logging("ERROR", io.StringIO(), log_file=log_file)
    file_handlers = [handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)]

    assert len(file_handlers) == 1
    assert file_handlers[0].level == py_logging.DEBUG
    assert file_handlers[0].maxBytes == mt_logging.LOG_MAX_BYTES
    assert log_file.exists()


def test_unwritable_log_file_is_reported_on_console(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def raise_os_error(*args: object, **kwargs: object) -> py_logging.Handler:
        raise OSError("disk full")

    monkeypatch.setattr(mt_logging, "RotatingFileHandler", raise_os_error)
    stream = io.StringIO()

    logger = mt_logging.configure_logging("INFO", stream, log_file=tmp_path / "microtermi.log")

    assert [type(handler) for handler in logger.handlers] == [py_logging.StreamHandler]
    assert "log-file unavailable" in stream.getvalue()
