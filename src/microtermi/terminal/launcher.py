"""Package-manager script process creation."""

from __future__ import annotations

import logging as py_logging
import os
import signal
import subprocess
from collections.abc import Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from microtermi.errors import CaptureUnavailable, MicrotermiError, SpawnError
from microtermi.terminal.models import Project, ScriptInvocation
from microtermi.terminal.package_manager import detect_package_manager, script_argv, script_command
from microtermi.terminal.pump import LineReceiver, OutputPump, line_channel, start_pumps

logger = py_logging.getLogger(__name__)

CREATE_NEW_CONSOLE = getattr(subprocess, "CREATE_NEW_CONSOLE", 0x00000010)
CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0x08000000)
TASKKILL_TIMEOUT_SECONDS = 3.0

PopenFactory = Callable[..., subprocess.Popen]


class CommandBuilder(Protocol):
    def build(self, invocation: ScriptInvocation, *, capture: bool) -> list[str]: ...

    def popen_options(self, *, capture: bool) -> dict[str, Any]: ...

    def kill(self, process: subprocess.Popen) -> None: ...


class PosixCommandBuilder:
    """Runs the package-manager binary directly; PATH lookup is done by exec."""

    def build(self, invocation: ScriptInvocation, *, capture: bool) -> list[str]:
        del capture
        return script_argv(invocation.package_manager, invocation.script)

    def popen_options(self, *, capture: bool) -> dict[str, Any]:
        if capture:
            # Own process group so a kill does not hit the controlling terminal.
            return {"start_new_session": True}
        return {}

    def kill(self, process: subprocess.Popen) -> None:
        pid = getattr(process, "pid", None)
        if isinstance(pid, int) and pid > 0 and process.poll() is None:
            with suppress(ProcessLookupError, PermissionError):
                if os.getpgid(pid) == pid:
                    os.killpg(pid, signal.SIGKILL)
                    return
        with suppress(ProcessLookupError):
            process.kill()


class WindowsCommandBuilder:
    """npm/yarn/pnpm are .cmd shims on Windows; cmd.exe resolves them via PATHEXT."""

    def __init__(
        self,
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        kill_timeout: float = TASKKILL_TIMEOUT_SECONDS,
    ) -> None:
        self._run = run
        self.kill_timeout = kill_timeout

    def build(self, invocation: ScriptInvocation, *, capture: bool) -> list[str]:
        command = script_command(invocation.package_manager, invocation.script)
        if capture:
            return ["cmd", "/c", command]
        return ["cmd", "/k", command]

    def popen_options(self, *, capture: bool) -> dict[str, Any]:
        return {"creationflags": CREATE_NO_WINDOW if capture else CREATE_NEW_CONSOLE}

    def kill(self, process: subprocess.Popen) -> None:
        pid = getattr(process, "pid", None)
        if isinstance(pid, int) and pid > 0:
            # cmd.exe would otherwise leave the node children running.
            try:
                result = self._run(
                    ["taskkill", "/T", "/F", "/PID", str(pid)],
                    capture_output=True,
                    check=False,
                    creationflags=CREATE_NO_WINDOW,
                    timeout=self.kill_timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.warning("taskkill pid=%s failed: %s", pid, exc)
            else:
                if result.returncode == 0:
                    return
        with suppress(OSError):
            process.kill()


def default_command_builder(os_name: str | None = None) -> CommandBuilder:
    if (os_name or os.name) == "nt":
        return WindowsCommandBuilder()
    return PosixCommandBuilder()


def build_invocation(
    project: Project,
    script: str,
    env: Mapping[str, str] | None = None,
) -> ScriptInvocation:
    return ScriptInvocation(
        project_path=Path(project.path),
        project_name=project.name,
        script=script,
        package_manager=detect_package_manager(project.path),
        env=dict(env or {}),
    )


@dataclass
class CapturedLaunch:
    process: subprocess.Popen
    receiver: LineReceiver
    pumps: list[OutputPump]


class ProcessLauncher:
    def __init__(
        self,
        *,
        command_builder: CommandBuilder | None = None,
        popen: PopenFactory | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.command_builder = command_builder or default_command_builder()
        self._popen = popen or subprocess.Popen
        self._base_env = dict(base_env) if base_env is not None else None

    def build_env(self, invocation: ScriptInvocation) -> dict[str, str]:
        env = dict(self._base_env if self._base_env is not None else os.environ)
        env.update(invocation.env)
        return env

    def launch(self, invocation: ScriptInvocation, capture_output: bool = False) -> subprocess.Popen:
        cwd = Path(invocation.project_path)
        if not cwd.is_dir():
            raise SpawnError(
                f"Working directory not found: {cwd}",
                hint="Check that the project folder still exists.",
            )

        command = self.command_builder.build(invocation, capture=capture_output)
        kwargs: dict[str, Any] = dict(self.command_builder.popen_options(capture=capture_output))
        if capture_output:
            kwargs.update(stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

        try:
            process = self._popen(command, cwd=str(cwd), env=self.build_env(invocation), **kwargs)
        except OSError as exc:
            logger.warning("launch-failed project=%s command=%s error=%s", invocation.project_name, command, exc)
            raise SpawnError(
                f"Failed to start '{' '.join(command)}': {exc}",
                hint=f"Make sure {invocation.package_manager.value} is installed and on PATH.",
            ) from exc

        logger.info(
            "launch project=%s script=%s command=%s capture=%s pid=%s",
            invocation.project_name,
            invocation.script,
            command,
            capture_output,
            getattr(process, "pid", "?"),
        )
        return process

    def launch_captured(self, invocation: ScriptInvocation) -> CapturedLaunch:
        process = self.launch(invocation, capture_output=True)
        stdout = getattr(process, "stdout", None)
        stderr = getattr(process, "stderr", None)
        if stdout is None or stderr is None:
            # The process is already running; it must not outlive the failed launch.
            self.kill(process)
            _reap(process)
            raise CaptureUnavailable(
                f"Output capture unavailable for '{invocation.display_name}'.",
                hint="The process was stopped; run it again.",
            )
        sender, receiver = line_channel()
        pumps = start_pumps(stdout, stderr, sender, label=str(getattr(process, "pid", "")))
        return CapturedLaunch(process=process, receiver=receiver, pumps=pumps)

    def kill(self, process: subprocess.Popen) -> None:
        self.command_builder.kill(process)


def _reap(process: subprocess.Popen) -> None:
    try:
        process.wait(timeout=2.0)
    except subprocess.TimeoutExpired:
        logger.warning("launch-reap pid=%s did not exit after kill", getattr(process, "pid", "?"))


class ScriptRunMode(str, Enum):
    PARALLEL = "parallel"
    SEQUENCE = "sequence"


@dataclass
class ScriptRunResult:
    project: Project
    process: subprocess.Popen | None = None
    error: MicrotermiError | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None or self.process is None:
            return False
        returncode = self.process.returncode
        return returncode is None or returncode == 0


def run_scripts(
    projects: Iterable[Project],
    script: str,
    env: Mapping[str, str] | None = None,
    *,
    mode: ScriptRunMode = ScriptRunMode.PARALLEL,
    launcher: ProcessLauncher | None = None,
) -> list[ScriptRunResult]:
    """Run ``script`` visibly in every project that declares it."""
    runner = launcher or ProcessLauncher()
    results: list[ScriptRunResult] = []
    for project in projects:
        if not project.has_script(script):
            continue
        try:
            process = runner.launch(build_invocation(project, script, env))
        except MicrotermiError as exc:
            results.append(ScriptRunResult(project=project, error=exc))
            continue
        if mode == ScriptRunMode.SEQUENCE:
            process.wait()
        results.append(ScriptRunResult(project=project, process=process))
    return results
