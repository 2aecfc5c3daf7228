"""Ordered collection of script terminal sessions and their lifecycle.

The registry is driven from a single UI thread. Pump threads only talk to it
through each session's line channel; ``drain`` is the one place where their
output is folded into ``TerminalSession.lines`` and it never blocks.

Known limitation: ``stop`` and ``close`` kill the process without waiting for
lines the pumps have read but the registry has not drained yet. Output
produced between the last drain and the kill may be lost.
"""

from __future__ import annotations

import atexit
import itertools
import logging as py_logging
import subprocess
import time
import weakref
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from microtermi.errors import CaptureUnavailable, SpawnError, ValidationError
from microtermi.logging import session_extra
from microtermi.terminal.ansi import strip_ansi
from microtermi.terminal.launcher import ProcessLauncher, build_invocation
from microtermi.terminal.models import (
    PendingTarget,
    Project,
    ScriptInvocation,
    SessionEvent,
    SessionState,
)
from microtermi.terminal.package_manager import script_command
from microtermi.terminal.pump import LineReceiver, OutputPump

logger = py_logging.getLogger(__name__)

PLACEHOLDER_NAME = "New…"
FINISHED_MARKER = "[process finished]"
STOPPED_MARKER = "[process stopped]"
ERROR_PREFIX = "[error] "
# Upper bound on waiting for pumps to reach EOF once the process has exited.
EXIT_GRACE_SECONDS = 1.0

ProjectResolver = Callable[[Project], "Project | None"]


@dataclass
class TerminalSession:
    session_id: int
    name: str
    state: SessionState
    lines: list[str] = field(default_factory=list)
    process: subprocess.Popen | None = None
    channel: LineReceiver | None = None
    pending: PendingTarget | None = None
    invocation: ScriptInvocation | None = None
    pumps: list[OutputPump] = field(default_factory=list)
    exit_code: int | None = None
    exited_at: float | None = None

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING

    @property
    def is_placeholder(self) -> bool:
        return self.state == SessionState.PLACEHOLDER

    @property
    def is_terminated(self) -> bool:
        return self.state in (SessionState.FINISHED, SessionState.STOPPED)

    @property
    def can_rerun(self) -> bool:
        return not self.is_running and self.pending is not None and bool(self.pending.script.strip())

    def append_lines(self, lines: Iterable[str], *, max_lines: int | None = None) -> int:
        before = len(self.lines)
        self.lines.extend(lines)
        added = len(self.lines) - before
        if max_lines and len(self.lines) > max_lines:
            del self.lines[: len(self.lines) - max_lines]
        return added


def header_line(invocation: ScriptInvocation) -> str:
    command = script_command(invocation.package_manager, invocation.script)
    return strip_ansi(f"> {invocation.project_name} » {command}")


class SessionRegistry:
    def __init__(
        self,
        *,
        launcher: ProcessLauncher | None = None,
        project_resolver: ProjectResolver | None = None,
        max_lines: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_lines is not None and max_lines < 1:
            raise ValidationError(
                f"Invalid session line cap: {max_lines}",
                hint="Use a positive line count or leave it unset.",
            )
        self.max_lines = max_lines
        self._launcher = launcher or ProcessLauncher()
        self._project_resolver = project_resolver or (lambda project: project)
        self._clock = clock
        self._sessions: list[TerminalSession] = []
        self._ids = itertools.count(1)
        self._selected: int | None = None
        self._events: list[SessionEvent] = []
        self._reaping: list[subprocess.Popen] = []
        self._orphan_pumps: list[OutputPump] = []
        _live_registries.add(self)

    def __len__(self) -> int:
        return len(self._sessions)

    def sessions(self) -> list[TerminalSession]:
        return list(self._sessions)

    def get(self, session_id: int) -> TerminalSession:
        return self._sessions[self.index_of(session_id)]

    def index_of(self, session_id: int) -> int:
        for index, session in enumerate(self._sessions):
            if session.session_id == session_id:
                return index
        raise ValidationError(
            f"Terminal session not found: {session_id}",
            hint="Select an existing terminal tab.",
        )

    @property
    def selected_index(self) -> int | None:
        return self._selected

    @property
    def selected(self) -> TerminalSession | None:
        if self._selected is None:
            return None
        return self._sessions[self._selected]

    def select(self, session_id: int) -> TerminalSession:
        self._selected = self.index_of(session_id)
        return self._sessions[self._selected]

    @property
    def any_running(self) -> bool:
        return any(session.is_running for session in self._sessions)

    def list_events(self) -> list[SessionEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()

    def start(
        self,
        project: Project,
        script: str,
        env: Mapping[str, str] | None = None,
    ) -> TerminalSession:
        script_name = _require_script(project, script)
        invocation = build_invocation(project, script_name, env)
        session = TerminalSession(
            session_id=next(self._ids),
            name=invocation.display_name,
            state=SessionState.PLACEHOLDER,
        )
        self._sessions.append(session)
        self._selected = len(self._sessions) - 1
        self._launch_into(session, project, invocation)
        return session

    def start_many(
        self,
        projects: Iterable[Project],
        script: str,
        env: Mapping[str, str] | None = None,
        *,
        env_for: Callable[[Project], Mapping[str, str]] | None = None,
    ) -> list[TerminalSession]:
        script_name = script.strip()
        if not script_name:
            raise ValidationError(
                "Script name is required.",
                hint="Type the script to run (for example dev or start).",
            )
        eligible = [project for project in projects if project.has_script(script_name)]
        if not eligible:
            raise ValidationError(
                f'No selected project declares the script "{script_name}".',
                hint="Select at least one project that has that script.",
            )
        first_index = len(self._sessions)
        started = [
            self.start(project, script_name, env_for(project) if env_for else env) for project in eligible
        ]
        self._selected = first_index
        return started

    def add_placeholder(self) -> TerminalSession:
        session = TerminalSession(
            session_id=next(self._ids),
            name=PLACEHOLDER_NAME,
            state=SessionState.PLACEHOLDER,
        )
        self._sessions.append(session)
        self._selected = len(self._sessions) - 1
        self._record(session.session_id, "placeholder", "Added empty terminal.")
        return session

    def set_placeholder_target(self, session_id: int, project: Project, script: str) -> TerminalSession:
        session = self.get(session_id)
        if not session.is_placeholder:
            raise ValidationError(
                f"Terminal session is not a placeholder: {session_id}",
                hint="Pick project and script on an empty terminal.",
            )
        session.pending = PendingTarget(project=project, script=script.strip())
        self._record(session_id, "target", f"Target set to {project.name} » {script.strip()}.")
        return session

    def run_placeholder(self, session_id: int, env: Mapping[str, str] | None = None) -> TerminalSession:
        session = self.get(session_id)
        if not session.is_placeholder:
            raise ValidationError(
                f"Terminal session is not a placeholder: {session_id}",
                hint="Use rerun for terminals that already ran.",
            )
        return self._relaunch(session, env)

    def rerun(self, session_id: int, env: Mapping[str, str] | None = None) -> TerminalSession:
        session = self.get(session_id)
        if session.is_running:
            raise ValidationError(
                f"Terminal session is still running: {session.name}",
                hint="Stop it before running it again.",
            )
        return self._relaunch(session, env)

    def drain(self) -> int:
        moved = 0
        for session in self._sessions:
            if not session.is_running or session.process is None:
                continue
            moved += self._pull(session)
            returncode = session.process.poll()
            if returncode is None or self._pumps_pending(session):
                continue
            # Pick up whatever the pumps queued between the first pull and exit.
            moved += self._pull(session)
            session.exit_code = returncode
            session.append_lines([FINISHED_MARKER], max_lines=self.max_lines)
            self._release(session, SessionState.FINISHED)
            self._record(session.session_id, "finished", f"Process exited with code {returncode}.")
        self._reap()
        return moved

    def stop(self, session_id: int) -> TerminalSession:
        session = self.get(session_id)
        if not session.is_running or session.process is None:
            return session
        process = session.process
        self._launcher.kill(process)
        if process.poll() is None:
            self._reaping.append(process)
        session.exit_code = process.returncode
        session.append_lines([STOPPED_MARKER], max_lines=self.max_lines)
        self._release(session, SessionState.STOPPED)
        self._record(session_id, "stop", "Process stopped.")
        return session

    def stop_all(self) -> int:
        stopped = 0
        for session in list(self._sessions):
            if session.is_running:
                self.stop(session.session_id)
                stopped += 1
        return stopped

    def close(self, session_id: int) -> None:
        index = self.index_of(session_id)
        self.stop(session_id)
        removed = self._sessions.pop(index)
        self._orphan_pumps.extend(removed.pumps)
        removed.pumps = []
        remaining = len(self._sessions)
        if remaining == 0:
            self._selected = None
        elif self._selected is not None:
            if self._selected >= remaining:
                self._selected = remaining - 1
            elif self._selected > index:
                self._selected -= 1
        self._record(session_id, "close", f"Closed terminal '{removed.name}'.")

    def clear_lines(self, session_id: int) -> None:
        self.get(session_id).lines.clear()

    def shutdown(self, *, timeout: float = 2.0) -> None:
        self.stop_all()
        for process in self._reaping:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning("session-shutdown pid=%s still alive after kill", getattr(process, "pid", "?"))
        self._reaping.clear()
        for pump in self._orphan_pumps:
            pump.join(timeout=0.1)
        self._orphan_pumps = [pump for pump in self._orphan_pumps if pump.is_alive()]
        _live_registries.discard(self)

    def _relaunch(self, session: TerminalSession, env: Mapping[str, str] | None) -> TerminalSession:
        pending = session.pending
        if pending is None or not pending.script.strip():
            raise ValidationError(
                "Choose a project and a script first.",
                hint="Pick both in the terminal panel.",
            )
        project = self._project_resolver(pending.project)
        if project is None:
            raise ValidationError(
                f"Project not found: {pending.project.name}",
                hint="Rescan projects and pick it again.",
            )
        script_name = _require_script(project, pending.script)
        if env is None and session.invocation is not None:
            env = session.invocation.env
        invocation = build_invocation(project, script_name, env)
        session.name = invocation.display_name
        session.lines = []
        session.exit_code = None
        session.exited_at = None
        self._orphan_pumps.extend(session.pumps)
        session.pumps = []
        self._launch_into(session, project, invocation)
        return session

    def _launch_into(self, session: TerminalSession, project: Project, invocation: ScriptInvocation) -> None:
        session.pending = PendingTarget(project=project, script=invocation.script)
        session.invocation = invocation
        try:
            launched = self._launcher.launch_captured(invocation)
        except (SpawnError, CaptureUnavailable) as exc:
            session.append_lines([strip_ansi(f"{ERROR_PREFIX}{exc}")], max_lines=self.max_lines)
            session.state = SessionState.FINISHED
            self._record(session.session_id, "start-failed", exc.message)
            return
        session.append_lines([header_line(invocation)], max_lines=self.max_lines)
        session.process = launched.process
        session.channel = launched.receiver
        session.pumps = launched.pumps
        session.state = SessionState.RUNNING
        self._record(session.session_id, "start", f"Running {session.name}.")

    def _pull(self, session: TerminalSession) -> int:
        if session.channel is None:
            return 0
        return session.append_lines(session.channel.try_recv_all(), max_lines=self.max_lines)

    def _pumps_pending(self, session: TerminalSession) -> bool:
        if not any(pump.is_alive() for pump in session.pumps):
            return False
        now = self._clock()
        if session.exited_at is None:
            session.exited_at = now
        return now - session.exited_at < EXIT_GRACE_SECONDS

    def _release(self, session: TerminalSession, state: SessionState) -> None:
        session.process = None
        session.channel = None
        self._orphan_pumps.extend(session.pumps)
        session.pumps = []
        session.state = state

    def _reap(self) -> None:
        self._reaping = [process for process in self._reaping if process.poll() is None]
        self._orphan_pumps = [pump for pump in self._orphan_pumps if pump.is_alive()]

    def _record(self, session_id: int, step: str, message: str) -> None:
        self._events.append(SessionEvent(session_id=session_id, step=step, message=message))
        logger.info(
            "session-event id=%s step=%s message=%s",
            session_id,
            step,
            message,
            extra=session_extra(session_id),
        )


_live_registries: weakref.WeakSet[SessionRegistry] = weakref.WeakSet()


def _shutdown_live_registries() -> None:
    for registry in list(_live_registries):
        registry.shutdown()


atexit.register(_shutdown_live_registries)


def _require_script(project: Project, script: str) -> str:
    script_name = script.strip()
    if not script_name:
        raise ValidationError(
            "Script name is required.",
            hint="Pick a script declared by the project.",
        )
    if not project.has_script(script_name):
        raise ValidationError(
            f'Project {project.name} has no script "{script_name}".',
            hint="Pick a script declared in its package.json.",
        )
    return script_name
