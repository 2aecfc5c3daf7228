"""Multi-run screen model: project selection plus the terminal tabs."""

from __future__ import annotations

import logging as py_logging
import webbrowser
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from microtermi.errors import MicrotermiError
from microtermi.projects import TEST_SCRIPT, common_script_names, coverage_report_path
from microtermi.terminal import (
    AnsiSegment,
    ProcessLauncher,
    Project,
    SessionRegistry,
    TerminalSession,
    parse_ansi_line,
    segments_to_html,
)

logger = py_logging.getLogger(__name__)

EnvProvider = Callable[[Project], Mapping[str, str]]
UrlOpener = Callable[[str], bool]
T = TypeVar("T")

RUNNING_MARK = "● "


@dataclass(frozen=True)
class SessionTab:
    session_id: int
    label: str
    running: bool
    selected: bool
    can_rerun: bool
    placeholder: bool


class MultiRunScreen:
    def __init__(
        self,
        *,
        registry: SessionRegistry | None = None,
        launcher: ProcessLauncher | None = None,
        projects: Iterable[Project] = (),
        env_provider: EnvProvider | None = None,
        script: str = "",
        selected_projects: Iterable[int] = (),
        max_lines: int | None = None,
        url_opener: UrlOpener = webbrowser.open,
    ) -> None:
        self.registry = registry if registry is not None else SessionRegistry(
            launcher=launcher,
            project_resolver=self.resolve_project,
            max_lines=max_lines,
        )
        self.env_provider = env_provider or (lambda _project: {})
        self.script = script.strip()
        self.status_message = ""
        self._url_opener = url_opener
        self._projects: list[Project] = list(projects)
        self._selected_projects: set[int] = {
            index for index in selected_projects if 0 <= index < len(self._projects)
        }

    @property
    def projects(self) -> list[Project]:
        return list(self._projects)

    def set_projects(self, projects: Iterable[Project]) -> None:
        self._projects = list(projects)
        self._selected_projects = {index for index in self._selected_projects if index < len(self._projects)}
        if self.script and self.script not in self.common_scripts() and self.common_scripts():
            self.script = self.common_scripts()[0]

    def resolve_project(self, project: Project) -> Project | None:
        wanted = Path(project.path)
        for candidate in self._projects:
            if Path(candidate.path) == wanted:
                return candidate
        return None

    @property
    def selected_projects(self) -> list[int]:
        return sorted(self._selected_projects)

    def toggle_project(self, index: int, selected: bool) -> None:
        if not 0 <= index < len(self._projects):
            return
        if selected:
            self._selected_projects.add(index)
        else:
            self._selected_projects.discard(index)

    def common_scripts(self) -> list[str]:
        return common_script_names(self._projects)

    def run_selected(self) -> list[TerminalSession]:
        chosen = [self._projects[index] for index in self.selected_projects]
        sessions = self._guard(
            lambda: self.registry.start_many(chosen, self.script, env_for=self.env_provider)
        ) or []
        if sessions:
            started = sum(1 for session in sessions if session.is_running)
            self.status_message = f"Running {self.script.strip()} in {started} project(s)."
        return sessions

    def run_script(self, project_index: int, script: str) -> TerminalSession | None:
        project = self._project_at(project_index)
        if project is None:
            return None
        session = self._guard(lambda: self.registry.start(project, script, self.env_provider(project)))
        if session is not None:
            self.status_message = self._outcome(session)
        return session

    def run_tests(self, project_index: int) -> TerminalSession | None:
        """Run the project's ``test`` script in a new tab, usually to refresh its coverage report."""
        project = self._project_at(project_index)
        if project is None:
            return None
        if not project.has_script(TEST_SCRIPT):
            self.status_message = f'Project {project.name} has no "{TEST_SCRIPT}" script.'
            return None
        session = self.run_script(project_index, TEST_SCRIPT)
        if session is not None and session.is_running:
            self.status_message = f"Tests for {project.name} are running."
        return session

    def coverage_report(self, project_index: int) -> Path | None:
        if not 0 <= project_index < len(self._projects):
            return None
        path = coverage_report_path(self._projects[project_index])
        return path if path.is_file() else None

    def open_coverage_report(self, project_index: int) -> bool:
        path = self.coverage_report(project_index)
        if path is None:
            self.status_message = "No coverage report yet. Run the tests with coverage first."
            return False
        opened = bool(self._url_opener(path.resolve().as_uri()))
        if not opened:
            self.status_message = f"Could not open {path}."
        logger.info("coverage-open path=%s opened=%s", path, opened)
        return opened

    def add_terminal(self) -> TerminalSession:
        session = self.registry.add_placeholder()
        self.status_message = ""
        return session

    def set_target(self, session_id: int, project_index: int, script: str) -> bool:
        project = self._project_at(project_index)
        if project is None:
            return False
        return self._guard(lambda: self.registry.set_placeholder_target(session_id, project, script)) is not None

    def run_placeholder(self, session_id: int) -> TerminalSession | None:
        return self._launch_again(session_id, self.registry.run_placeholder)

    def rerun(self, session_id: int) -> TerminalSession | None:
        return self._launch_again(session_id, self.registry.rerun)

    def select(self, session_id: int) -> None:
        self._guard(lambda: self.registry.select(session_id))

    def stop(self, session_id: int) -> None:
        self._guard(lambda: self.registry.stop(session_id))

    def stop_selected(self) -> None:
        selected = self.registry.selected
        if selected is not None:
            self.stop(selected.session_id)

    def stop_all(self) -> int:
        stopped = self.registry.stop_all()
        if stopped:
            self.status_message = f"Stopped {stopped} process(es)."
        return stopped

    def close_pane(self, session_id: int) -> None:
        self._guard(lambda: self.registry.close(session_id))

    def clear_selected(self) -> None:
        selected = self.registry.selected
        if selected is not None:
            self.registry.clear_lines(selected.session_id)

    def tick(self) -> int:
        return self.registry.drain()

    def tabs(self) -> list[SessionTab]:
        selected_index = self.registry.selected_index
        return [
            SessionTab(
                session_id=session.session_id,
                label=f"{RUNNING_MARK}{session.name}" if session.is_running else session.name,
                running=session.is_running,
                selected=index == selected_index,
                can_rerun=session.is_terminated and session.can_rerun,
                placeholder=session.is_placeholder,
            )
            for index, session in enumerate(self.registry.sessions())
        ]

    def render(self, session_id: int) -> list[list[AnsiSegment]]:
        return [parse_ansi_line(line) for line in self.registry.get(session_id).lines]

    def render_html(self, session_id: int) -> str:
        return "<br>".join(segments_to_html(segments) for segments in self.render(session_id))

    def _launch_again(
        self,
        session_id: int,
        launch: Callable[[int, Mapping[str, str] | None], TerminalSession],
    ) -> TerminalSession | None:
        # Env is read fresh on every launch.
        def action() -> TerminalSession:
            session = self.registry.get(session_id)
            env = self.env_provider(session.pending.project) if session.pending else None
            return launch(session_id, env)

        session = self._guard(action)
        if session is not None:
            self.status_message = self._outcome(session)
        return session

    def _project_at(self, index: int) -> Project | None:
        if 0 <= index < len(self._projects):
            return self._projects[index]
        self.status_message = "Project not found."
        return None

    def _outcome(self, session: TerminalSession) -> str:
        if session.is_running:
            return f"Running {session.name}."
        return f"Failed to start {session.name}."

    def _guard(self, action: Callable[[], T]) -> T | None:
        try:
            return action()
        except MicrotermiError as exc:
            self.status_message = exc.message
            logger.info("multi-run status=%s hint=%s", exc.message, exc.hint)
            return None
