"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .config import load_config
from .env import Environment, load_env
from .errors import ExitCode, MicrotermiError, user_facing_error
from .logging import configure_logging, default_log_path
from .projects import common_script_names, load_projects
from .terminal import (
    ProcessLauncher,
    Project,
    ScriptRunMode,
    SessionRegistry,
    SessionState,
    run_scripts,
    strip_ansi,
)

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_VALID_ENVIRONMENTS = tuple(environment.value for environment in Environment)
_VALID_MODES = tuple(mode.value for mode in ScriptRunMode)


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="microtermi")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument(
        "--project",
        dest="projects",
        action="append",
        type=Path,
        default=[],
        help="Project folder with a package.json (repeatable)",
    )
    parser.add_argument("--list", action="store_true", help="List projects and their scripts")
    parser.add_argument("--run", metavar="SCRIPT", default=None, help="Run SCRIPT in every project that has it")
    parser.add_argument(
        "--detached",
        action="store_true",
        help="With --run: open each script in its own console instead of mirroring output",
    )
    parser.add_argument("--mode", choices=_VALID_MODES, default=ScriptRunMode.PARALLEL.value)
    parser.add_argument("--env", choices=_VALID_ENVIRONMENTS, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def launch_gui(*, config_path: Path | None = None, projects: list[Project] | None = None) -> int:
    from microtermi.ui.app import launch_app

    return launch_app(config_path=config_path, projects=projects)


def validate_namespace(namespace: argparse.Namespace) -> None:
    if namespace.detached and not namespace.run:
        raise MicrotermiError(
            "--detached needs a script to run.",
            code=ExitCode.INVALID_ARGS,
            hint="Combine it with --run SCRIPT.",
        )
    if namespace.run is not None and not namespace.run.strip():
        raise MicrotermiError(
            "Script name is required.",
            code=ExitCode.INVALID_ARGS,
            hint="Pass a script name to --run, for example --run dev.",
        )


def resolve_projects(namespace: argparse.Namespace, config_paths: Sequence[str]) -> list[Project]:
    if namespace.projects:
        return load_projects(namespace.projects, strict=True)
    return load_projects(config_paths)


def print_projects(projects: Sequence[Project], out: TextIO) -> None:
    if not projects:
        print("No projects configured.", file=out)
        return
    for project in projects:
        scripts = ", ".join(project.script_names()) or "-"
        print(f"{project.name}\t{project.path}\t{scripts}", file=out)
    common = common_script_names(projects)
    if common:
        print(f"common: {', '.join(common)}", file=out)


def mirror_sessions(registry: SessionRegistry, out: TextIO) -> None:
    for session in registry.sessions():
        for line in session.lines:
            print(f"[{session.name}] {strip_ansi(line)}", file=out)
        registry.clear_lines(session.session_id)
    out.flush()


def run_headless(
    projects: Sequence[Project],
    script: str,
    *,
    env_for: Callable[[Project], dict[str, str]],
    registry: SessionRegistry | None = None,
    tick_interval_ms: int = 50,
    out: TextIO | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Mirror every session's output to ``out`` until all of them end."""
    stream = out or sys.stdout
    sessions_registry = registry if registry is not None else SessionRegistry()
    logger = py_logging.getLogger("microtermi.cli")
    sessions = sessions_registry.start_many(projects, script, env_for=env_for)
    try:
        while True:
            sessions_registry.drain()
            mirror_sessions(sessions_registry, stream)
            if not sessions_registry.any_running:
                break
            sleep(tick_interval_ms / 1000)
    except KeyboardInterrupt:
        stopped = sessions_registry.stop_all()
        logger.info("headless interrupted stopped=%s", stopped)
        mirror_sessions(sessions_registry, stream)
        sessions_registry.shutdown()
        return int(ExitCode.SCRIPT_FAILED)
    sessions_registry.shutdown()

    failed = [session for session in sessions if session.state != SessionState.FINISHED or session.exit_code != 0]
    logger.info("headless done sessions=%s failed=%s", len(sessions), len(failed))
    return int(ExitCode.SCRIPT_FAILED) if failed else int(ExitCode.SUCCESS)


def run_detached(
    projects: Sequence[Project],
    script: str,
    *,
    env_for: Callable[[Project], dict[str, str]],
    mode: ScriptRunMode,
    launcher: ProcessLauncher | None = None,
    out: TextIO | None = None,
) -> int:
    stream = out or sys.stdout
    results = []
    for project in projects:
        results.extend(run_scripts([project], script, env_for(project), mode=mode, launcher=launcher))
    if not results:
        raise MicrotermiError(
            f'No project declares the script "{script}".',
            code=ExitCode.VALIDATION_ERROR,
            hint="Check the script name with --list.",
        )
    for result in results:
        status = "started" if result.ok else f"failed: {result.error.message if result.error else 'exit'}"
        print(f"{result.project.name}: {status}", file=stream)
    return int(ExitCode.SUCCESS) if all(result.ok for result in results) else int(ExitCode.SCRIPT_FAILED)


def run_cli_flow(namespace: argparse.Namespace, *, out: TextIO | None = None) -> int:
    validate_namespace(namespace)
    stream = out or sys.stdout
    config = load_config(namespace.config)
    environment = namespace.env or config.environment
    projects = resolve_projects(namespace, config.project_paths)

    if namespace.list:
        print_projects(projects, stream)
    if namespace.run is None:
        return int(ExitCode.SUCCESS)

    script = namespace.run.strip()

    def env_for(project: Project) -> dict[str, str]:
        return load_env(project.path, environment)

    if namespace.detached:
        return run_detached(projects, script, env_for=env_for, mode=ScriptRunMode(namespace.mode), out=stream)
    return run_headless(
        projects,
        script,
        env_for=env_for,
        registry=SessionRegistry(max_lines=config.max_session_lines),
        tick_interval_ms=config.tick_interval_ms,
        out=stream,
    )


def main(
    argv: Sequence[str] | None = None,
    *,
    gui_launcher: Callable[..., int | None] | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    elif namespace.config is not None:
        log_path = default_log_path(namespace.config)
    level = namespace.log_level or load_config(namespace.config).log_level
    logger = configure_logging(level=level, log_file=log_path)

    try:
        validate_namespace(namespace)
        if not namespace.list and namespace.run is None:
            launcher = gui_launcher or launch_gui
            projects = load_projects(namespace.projects, strict=True) if namespace.projects else None
            logger.debug("Starting GUI flow")
            result = launcher(config_path=namespace.config, projects=projects)
            if isinstance(result, int):
                return result
            return int(ExitCode.SUCCESS)

        logger.debug("Starting CLI flow")
        return run_cli_flow(namespace)
    except MicrotermiError as exc:
        logger.error(
            "Handled MicrotermiError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
