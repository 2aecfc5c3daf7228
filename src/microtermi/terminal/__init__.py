"""Script terminal session domain package."""

from .ansi import AnsiColor, AnsiSegment, parse_ansi_line, segments_to_html, strip_ansi
from .launcher import (
    CapturedLaunch,
    CommandBuilder,
    PosixCommandBuilder,
    ProcessLauncher,
    ScriptRunMode,
    ScriptRunResult,
    WindowsCommandBuilder,
    build_invocation,
    default_command_builder,
    run_scripts,
)
from .models import PackageManager, PendingTarget, Project, ScriptInvocation, SessionEvent, SessionState
from .package_manager import detect_package_manager, script_argv, script_command
from .pump import STDERR_PREFIX, LineReceiver, LineSender, OutputPump, line_channel
from .registry import (
    FINISHED_MARKER,
    STOPPED_MARKER,
    SessionRegistry,
    TerminalSession,
)

__all__ = [
    "AnsiColor",
    "AnsiSegment",
    "build_invocation",
    "CapturedLaunch",
    "CommandBuilder",
    "default_command_builder",
    "detect_package_manager",
    "FINISHED_MARKER",
    "line_channel",
    "LineReceiver",
    "LineSender",
    "OutputPump",
    "PackageManager",
    "parse_ansi_line",
    "PendingTarget",
    "PosixCommandBuilder",
    "ProcessLauncher",
    "Project",
    "run_scripts",
    "script_argv",
    "script_command",
    "ScriptInvocation",
    "ScriptRunMode",
    "ScriptRunResult",
    "segments_to_html",
    "SessionEvent",
    "SessionRegistry",
    "SessionState",
    "STDERR_PREFIX",
    "STOPPED_MARKER",
    "strip_ansi",
    "TerminalSession",
    "WindowsCommandBuilder",
]
