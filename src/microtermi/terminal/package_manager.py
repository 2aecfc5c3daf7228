"""Lock-file based package manager detection."""

from __future__ import annotations

from pathlib import Path

from microtermi.terminal.models import PackageManager

# Checked in order; the first marker present wins.
LOCK_FILE_MARKERS: tuple[tuple[str, PackageManager], ...] = (
    ("pnpm-lock.yaml", PackageManager.PNPM),
    ("yarn.lock", PackageManager.YARN),
)
DEFAULT_PACKAGE_MANAGER = PackageManager.NPM


def detect_package_manager(project_path: str | Path) -> PackageManager:
    root = Path(project_path)
    for marker, manager in LOCK_FILE_MARKERS:
        try:
            if (root / marker).exists():
                return manager
        except OSError:
            continue
    return DEFAULT_PACKAGE_MANAGER


def script_argv(manager: PackageManager, script: str) -> list[str]:
    if manager == PackageManager.NPM:
        return ["npm", "run", script]
    return [manager.value, script]


def script_command(manager: PackageManager, script: str) -> str:
    return " ".join(script_argv(manager, script))
