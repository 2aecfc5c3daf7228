"""Terminal session domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


class PackageManager(str, Enum):
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


class SessionState(str, Enum):
    PLACEHOLDER = "placeholder"
    RUNNING = "running"
    FINISHED = "finished"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Project:
    name: str
    path: Path
    scripts: tuple[tuple[str, str], ...] = ()

    def has_script(self, script: str) -> bool:
        return any(name == script for name, _ in self.scripts)

    def script_names(self) -> list[str]:
        return [name for name, _ in self.scripts]


@dataclass(frozen=True)
class ScriptInvocation:
    project_path: Path
    project_name: str
    script: str
    package_manager: PackageManager = PackageManager.NPM
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def display_name(self) -> str:
        return f"{self.project_name} » {self.script}"


@dataclass(frozen=True)
class PendingTarget:
    project: Project
    script: str


@dataclass(frozen=True)
class SessionEvent:
    session_id: int
    step: str
    message: str
