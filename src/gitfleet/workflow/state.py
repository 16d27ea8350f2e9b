"""Runtime state shared by the executor and action handlers."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TextIO

from gitfleet.models import RuntimeOptions

if TYPE_CHECKING:
    from gitfleet.actions.audit import AuditReport
    from gitfleet.collaborators.base import (
        ConfirmationPrompter,
        FileSystem,
        GitExecutor,
        GitHubMetadataResolver,
        RepositoryDiscoverer,
        RepositoryManager,
    )
    from gitfleet.collaborators.ghcr import PackageVersionService
    from gitfleet.workflow.prompting import CascadingPrompter, PromptState
    from gitfleet.workflow.registry import Registry


@dataclass
class Dependencies:
    """Collaborators built once per command and shared across repositories."""

    discoverer: RepositoryDiscoverer
    git: GitExecutor
    repositories: RepositoryManager
    filesystem: FileSystem
    prompter: ConfirmationPrompter
    output: TextIO
    errors: TextIO
    github: GitHubMetadataResolver | None = None
    package_service: PackageVersionService | None = None


@dataclass
class RepositoryState:
    """Facts about one repository while its nodes run."""

    path: str
    name: str = ""
    owner: str = ""
    full_name: str = ""
    default_branch: str = ""
    # Set only when GitHub metadata resolved.
    canonical_full_name: str = ""
    remote_default_branch: str = ""
    current_branch: str = ""
    remote_url: str = ""
    initial_clean: bool | None = None
    has_nested_repositories: bool = False
    facts: dict[str, Any] = field(default_factory=dict)

    @property
    def path_depth(self) -> int:
        return path_depth(self.path)


def path_depth(path: str) -> int:
    return path.rstrip(os.sep).count(os.sep)


@dataclass
class Environment:
    """Per-run context handed to every action handler."""

    dependencies: Dependencies
    registry: Registry
    options: RuntimeOptions
    prompt_state: PromptState
    prompter: CascadingPrompter
    initial_clean: dict[str, bool] = field(default_factory=dict)
    cancel: asyncio.Event | None = None
    # Run-wide audit reports keyed by destination; written once the run ends.
    reports: dict[str, AuditReport] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.options.dry_run

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    @property
    def variables(self) -> dict[str, str]:
        return self.options.variables

    @property
    def git(self) -> GitExecutor:
        return self.dependencies.git

    @property
    def repositories(self) -> RepositoryManager:
        return self.dependencies.repositories

    @property
    def filesystem(self) -> FileSystem:
        return self.dependencies.filesystem

    def out(self, message: str) -> None:
        print(message, file=self.dependencies.output)

    def err(self, message: str) -> None:
        print(message, file=self.dependencies.errors)

    def confirm(self, prompt: str) -> bool:
        """Ask through the cascading prompter; True when the user agreed."""
        return self.prompter.confirm(prompt).confirmed
