"""Collaborator protocols consumed by the workflow engine."""

from __future__ import annotations

import os
from typing import Protocol

from gitfleet.models import CommandDetails, ConfirmationResult, ExecutionResult, RepositoryMetadata


class RepositoryDiscoverer(Protocol):
    """Finds Git repositories under a set of roots."""

    def discover_repositories(self, roots: list[str]) -> list[str]:
        """Return absolute repository paths found beneath ``roots``.

        Raises:
            InfrastructureError: A root could not be read.
        """
        ...


class GitExecutor(Protocol):
    """Runs git and gh subprocesses."""

    async def execute_git(self, details: CommandDetails) -> ExecutionResult:
        """Run ``git`` with ``details.arguments``.

        Args:
            details: Arguments, working directory and extra environment.

        Returns:
            ExecutionResult for a zero exit status.

        Raises:
            CommandFailedError: The command exited non-zero.
        """
        ...

    async def execute_github_cli(self, details: CommandDetails) -> ExecutionResult:
        """Run ``gh`` with ``details.arguments``; same contract as execute_git."""
        ...

    async def execute_command(self, cmd: list[str], details: CommandDetails) -> ExecutionResult:
        """Run an arbitrary program ``cmd``.

        Only the working directory, environment and timeout of ``details``
        are used. Same error contract as execute_git.
        """
        ...


class RepositoryManager(Protocol):
    """Higher-level queries and updates over a working tree."""

    async def check_clean_worktree(self, path: str) -> bool: ...

    async def worktree_status(self, path: str) -> list[str]: ...

    async def get_current_branch(self, path: str) -> str: ...

    async def get_remote_url(self, path: str, remote: str) -> str:
        """Return the remote's URL, or an empty string when it is not configured."""
        ...

    async def set_remote_url(self, path: str, remote: str, url: str) -> None: ...


class FileSystem(Protocol):
    def stat(self, path: str) -> os.stat_result: ...

    def exists(self, path: str) -> bool: ...

    def read_file(self, path: str) -> bytes: ...

    def write_file(self, path: str, data: bytes, permissions: int) -> None: ...

    def mkdir_all(self, path: str) -> None: ...

    def rename(self, source: str, target: str) -> None: ...

    def abs(self, path: str) -> str: ...


class ConfirmationPrompter(Protocol):
    def confirm(self, prompt: str) -> ConfirmationResult: ...


class GitHubMetadataResolver(Protocol):
    async def resolve_repo_metadata(self, full_name: str) -> RepositoryMetadata:
        """Look up ``owner/repo`` on GitHub.

        Raises:
            CollaboratorError: The lookup failed.
        """
        ...
