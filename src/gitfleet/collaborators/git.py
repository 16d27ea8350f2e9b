"""git and gh subprocess execution on asyncio."""

from __future__ import annotations

import asyncio
import logging
import os
import time

from gitfleet.collaborators.base import GitExecutor
from gitfleet.errors import CollaboratorError, CommandFailedError
from gitfleet.models import CommandDetails, ExecutionResult

logger = logging.getLogger(__name__)


class ShellGitExecutor:
    """Runs ``git``/``gh`` as child processes; non-zero exits raise CommandFailedError."""

    def __init__(self, git_binary: str = "git", gh_binary: str = "gh") -> None:
        self.git_binary = git_binary
        self.gh_binary = gh_binary

    async def execute_git(self, details: CommandDetails) -> ExecutionResult:
        return await self.execute_command([self.git_binary, *details.arguments], details)

    async def execute_github_cli(self, details: CommandDetails) -> ExecutionResult:
        return await self.execute_command([self.gh_binary, *details.arguments], details)

    async def execute_command(self, cmd: list[str], details: CommandDetails) -> ExecutionResult:
        """Run an arbitrary program; used by actions that shell out beyond git."""
        cwd = details.working_directory or None
        env = None
        if details.environment:
            env = {**os.environ, **details.environment}

        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            raw_out, raw_err = await asyncio.wait_for(proc.communicate(), timeout=details.timeout)
        except TimeoutError:
            raise CollaboratorError(
                f"{' '.join(cmd)} timed out after {details.timeout}s"
            ) from None
        except FileNotFoundError:
            raise CollaboratorError(f"Command not found: {cmd[0]}") from None

        duration_ms = int((time.monotonic() - start) * 1000)
        result = ExecutionResult(
            exit_code=proc.returncode or 0,
            stdout=raw_out.decode(errors="replace"),
            stderr=raw_err.decode(errors="replace"),
            duration_ms=duration_ms,
        )
        logger.debug(
            "%s (cwd=%s) exit=%d in %dms", " ".join(cmd), cwd, result.exit_code, duration_ms
        )
        if result.exit_code != 0:
            raise CommandFailedError(cmd, result.exit_code, result.stderr or result.stdout)
        return result


class GitRepositoryManager:
    """Working-tree queries built on a GitExecutor."""

    def __init__(self, git: GitExecutor) -> None:
        self.git = git

    async def _git(self, path: str, *arguments: str) -> str:
        return await run_git(self.git, path, *arguments)

    async def worktree_status(self, path: str) -> list[str]:
        output = await self._git(path, "status", "--porcelain")
        return [line for line in output.splitlines() if line.strip()]

    async def check_clean_worktree(self, path: str) -> bool:
        return not await self.worktree_status(path)

    async def get_current_branch(self, path: str) -> str:
        output = await self._git(path, "rev-parse", "--abbrev-ref", "HEAD")
        return output.strip()

    async def get_remote_url(self, path: str, remote: str) -> str:
        try:
            output = await self._git(path, "remote", "get-url", remote)
        except CommandFailedError:
            return ""
        return output.strip()

    async def set_remote_url(self, path: str, remote: str, url: str) -> None:
        await self._git(path, "remote", "set-url", remote, url)


async def run_git(
    git: GitExecutor,
    path: str,
    *arguments: str,
    environment: dict[str, str] | None = None,
) -> str:
    """Run one git command in ``path`` and return its stdout."""
    result = await git.execute_git(
        CommandDetails(
            arguments=list(arguments),
            working_directory=path,
            environment=environment or {},
        )
    )
    return result.stdout


async def ref_exists(git: GitExecutor, path: str, ref: str) -> bool:
    ref = ref.strip()
    if not ref:
        return False
    try:
        await run_git(git, path, "rev-parse", "--verify", "--quiet", ref)
    except CommandFailedError:
        return False
    return True


async def check_ignored_paths(
    git: GitExecutor, worktree: str, relative_paths: list[str]
) -> set[str]:
    """The subset of ``relative_paths`` that git ignores inside ``worktree``."""
    if not relative_paths:
        return set()
    slashed = {path.replace(os.sep, "/"): path for path in relative_paths}
    try:
        output = await run_git(git, worktree, "check-ignore", "--", *slashed)
    except CommandFailedError as exc:
        # Exit status 1 means none of the paths is ignored.
        if exc.exit_code == 1:
            return set()
        raise
    ignored = set()
    for line in output.splitlines():
        entry = line.strip().removesuffix("/")
        if entry in slashed:
            ignored.add(slashed[entry])
    return ignored


def _closest_ancestor(path: str, candidates: set[str]) -> str:
    parent = os.path.dirname(path)
    while parent and parent != path:
        if parent in candidates:
            return parent
        path, parent = parent, os.path.dirname(parent)
    return ""


async def filter_ignored_repositories(git: GitExecutor, repositories: list[str]) -> list[str]:
    """Drop repositories that the closest enclosing repository's ignore rules exclude."""
    normalized = [os.path.normpath(path) for path in repositories]
    known = set(normalized)
    children: dict[str, list[str]] = {}
    for path in normalized:
        ancestor = _closest_ancestor(path, known)
        if ancestor:
            children.setdefault(ancestor, []).append(path)

    excluded: set[str] = set()
    for parent, nested in children.items():
        relative = {os.path.relpath(path, parent): path for path in nested}
        for entry in await check_ignored_paths(git, parent, list(relative)):
            logger.info("Skipping %s: ignored by %s", relative[entry], parent)
            excluded.add(relative[entry])
    return [path for path in normalized if path not in excluded]
