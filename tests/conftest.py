"""Fake collaborators shared by the test suite."""

from __future__ import annotations

import io
import os

import pytest

from gitfleet.actions import builtin_registry
from gitfleet.collaborators.filesystem import LocalFileSystem
from gitfleet.errors import CollaboratorError, CommandFailedError
from gitfleet.models import (
    CommandDetails,
    ConfirmationResult,
    ExecutionResult,
    RepositoryMetadata,
    RuntimeOptions,
)
from gitfleet.workflow.prompting import CascadingPrompter, PromptState
from gitfleet.workflow.registry import Registry
from gitfleet.workflow.state import Dependencies, Environment


class RecordingGit:
    """Records every git/gh call; answers from canned responses.

    Responses and failures are keyed by an argument prefix; the longest
    matching prefix wins. ``rev-parse --verify`` fails unless a response says
    otherwise, so refs are missing by default.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.gh_calls: list[tuple[str, list[str]]] = []
        self.commands: list[list[str]] = []
        self.command_dirs: list[str] = []
        self.responses: dict[tuple[str, ...], str] = {}
        self.failures: set[tuple[str, ...]] = set()
        # Failures that report specific output, e.g. git's own error text.
        self.failure_output: dict[tuple[str, ...], str] = {}

    def _answer(self, program: str, arguments: list[str]) -> ExecutionResult:
        for length in range(len(arguments), 0, -1):
            key = tuple(arguments[:length])
            if key in self.failure_output:
                raise CommandFailedError([program, *arguments], 1, self.failure_output[key])
            if key in self.failures:
                raise CommandFailedError([program, *arguments], 1, "simulated failure")
            if key in self.responses:
                return ExecutionResult(exit_code=0, stdout=self.responses[key])
        if program == "git" and arguments[:2] == ["rev-parse", "--verify"]:
            raise CommandFailedError([program, *arguments], 1, "")
        return ExecutionResult(exit_code=0)

    async def execute_git(self, details: CommandDetails) -> ExecutionResult:
        self.calls.append((details.working_directory, list(details.arguments)))
        return self._answer("git", list(details.arguments))

    async def execute_github_cli(self, details: CommandDetails) -> ExecutionResult:
        self.gh_calls.append((details.working_directory, list(details.arguments)))
        return self._answer("gh", list(details.arguments))

    async def execute_command(self, cmd: list[str], details: CommandDetails) -> ExecutionResult:
        self.commands.append(list(cmd))
        self.command_dirs.append(details.working_directory)
        return ExecutionResult(exit_code=0)

    def arguments(self, path: str | None = None) -> list[list[str]]:
        return [args for cwd, args in self.calls if path is None or cwd == path]

    def mutating(self) -> list[list[str]]:
        read_only = {
            "rev-parse",
            "status",
            "remote",
            "ls-remote",
            "for-each-ref",
            "rev-list",
            "check-ignore",
        }
        return [args for _, args in self.calls if args[0] not in read_only]


class FakeRepositories:
    """In-memory worktree status, branches and remotes per path."""

    def __init__(self) -> None:
        self.status: dict[str, list[str]] = {}
        self.branches: dict[str, str] = {}
        self.remotes: dict[str, dict[str, str]] = {}
        self.updated: list[tuple[str, str, str]] = []

    async def worktree_status(self, path: str) -> list[str]:
        return list(self.status.get(path, []))

    async def check_clean_worktree(self, path: str) -> bool:
        return not self.status.get(path)

    async def get_current_branch(self, path: str) -> str:
        return self.branches.get(path, "main")

    async def get_remote_url(self, path: str, remote: str) -> str:
        return self.remotes.get(path, {}).get(remote, "")

    async def set_remote_url(self, path: str, remote: str, url: str) -> None:
        self.remotes.setdefault(path, {})[remote] = url
        self.updated.append((path, remote, url))


class FakeDiscoverer:
    def __init__(self, repositories: list[str]) -> None:
        self.repositories = repositories
        self.roots: list[str] = []

    def discover_repositories(self, roots: list[str]) -> list[str]:
        self.roots = list(roots)
        return list(self.repositories)


class ScriptedPrompter:
    """Returns queued answers in order; declines once the script runs out."""

    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = list(answers or [])
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> ConfirmationResult:
        self.prompts.append(prompt)
        answer = self.answers.pop(0) if self.answers else "n"
        if answer == "a":
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        return ConfirmationResult(confirmed=answer == "y")


class FakeGitHub:
    def __init__(self, metadata: dict | None = None) -> None:
        self.metadata = metadata or {}
        self.lookups: list[str] = []

    async def resolve_repo_metadata(self, full_name: str) -> RepositoryMetadata:
        self.lookups.append(full_name)
        if full_name not in self.metadata:
            raise CollaboratorError(f"not found: {full_name}")
        return RepositoryMetadata(**self.metadata[full_name])


@pytest.fixture
def git() -> RecordingGit:
    return RecordingGit()


@pytest.fixture
def repositories() -> FakeRepositories:
    return FakeRepositories()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def dependencies(git, repositories, prompter) -> Dependencies:
    return Dependencies(
        discoverer=FakeDiscoverer([]),
        git=git,
        repositories=repositories,
        filesystem=LocalFileSystem(),
        prompter=prompter,
        output=io.StringIO(),
        errors=io.StringIO(),
    )


@pytest.fixture
def make_env(dependencies):
    """Build an Environment; keyword arguments become RuntimeOptions."""

    def _make(registry: Registry | None = None, **options) -> Environment:
        state = PromptState(assume_yes=options.get("assume_yes", False))
        return Environment(
            dependencies=dependencies,
            registry=registry or builtin_registry(),
            options=RuntimeOptions(**options),
            prompt_state=state,
            prompter=CascadingPrompter(dependencies.prompter, state),
        )

    return _make


def output_lines(dependencies: Dependencies) -> list[str]:
    return dependencies.output.getvalue().splitlines()


def make_repo(tmp_path, *parts: str) -> str:
    path = tmp_path.joinpath(*parts)
    (path / ".git").mkdir(parents=True)
    return os.fspath(path)
