"""Workflow executor: run compiled nodes across discovered repositories.

Repositories are processed one at a time; within a repository, nodes and
their actions run strictly in declaration order. Safeguard failures and
declined prompts are recorded as skips, per-repository failures are recorded
and the run moves on, and infrastructure failures abort the run.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from typing import Any, assert_never

from gitfleet.actions.audit import write_reports
from gitfleet.collaborators.git import filter_ignored_repositories
from gitfleet.collaborators.github import parse_owner_repository, split_owner_repository
from gitfleet.errors import (
    ActionSkipped,
    CollaboratorError,
    ExecutionCancelledError,
    GitfleetError,
    InfrastructureError,
    SafeguardViolation,
)
from gitfleet.models import (
    ExecutionOutcome,
    FailureRecord,
    RepositoryStatus,
    RuntimeOptions,
    SkipRecord,
)
from gitfleet.workflow.compiler import (
    AuditReportOperation,
    CanonicalRemoteOperation,
    OperationNode,
    ProtocolConversionOperation,
    RenameOperation,
    TaskOperation,
)
from gitfleet.workflow.prompting import CascadingPrompter, PromptState
from gitfleet.workflow.registry import Registry
from gitfleet.workflow.state import Dependencies, Environment, RepositoryState, path_depth
from gitfleet.workflow.task_runner import TaskResult, TaskStatus, run_task

logger = logging.getLogger(__name__)


class FailureScope(enum.StrEnum):
    REPOSITORY = "repository"
    RUN = "run"


def classify_failure(error: BaseException) -> FailureScope:
    """Decide how far a failure reaches. The one place this policy lives."""
    if isinstance(error, InfrastructureError):
        return FailureScope.RUN
    return FailureScope.REPOSITORY


# ---------------------------------------------------------------------------
# Repository selection
# ---------------------------------------------------------------------------


def _is_within(child: str, parent: str) -> bool:
    return child != parent and child.startswith(parent.rstrip(os.sep) + os.sep)


def prune_nested_roots(roots: list[str]) -> list[str]:
    """Normalize and dedupe roots, dropping any root that lies inside another."""
    unique = list(dict.fromkeys(os.path.abspath(os.path.expanduser(root)) for root in roots))
    return [root for root in unique if not any(_is_within(root, other) for other in unique)]


def select_repositories(
    discovered: list[str], *, descending_depth: bool
) -> tuple[list[str], set[str]]:
    """Dedupe and order discovered repositories.

    Returns the ordered paths and the set of paths that contain other
    repositories.
    """
    selected = list(dict.fromkeys(os.path.normpath(path) for path in discovered))
    parents = {p for p in selected if any(_is_within(other, p) for other in selected)}
    if descending_depth:
        selected = sorted(selected, key=lambda p: (-path_depth(p), p))
    return selected, parents


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class Executor:
    def __init__(
        self,
        nodes: list[OperationNode],
        dependencies: Dependencies,
        registry: Registry,
    ) -> None:
        self.nodes = nodes
        self.dependencies = dependencies
        self.registry = registry

    async def execute(
        self,
        roots: list[str],
        options: RuntimeOptions,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionOutcome:
        """Run every node against every selected repository under ``roots``."""
        if cancel is not None and cancel.is_set():
            raise ExecutionCancelledError("execution cancelled before start")

        if not options.include_nested_repositories:
            roots = prune_nested_roots(roots)
        try:
            discovered = self.dependencies.discoverer.discover_repositories(roots)
            discovered = await filter_ignored_repositories(self.dependencies.git, discovered)
        except (OSError, CollaboratorError) as exc:
            raise InfrastructureError(f"repository discovery failed: {exc}") from exc

        repositories, parents = select_repositories(
            discovered,
            descending_depth=options.process_repositories_by_descending_depth,
        )
        logger.info("Processing %d repositories", len(repositories))

        prompt_state = PromptState(assume_yes=options.assume_yes)
        env = Environment(
            dependencies=self.dependencies,
            registry=self.registry,
            options=options,
            prompt_state=prompt_state,
            prompter=CascadingPrompter(self.dependencies.prompter, prompt_state),
            cancel=cancel,
        )
        if options.capture_initial_worktree_status:
            await self._capture_initial_status(env, repositories)

        outcome = ExecutionOutcome()
        for index, path in enumerate(repositories):
            if env.cancelled:
                if index == 0:
                    raise ExecutionCancelledError("execution cancelled before start")
                logger.warning("Execution cancelled; %d repositories not processed", len(repositories) - index)
                outcome.cancelled = True
                break
            status = await self._process_repository(env, path, path in parents, outcome)
            outcome.record(status)
            if outcome.cancelled:
                break

        write_reports(env)
        env.out(
            f"Summary: processed={outcome.processed} skipped={outcome.skipped} failed={outcome.failed}"
        )
        return outcome

    async def _capture_initial_status(self, env: Environment, repositories: list[str]) -> None:
        for path in repositories:
            try:
                env.initial_clean[path] = await env.repositories.check_clean_worktree(path)
            except CollaboratorError as exc:
                logger.warning("Could not read initial worktree status of %s: %s", path, exc)

    async def _process_repository(
        self, env: Environment, path: str, has_nested: bool, outcome: ExecutionOutcome
    ) -> RepositoryStatus:
        skipped_nodes = 0
        for node in self.nodes:
            if env.cancelled:
                outcome.cancelled = True
                break
            logger.info("Running step %s on %s", node.name, path)
            repository = RepositoryState(
                path=path,
                has_nested_repositories=has_nested,
                initial_clean=env.initial_clean.get(path),
            )
            try:
                if not env.options.skip_repository_metadata:
                    await self._resolve_metadata(env, repository)
                else:
                    repository.name = os.path.basename(path)
                result = await self._run_node(env, repository, node)
            except SafeguardViolation as exc:
                env.out(f"SKIP: {repository.path} {exc.reason}")
                result = TaskResult(TaskStatus.SKIPPED, exc.reason)
            except (GitfleetError, OSError) as exc:
                if classify_failure(exc) is FailureScope.RUN:
                    raise
                message = str(exc)
                env.err(f"ERROR: {repository.path}: {message}")
                outcome.failures.append(
                    FailureRecord(repository=repository.path, node=node.name, message=message)
                )
                return RepositoryStatus.FAILED

            if result.status is TaskStatus.SKIPPED:
                skipped_nodes += 1
                outcome.skips.append(
                    SkipRecord(repository=repository.path, node=node.name, reason=result.reason)
                )
            elif result.status is TaskStatus.CANCELLED:
                outcome.cancelled = True
                break
            else:
                outcome.skips.extend(
                    SkipRecord(repository=repository.path, node=node.name, reason=reason)
                    for reason in result.skips
                )
            # A rename moves the repository for the nodes that follow.
            path = repository.path

        if self.nodes and skipped_nodes == len(self.nodes):
            return RepositoryStatus.SKIPPED
        return RepositoryStatus.PROCESSED

    async def _resolve_metadata(self, env: Environment, repository: RepositoryState) -> None:
        path = repository.path
        repository.name = os.path.basename(path)
        try:
            repository.current_branch = await env.repositories.get_current_branch(path)
        except CollaboratorError as exc:
            logger.warning("Could not read current branch of %s: %s", path, exc)
        repository.remote_url = await env.repositories.get_remote_url(path, "origin")

        full_name = parse_owner_repository(repository.remote_url)
        github = self.dependencies.github
        if full_name and github is not None:
            try:
                metadata = await github.resolve_repo_metadata(full_name)
            except CollaboratorError as exc:
                logger.warning("Metadata lookup failed for %s: %s", full_name, exc)
            else:
                full_name = metadata.name_with_owner or full_name
                repository.canonical_full_name = metadata.name_with_owner
                repository.default_branch = metadata.default_branch
                repository.remote_default_branch = metadata.default_branch
        if full_name:
            repository.full_name = full_name
            repository.owner, repository.name = split_owner_repository(full_name)
        if not repository.default_branch:
            repository.default_branch = repository.current_branch

    async def _run_node(
        self, env: Environment, repository: RepositoryState, node: OperationNode
    ) -> TaskResult:
        operation = node.operation
        if isinstance(operation, TaskOperation):
            return await self._run_tasks(env, repository, operation)
        if isinstance(operation, RenameOperation):
            return await self._run_action(
                env,
                repository,
                "repo.folder.rename",
                {"include_owner": operation.include_owner, "require_clean": operation.require_clean},
            )
        if isinstance(operation, ProtocolConversionOperation):
            return await self._run_action(
                env,
                repository,
                "repo.remote.convert-protocol",
                {"from": operation.source.value, "to": operation.target.value},
            )
        if isinstance(operation, CanonicalRemoteOperation):
            return await self._run_action(
                env, repository, "repo.remote.update", {"owner": operation.owner}
            )
        if isinstance(operation, AuditReportOperation):
            return await self._run_action(
                env,
                repository,
                "audit.report",
                {"output": operation.output, "depth": operation.depth},
            )
        assert_never(operation)

    async def _run_tasks(
        self, env: Environment, repository: RepositoryState, operation: TaskOperation
    ) -> TaskResult:
        results = []
        skips = []
        for task in operation.tasks:
            result = await run_task(env, repository, task)
            if result.status is TaskStatus.CANCELLED:
                return result
            results.append(result)
            if result.status is TaskStatus.SKIPPED:
                skips.append(f"{task.name}: {result.reason}")
            else:
                skips.extend(f"{task.name}: {skip}" for skip in result.skips)
        if all(result.status is TaskStatus.SKIPPED for result in results):
            return TaskResult(TaskStatus.SKIPPED, "; ".join(r.reason for r in results))
        return TaskResult(TaskStatus.APPLIED, skips=skips)

    async def _run_action(
        self,
        env: Environment,
        repository: RepositoryState,
        action_type: str,
        options: dict[str, Any],
    ) -> TaskResult:
        registered = self.registry.lookup(action_type)
        try:
            await registered.handler(env, repository, options)
        except ActionSkipped as exc:
            return TaskResult(TaskStatus.SKIPPED, exc.reason)
        return TaskResult(TaskStatus.APPLIED)
