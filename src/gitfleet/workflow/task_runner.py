"""Plan and apply one task against one repository.

Planning renders every template for the repository at hand and decides which
file changes apply. Applying creates the task branch, writes and commits the
files, pushes, then dispatches the task's actions in order.
"""

from __future__ import annotations

import enum
import logging
import os
import posixpath
from dataclasses import dataclass, field
from typing import Any

from gitfleet.collaborators.git import ref_exists, run_git
from gitfleet.errors import ActionSkipped, SafeguardViolation, ValidationError
from gitfleet.workflow.safeguards import evaluate_safeguards, split_safeguards
from gitfleet.workflow.state import Environment, RepositoryState
from gitfleet.workflow.tasks import TaskDefinition, TaskFileMode
from gitfleet.workflow.templates import build_context, render, render_value

logger = logging.getLogger(__name__)

_BRANCH_UNSAFE = str.maketrans({c: "-" for c in " \t\n@#^\\/"})


class TaskStatus(enum.StrEnum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class TaskResult:
    status: TaskStatus
    reason: str = ""
    # Actions that were skipped while the task itself went ahead.
    skips: list[str] = field(default_factory=list)


@dataclass
class FileChange:
    relative_path: str
    absolute_path: str
    content: bytes
    mode: TaskFileMode
    permissions: int
    apply: bool = True
    skip_reason: str = ""


@dataclass
class PlannedAction:
    type: str
    options: dict[str, Any]
    safeguards: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskPlan:
    task: TaskDefinition
    branch_name: str
    start_point: str
    commit_message: str
    push_remote: str
    file_changes: list[FileChange] = field(default_factory=list)
    actions: list[PlannedAction] = field(default_factory=list)

    @property
    def applicable_changes(self) -> list[FileChange]:
        return [change for change in self.file_changes if change.apply]

    @property
    def skipped(self) -> bool:
        return not self.applicable_changes and not self.actions


def sanitize_branch_name(name: str) -> str:
    sanitized = name.strip().translate(_BRANCH_UNSAFE).strip("-")
    return sanitized or "task"


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _clean_relative_path(rendered: str) -> str:
    rendered = rendered.strip()
    if posixpath.isabs(rendered) or os.path.isabs(rendered):
        raise ValidationError(f"file path {rendered!r} must be relative")
    cleaned = posixpath.normpath(rendered.replace("\\", "/")) if rendered else ""
    if cleaned in ("", ".", "..") or cleaned.startswith("../"):
        raise ValidationError(f"invalid file path {rendered!r} after templating")
    return cleaned


def _missing_lines(existing: bytes, desired: bytes) -> list[str]:
    present = {line.strip() for line in existing.decode(errors="replace").splitlines()}
    wanted = [line for line in desired.decode(errors="replace").splitlines() if line.strip()]
    return [line for line in wanted if line.strip() not in present]


def _plan_file(env: Environment, change: FileChange) -> FileChange:
    try:
        existing = env.filesystem.read_file(change.absolute_path)
    except FileNotFoundError:
        return change

    if change.mode is TaskFileMode.SKIP_IF_EXISTS:
        change.apply, change.skip_reason = False, "exists"
    elif change.mode is TaskFileMode.APPEND_IF_MISSING:
        missing = _missing_lines(existing, change.content)
        if not missing:
            change.apply, change.skip_reason = False, "lines-present"
        else:
            prefix = existing if existing.endswith(b"\n") or not existing else existing + b"\n"
            change.content = prefix + ("\n".join(missing) + "\n").encode()
    elif existing == change.content:
        change.apply, change.skip_reason = False, "unchanged"
    return change


def plan_task(env: Environment, repository: RepositoryState, task: TaskDefinition) -> TaskPlan:
    """Render the task for ``repository`` and work out which changes apply."""
    context = build_context(repository, env.variables)

    branch_template = task.branch.name_template.strip()
    branch_name = render(branch_template, context) if branch_template else ""
    if not branch_name.strip():
        branch_name = f"automation/{sanitize_branch_name(task.name)}"
    else:
        branch_name = sanitize_branch_name(branch_name)

    start_template = task.branch.start_point_template.strip() or "{{ .Repository.DefaultBranch }}"
    start_point = render(start_template, context).strip()

    commit_message = render(task.commit_message_template, context).strip()
    if not commit_message:
        commit_message = f"Apply task {task.name}"

    changes: list[FileChange] = []
    seen: set[str] = set()
    for definition in task.files:
        relative = _clean_relative_path(render(definition.path_template, context))
        if relative in seen:
            raise ValidationError(f"duplicate file path {relative}")
        seen.add(relative)
        change = FileChange(
            relative_path=relative,
            absolute_path=os.path.join(repository.path, *relative.split("/")),
            content=render(definition.content_template, context).encode(),
            mode=definition.mode,
            permissions=definition.permissions,
        )
        changes.append(_plan_file(env, change))
    changes.sort(key=lambda change: change.relative_path)

    actions = []
    for action in task.actions:
        options = render_value(dict(action.options), context)
        safeguards = options.pop("safeguards", None) or {}
        if not isinstance(safeguards, dict):
            raise ValidationError(f"action {action.type} safeguards must be a mapping")
        actions.append(PlannedAction(type=action.type, options=options, safeguards=safeguards))

    return TaskPlan(
        task=task,
        branch_name=branch_name,
        start_point=start_point,
        commit_message=commit_message,
        push_remote=task.branch.push_remote,
        file_changes=changes,
        actions=actions,
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _ensure_clean(env: Environment, task: TaskDefinition) -> bool:
    variable = task.ensure_clean_variable.strip()
    if variable and variable in env.variables:
        value = env.variables[variable].strip().lower()
        if value in ("true", "1", "yes"):
            return True
        if value in ("false", "0", "no"):
            return False
    return task.ensure_clean


def _needs_confirmation(env: Environment, plan: TaskPlan) -> bool:
    if plan.applicable_changes:
        return True
    return any(not env.registry.lookup(action.type).confirms for action in plan.actions)


async def run_actions(env: Environment, repository: RepositoryState, plan: TaskPlan) -> TaskResult:
    """Dispatch planned actions in order; the first error propagates.

    Actions that fail a soft safeguard or decide to skip themselves are
    listed in the result's ``skips`` as ``<type>: <reason>``.
    """
    skips = []
    for action in plan.actions:
        if env.cancelled:
            return TaskResult(TaskStatus.CANCELLED, "cancelled", skips)
        registered = env.registry.lookup(action.type)

        hard, soft = split_safeguards(action.safeguards, default_soft=True)
        passed, reason = await evaluate_safeguards(env, repository, hard)
        if not passed:
            raise SafeguardViolation(reason)
        passed, reason = await evaluate_safeguards(env, repository, soft)
        if not passed:
            env.out(f"ACTION-SKIP: {action.type} {repository.path} {reason}")
            skips.append(f"{registered.type}: {reason}")
            continue

        logger.info("Running action %s on %s", registered.type, repository.path)
        try:
            await registered.handler(env, repository, action.options)
        except ActionSkipped as exc:
            logger.info("Action %s skipped on %s: %s", registered.type, repository.path, exc.reason)
            skips.append(f"{registered.type}: {exc.reason}")
    return TaskResult(TaskStatus.APPLIED, skips=skips)


def _collapse_skips(plan: TaskPlan, result: TaskResult) -> TaskResult:
    """A task whose every action skipped and that wrote no files is itself skipped."""
    if (
        result.status is TaskStatus.APPLIED
        and not plan.applicable_changes
        and plan.actions
        and len(result.skips) == len(plan.actions)
    ):
        return TaskResult(TaskStatus.SKIPPED, "; ".join(result.skips))
    return result


async def run_task(
    env: Environment,
    repository: RepositoryState,
    task: TaskDefinition,
    *,
    confirmed: bool = False,
) -> TaskResult:
    """Apply ``task`` to ``repository``.

    Safeguard failures, a dirty worktree and declined prompts come back as
    SKIPPED results. Collaborator failures propagate to the caller.
    """
    hard, _ = split_safeguards(task.safeguards)
    passed, reason = await evaluate_safeguards(env, repository, hard)
    if not passed:
        reason = reason or "safeguard failed"
        env.out(f"TASK-SKIP: {task.name} {repository.path} {reason}")
        return TaskResult(TaskStatus.SKIPPED, reason)

    plan = plan_task(env, repository, task)
    if plan.skipped:
        env.out(f"TASK-SKIP: {task.name} {repository.path} no changes")
        return TaskResult(TaskStatus.SKIPPED, "no changes")

    if _ensure_clean(env, task) and not await env.repositories.check_clean_worktree(repository.path):
        status = await env.repositories.worktree_status(repository.path)
        logger.info("Worktree status for %s: %s", repository.path, ", ".join(status))
        env.out(f"TASK-SKIP: {task.name} {repository.path} repository dirty")
        return TaskResult(TaskStatus.SKIPPED, "repository dirty")

    if env.dry_run:
        env.out(
            f"TASK-PLAN: {task.name} {repository.path} branch={plan.branch_name}"
            f" files={len(plan.applicable_changes)} actions={len(plan.actions)}"
        )
        for change in plan.file_changes:
            verb = "would write" if change.apply else f"skip ({change.skip_reason})"
            env.out(f"TASK-PLAN: {task.name} {repository.path} {verb} {change.relative_path}")
        return _collapse_skips(plan, await run_actions(env, repository, plan))

    if not confirmed and _needs_confirmation(env, plan):
        if not env.confirm(f"Apply task '{task.name}' to '{repository.path}'? [a/N/y] "):
            env.out(f"TASK-SKIP: {task.name} {repository.path} user declined")
            return TaskResult(TaskStatus.SKIPPED, "declined")

    if plan.applicable_changes:
        skipped = await _apply_file_changes(env, repository, plan)
        if skipped is not None:
            return skipped

    result = _collapse_skips(plan, await run_actions(env, repository, plan))
    if result.status is TaskStatus.APPLIED:
        env.out(f"TASK-APPLY: {task.name} {repository.path}")
    elif result.status is TaskStatus.SKIPPED:
        env.out(f"TASK-SKIP: {task.name} {repository.path} {result.reason}")
    return result


async def _apply_file_changes(
    env: Environment, repository: RepositoryState, plan: TaskPlan
) -> TaskResult | None:
    path = repository.path
    start_point = plan.start_point
    if start_point and not await ref_exists(env.git, path, start_point):
        logger.warning("Start point %s missing in %s; branching from HEAD", start_point, path)
        start_point = ""

    if await ref_exists(env.git, path, plan.branch_name):
        env.out(f"TASK-SKIP: {plan.task.name} {path} branch exists {plan.branch_name}")
        return TaskResult(TaskStatus.SKIPPED, "branch exists")

    original_branch = (await env.repositories.get_current_branch(path)).strip()
    checkout = ["checkout", "-B", plan.branch_name]
    if start_point:
        checkout.append(start_point)
    await run_git(env.git, path, *checkout)
    try:
        for change in plan.applicable_changes:
            env.filesystem.mkdir_all(os.path.dirname(change.absolute_path))
            env.filesystem.write_file(change.absolute_path, change.content, change.permissions)
            await run_git(env.git, path, "add", change.relative_path)
        await run_git(env.git, path, "commit", "-m", plan.commit_message)

        if await env.repositories.get_remote_url(path, plan.push_remote):
            await run_git(
                env.git, path, "push", "--set-upstream", plan.push_remote, plan.branch_name
            )
        else:
            logger.info("Remote %s not configured for %s; not pushing", plan.push_remote, path)
    finally:
        if original_branch and original_branch != "HEAD":
            await run_git(env.git, path, "checkout", original_branch)
    repository.facts["task_branch"] = plan.branch_name
    return None
