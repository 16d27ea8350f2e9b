"""File actions: literal find/replace across globs, and single-file seeding."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gitfleet.errors import ActionError, ActionSkipped, ValidationError
from gitfleet.models import CommandDetails
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState
from gitfleet.workflow.task_runner import TaskStatus, run_task
from gitfleet.workflow.tasks import parse_task_definition

logger = logging.getLogger(__name__)


@dataclass
class ReplacementPlan:
    absolute_path: str
    relative_path: str
    replacements: int
    content: bytes


def _patterns(reader: OptionReader) -> list[str]:
    collected = reader.string_list("pattern") + reader.string_list("patterns")
    unique: list[str] = []
    for pattern in collected:
        normalized = pattern.removeprefix("./")
        if normalized and normalized not in unique:
            unique.append(normalized)
    return unique


def _collect_targets(root: str, patterns: list[str]) -> list[str]:
    matches: set[str] = set()
    base = Path(root)
    for pattern in patterns:
        for candidate in base.glob(pattern):
            relative = candidate.relative_to(base)
            if ".git" in relative.parts or not candidate.is_file():
                continue
            matches.add(relative.as_posix())
    return sorted(matches)


def plan_replacements(
    env: Environment, root: str, relative_paths: list[str], find: str, replace: str
) -> list[ReplacementPlan]:
    plans = []
    needle = find.encode()
    for relative in relative_paths:
        absolute = os.path.join(root, *relative.split("/"))
        content = env.filesystem.read_file(absolute)
        count = content.count(needle)
        if count == 0:
            continue
        plans.append(
            ReplacementPlan(
                absolute_path=absolute,
                relative_path=relative,
                replacements=count,
                content=content.replace(needle, replace.encode()),
            )
        )
    return plans


async def replace_in_files(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    find = reader.raw("find")
    if not isinstance(find, str) or not find:
        raise ActionError("replacement action requires non-empty 'find'")
    replace = reader.raw("replace") or ""
    if not isinstance(replace, str):
        raise ValidationError("option replace must be a string")
    patterns = _patterns(reader)
    if not patterns:
        raise ActionError("replacement action requires at least one 'pattern'")
    command = reader.string_list("command")
    path = repository.path

    plans = plan_replacements(env, path, _collect_targets(path, patterns), find, replace)

    if env.dry_run:
        for plan in plans:
            env.out(f"REPLACE-PLAN: {path} file={plan.relative_path} replacements={plan.replacements}")
        if command and plans:
            env.out(f"REPLACE-COMMAND-PLAN: {path} command={' '.join(command)}")
        return

    if not plans:
        env.out(f"REPLACE-NOOP: {path} reason=no matches")
        return

    for plan in plans:
        mode = env.filesystem.stat(plan.absolute_path).st_mode & 0o777
        env.filesystem.write_file(plan.absolute_path, plan.content, mode)
        env.out(f"REPLACE-APPLY: {path} file={plan.relative_path} replacements={plan.replacements}")

    if not command:
        return
    await env.git.execute_command(command, CommandDetails(arguments=[], working_directory=path))
    env.out(f"REPLACE-COMMAND: {path} command={' '.join(command)}")


async def add_file(env: Environment, repository: RepositoryState, options: dict[str, Any]) -> None:
    """Seed one file through the task runner (branch, commit, push)."""
    reader = OptionReader(options)
    file_path = reader.string("path")
    if not file_path:
        raise ActionError("file add action requires a path")

    entry: dict[str, Any] = {"path": file_path, "content": reader.raw("content") or ""}
    if "mode" in reader:
        entry["mode"] = reader.raw("mode")
    if "permissions" in reader:
        entry["permissions"] = reader.raw("permissions")
    branch = {
        key: reader.string(source)
        for key, source in (("name", "branch"), ("start_point", "start_point"), ("push_remote", "push_remote"))
        if reader.string(source)
    }
    task = parse_task_definition(
        {
            "name": reader.string("name", f"add {file_path}"),
            "ensure_clean": reader.boolean("ensure_clean", False),
            "branch": branch,
            "files": [entry],
            "commit_message": reader.string("commit_message", f"Add {file_path}"),
        }
    )
    result = await run_task(env, repository, task, confirmed=True)
    if result.status is TaskStatus.SKIPPED:
        raise ActionSkipped(result.reason)
    logger.debug("Added %s to %s", file_path, repository.path)
