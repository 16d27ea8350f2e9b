"""Rename repository folders to match their GitHub repository names."""

from __future__ import annotations

import logging
import os
from typing import Any

from gitfleet.errors import ActionError, ActionSkipped
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)


def desired_folder_name(repository: RepositoryState, include_owner: bool) -> str:
    if not repository.name:
        return ""
    if include_owner and repository.owner:
        return f"{repository.owner}/{repository.name}"
    return repository.name


def _is_case_only(old: str, new: str) -> bool:
    return old != new and old.lower() == new.lower()


async def rename_folder(env: Environment, repository: RepositoryState, options: dict[str, Any]) -> None:
    reader = OptionReader(options)
    include_owner = reader.boolean("include_owner")
    require_clean = reader.boolean("require_clean", True)
    # A parent holding nested repositories shows them as untracked entries.
    if repository.has_nested_repositories and repository.initial_clean:
        require_clean = False

    desired = desired_folder_name(repository, include_owner)
    if not desired:
        logger.info("No repository name known for %s; leaving folder as is", repository.path)
        raise ActionSkipped("repository name unknown")

    fs = env.filesystem
    old_path = fs.abs(repository.path)
    new_path = os.path.join(os.path.dirname(old_path), *desired.split("/"))
    parent = os.path.dirname(new_path)
    case_only = _is_case_only(old_path, new_path)
    prefix = "PLAN-SKIP" if env.dry_run else "SKIP"

    if old_path == new_path:
        env.out(f"{prefix} (already normalized): {old_path}")
        raise ActionSkipped("already normalized")

    if require_clean:
        entries = await env.repositories.worktree_status(old_path)
        if entries:
            env.out(f"{prefix} (dirty worktree): {old_path}")
            raise ActionSkipped("dirty worktree")

    if not fs.exists(parent) and not include_owner:
        raise ActionError(f"target parent missing: {parent}")
    if fs.exists(new_path) and not case_only:
        raise ActionError(f"target exists: {new_path}")

    if env.dry_run:
        if case_only:
            env.out(f"PLAN-RENAME: {old_path} → {new_path} (case-only, two-step move)")
        else:
            env.out(f"PLAN-RENAME: {old_path} → {new_path}")
        return

    if not env.confirm(f"Rename '{old_path}' → '{new_path}'? [a/N/y] "):
        env.out(f"RENAME-SKIP: user declined for {old_path}")
        raise ActionSkipped("declined")

    if include_owner:
        fs.mkdir_all(parent)
    try:
        if case_only:
            intermediate = _intermediate_path(env, new_path)
            fs.rename(old_path, intermediate)
            fs.rename(intermediate, new_path)
        else:
            fs.rename(old_path, new_path)
    except OSError as exc:
        raise ActionError(f"rename failed for {old_path} → {new_path}: {exc}") from exc

    repository.path = new_path
    env.out(f"Renamed {old_path} → {new_path}")


def _intermediate_path(env: Environment, target: str) -> str:
    counter = 0
    while True:
        candidate = f"{target}.rename.{counter}"
        if not env.filesystem.exists(candidate):
            return candidate
        counter += 1
