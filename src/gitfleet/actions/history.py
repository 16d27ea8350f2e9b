"""Purge paths from repository history with git-filter-repo."""

from __future__ import annotations

import logging
import os
from typing import Any

from gitfleet.collaborators.git import run_git
from gitfleet.errors import ActionError, CommandFailedError
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

GITIGNORE = ".gitignore"
IGNORE_COMMIT_MESSAGE = "chore: ignore purged paths"


def _flag(value: bool) -> str:
    return "true" if value else "false"


async def purge_history(env: Environment, repository: RepositoryState, options: dict[str, Any]) -> None:
    reader = OptionReader(options)
    paths = reader.string_list("paths")
    if not paths:
        raise ActionError("history purge requires at least one path")
    push = reader.boolean("push", True)
    restore = reader.boolean("restore", True)
    push_missing = reader.boolean("push_missing", False)
    path = repository.path
    joined = ",".join(paths)

    remote = reader.string("remote") or "origin"
    remote_url = await env.repositories.get_remote_url(path, remote)
    if not remote_url:
        logger.info("Remote %s not configured for %s; history purge stays local", remote, path)
        remote = ""

    if env.dry_run:
        env.out(f"HISTORY-PLAN: {path} paths={joined} remote={remote}")
        return

    git = env.git
    if remote:
        await run_git(git, path, "fetch", "--prune", "--tags", remote)
    await _ensure_gitignore(env, path, paths)

    if not await _paths_in_history(env, path, paths):
        env.out(f"HISTORY-SKIP: {path} (no matching history for {joined})")
        return

    arguments = ["filter-repo"]
    for entry in paths:
        arguments += ["--path", entry]
    arguments += ["--invert-paths", "--prune-empty", "always", "--force"]
    await run_git(git, path, *arguments)
    await _cleanup_filter_repo(env, path)

    if remote:
        # filter-repo drops remotes; put ours back.
        remotes = (await run_git(git, path, "remote")).split()
        if remote not in remotes:
            await run_git(git, path, "remote", "add", remote, remote_url)
        if push:
            await run_git(git, path, "push", "--force", "--all", remote)
            await run_git(git, path, "push", "--force", "--tags", remote)
        if restore:
            await _restore_upstreams(env, path, remote, push_missing)

    env.out(
        f"HISTORY-PURGE: {path} removed={joined} remote={remote} push={_flag(push)}"
        f" restore={_flag(restore)} push_missing={_flag(push_missing)}"
    )


async def _ensure_gitignore(env: Environment, path: str, paths: list[str]) -> None:
    target = os.path.join(path, GITIGNORE)
    try:
        existing = env.filesystem.read_file(target).decode()
    except FileNotFoundError:
        existing = ""

    lines: list[str] = []
    for line in existing.splitlines():
        line = line.strip()
        if line and line not in lines:
            lines.append(line)
    missing = [entry for entry in paths if entry not in lines]
    if not missing:
        return

    env.filesystem.write_file(target, ("\n".join(lines + missing) + "\n").encode(), 0o644)
    await run_git(env.git, path, "add", GITIGNORE)
    try:
        await run_git(env.git, path, "commit", "-m", IGNORE_COMMIT_MESSAGE)
    except CommandFailedError as exc:
        logger.info("Ignore-file commit skipped in %s: %s", path, exc)


async def _paths_in_history(env: Environment, path: str, paths: list[str]) -> bool:
    for entry in paths:
        try:
            output = await run_git(env.git, path, "rev-list", "--all", "--", entry)
        except CommandFailedError:
            continue
        if output.strip():
            return True
    return False


async def _cleanup_filter_repo(env: Environment, path: str) -> None:
    try:
        refs = await run_git(env.git, path, "for-each-ref", "--format=%(refname)", "refs/filter-repo/")
    except CommandFailedError:
        refs = ""
    for ref in refs.split():
        await run_git(env.git, path, "update-ref", "-d", ref)
    await run_git(
        env.git, path, "reflog", "expire", "--expire=now", "--expire-unreachable=now", "--all"
    )
    await run_git(env.git, path, "gc", "--prune=now", "--aggressive")


async def _restore_upstreams(env: Environment, path: str, remote: str, push_missing: bool) -> None:
    await run_git(env.git, path, "fetch", "--prune", remote)
    heads = await run_git(env.git, path, "for-each-ref", "--format=%(refname)", "refs/heads/")
    for ref in heads.split():
        branch = ref.removeprefix("refs/heads/")
        try:
            await run_git(
                env.git, path, "show-ref", "--verify", "--quiet", f"refs/remotes/{remote}/{branch}"
            )
        except CommandFailedError:
            if push_missing:
                await run_git(env.git, path, "push", "--set-upstream", remote, branch)
            continue
        await run_git(env.git, path, "branch", f"--set-upstream-to={remote}/{branch}", branch)
