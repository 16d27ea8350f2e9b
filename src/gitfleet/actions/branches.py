"""Branch maintenance: closed pull request cleanup, branch refresh and branch change."""

from __future__ import annotations

import logging
from typing import Any

from gitfleet.collaborators.git import run_git
from gitfleet.collaborators.github import GitHubCLIClient
from gitfleet.errors import ActionError, CommandFailedError
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

DEFAULT_PULL_REQUEST_LIMIT = 100
NON_INTERACTIVE = {"GIT_TERMINAL_PROMPT": "0"}


# ---------------------------------------------------------------------------
# Closed pull request cleanup
# ---------------------------------------------------------------------------


def parse_remote_heads(output: str) -> set[str]:
    """Branch names from ``git ls-remote --heads`` output."""
    heads = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1].startswith("refs/heads/"):
            heads.add(parts[1].removeprefix("refs/heads/"))
    return heads


async def cleanup_branches(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    remote = reader.string("remote", "origin")
    limit = reader.integer("limit", DEFAULT_PULL_REQUEST_LIMIT)
    if limit <= 0:
        raise ActionError("pull request limit must be positive")
    path = repository.path

    remote_heads = parse_remote_heads(await run_git(env.git, path, "ls-remote", "--heads", remote))
    closed = await GitHubCLIClient(env.git).list_closed_pull_request_branches(path, limit)

    deleted = missing = declined = failed = 0
    for branch in closed:
        if branch not in remote_heads:
            missing += 1
            continue
        if env.dry_run:
            env.out(f"PLAN-DELETE-BRANCH: {path} {branch}")
            continue
        prompt = (
            f"Delete pull request branch '{branch}' from remote '{remote}' "
            "and the local repository? [y/N] "
        )
        if not env.confirm(prompt):
            declined += 1
            continue
        try:
            await run_git(env.git, path, "push", remote, "--delete", branch)
        except CommandFailedError as exc:
            logger.warning("Deleting %s from %s failed in %s: %s", branch, remote, path, exc)
            failed += 1
            continue
        try:
            await run_git(env.git, path, "branch", "-D", branch)
        except CommandFailedError:
            logger.debug("No local branch %s in %s", branch, path)
        deleted += 1

    env.out(
        f"PR cleanup: {path} closed={len(closed)} deleted={deleted} missing={missing}"
        f" declined={declined} failed={failed}"
    )


# ---------------------------------------------------------------------------
# Branch refresh
# ---------------------------------------------------------------------------


async def refresh_branch(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    branch = reader.string("branch")
    if not branch:
        raise ActionError("branch refresh requires a branch")
    stash = reader.boolean("stash")
    commit = reader.boolean("commit")
    if stash and commit:
        raise ActionError("stash and commit options are mutually exclusive")
    require_clean = reader.boolean("require_clean", True)
    remote = reader.string("remote", "origin")
    path = repository.path

    if env.dry_run:
        env.out(f"PLAN-REFRESH: {path} ({branch})")
        return

    rebase = False
    if not await env.repositories.check_clean_worktree(path):
        if stash:
            await run_git(env.git, path, "stash", "push", "--include-untracked")
        elif commit:
            await run_git(env.git, path, "add", "--all")
            message = f"chore: checkpoint before refreshing {branch}"
            await run_git(env.git, path, "commit", "-m", message)
            rebase = True
        elif require_clean:
            raise ActionError("repository worktree is not clean")

    await run_git(env.git, path, "fetch", "--prune", remote, environment=NON_INTERACTIVE)
    await run_git(env.git, path, "checkout", branch, environment=NON_INTERACTIVE)
    pull_mode = "--rebase" if rebase else "--ff-only"
    await run_git(env.git, path, "pull", pull_mode, remote, branch, environment=NON_INTERACTIVE)
    repository.current_branch = branch
    env.out(f"REFRESHED: {path} ({branch})")


# ---------------------------------------------------------------------------
# Branch change
# ---------------------------------------------------------------------------

_MISSING_BRANCH = (
    "did not match any file(s) known to git",
    "unknown revision or path not in the working tree",
    "not a valid reference",
    "invalid reference",
    "no such ref was found",
    "matches none of the refs",
)


def _summary(exc: CommandFailedError) -> str:
    lines = [line.strip() for line in exc.output.splitlines() if line.strip()]
    return lines[0] if lines else str(exc)


def _branch_missing(exc: CommandFailedError) -> bool:
    summary = _summary(exc).lower()
    return any(indicator in summary for indicator in _MISSING_BRANCH)


async def change_branch(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    """Switch to a branch, creating it when asked, then pull it.

    Without ``branch`` the repository's remote default branch is used, then
    ``default_branch``. Fetch and pull failures are reported and the switch
    still happens.
    """
    reader = OptionReader(options)
    branch = (
        reader.string("branch")
        or repository.remote_default_branch
        or reader.string("default_branch")
    )
    if not branch:
        raise ActionError("branch change requires a branch")
    explicit_remote = reader.string("remote")
    remote = explicit_remote or "origin"
    create = reader.boolean("create_if_missing")
    stash = reader.boolean("stash")
    commit = reader.boolean("commit")
    if stash and commit:
        raise ActionError("stash and commit options are mutually exclusive")
    refresh = reader.boolean("refresh") or stash or commit
    path = repository.path

    if env.dry_run:
        env.out(f"PLAN-SWITCH: {path} → {branch}")
        return

    remotes = (await run_git(env.git, path, "remote", environment=NON_INTERACTIVE)).split()
    remote_exists = remote in remotes
    fetch = bool(remotes) and (not explicit_remote or remote_exists)
    pull = fetch
    if fetch:
        arguments = ["fetch", "--prune", remote]
        if not explicit_remote and not remote_exists:
            arguments = ["fetch", "--all", "--prune"]
        try:
            await run_git(env.git, path, *arguments, environment=NON_INTERACTIVE)
        except CommandFailedError as exc:
            logger.warning("Fetch skipped for %s: %s", path, exc)
            env.out(f"FETCH-SKIP: {remote} ({_summary(exc)})")
            pull = False

    created = False
    try:
        await run_git(env.git, path, "switch", branch, environment=NON_INTERACTIVE)
    except CommandFailedError as exc:
        if not create or not _branch_missing(exc):
            raise ActionError(f"failed to switch to branch {branch!r}: {_summary(exc)}") from exc
        arguments = ["switch", "-c", branch]
        if remote_exists and fetch:
            arguments += ["--track", f"{remote}/{branch}"]
        try:
            await run_git(env.git, path, *arguments, environment=NON_INTERACTIVE)
        except CommandFailedError as create_exc:
            raise ActionError(
                f"failed to create branch {branch!r}: {_summary(create_exc)}"
            ) from create_exc
        created = True

    if pull:
        try:
            await run_git(env.git, path, "pull", "--rebase", environment=NON_INTERACTIVE)
        except CommandFailedError as exc:
            logger.warning("Pull skipped for %s: %s", path, exc)
            env.out(f"PULL-SKIP: {_summary(exc)}")

    repository.current_branch = branch
    env.out(f"SWITCHED: {path} → {branch}" + (" (created)" if created else ""))

    if refresh:
        await refresh_branch(
            env,
            repository,
            {
                "branch": branch,
                "remote": remote,
                "stash": stash,
                "commit": commit,
                "require_clean": reader.boolean("require_clean", True),
            },
        )
