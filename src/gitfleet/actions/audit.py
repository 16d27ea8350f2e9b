"""Repository audit: one CSV row per repository, written when the run ends.

Rows describe how each checkout relates to its GitHub repository:

    folder_name,final_github_repo,name_matches,remote_default_branch,local_branch,
    in_sync,remote_protocol,origin_matches_canonical,worktree_dirty,dirty_files

Ternary columns hold ``yes``, ``no`` or ``n/a``. ``depth: minimal`` skips the
local branch and the fetch needed to decide ``in_sync``.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from gitfleet.collaborators.git import run_git
from gitfleet.collaborators.github import RemoteProtocol, detect_protocol, parse_owner_repository
from gitfleet.errors import ActionError, ActionSkipped, CollaboratorError, CommandFailedError
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

HEADER = [
    "folder_name",
    "final_github_repo",
    "name_matches",
    "remote_default_branch",
    "local_branch",
    "in_sync",
    "remote_protocol",
    "origin_matches_canonical",
    "worktree_dirty",
    "dirty_files",
]

YES, NO, NOT_APPLICABLE = "yes", "no", "n/a"
STDOUT = "stdout"
DEPTHS = ("full", "minimal")


def _ternary(value: bool) -> str:
    return YES if value else NO


@dataclass
class AuditReport:
    """Rows collected across a run for one destination."""

    destination: str
    rows: list[list[str]] = field(default_factory=list)

    def render(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(HEADER)
        writer.writerows(self.rows)
        return buffer.getvalue()

    def write(self, env: Environment) -> None:
        """Write the CSV to its file, or to the run's output for ``stdout``."""
        content = self.render()
        if self.destination == STDOUT:
            env.dependencies.output.write(content)
            return
        directory = os.path.dirname(self.destination)
        if directory:
            env.filesystem.mkdir_all(directory)
        env.filesystem.write_file(self.destination, content.encode(), 0o644)
        env.out(f"WORKFLOW-AUDIT: wrote report to {self.destination}")


def write_reports(env: Environment) -> None:
    for report in env.reports.values():
        report.write(env)
    env.reports.clear()


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


async def _default_branch_from_git(env: Environment, path: str) -> str:
    try:
        output = await run_git(env.git, path, "ls-remote", "--symref", "origin", "HEAD")
    except CommandFailedError:
        return ""
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "ref:" and parts[1].startswith("refs/heads/"):
            return parts[1].removeprefix("refs/heads/")
    return ""


async def _revision(env: Environment, path: str, ref: str) -> str:
    try:
        return (await run_git(env.git, path, "rev-parse", ref)).strip()
    except CommandFailedError:
        return ""


async def _in_sync(
    env: Environment,
    path: str,
    remote_default: str,
    local_branch: str,
    protocol: RemoteProtocol | None,
) -> str:
    if not remote_default or not local_branch or remote_default.lower() != local_branch.lower():
        return NOT_APPLICABLE
    # https remotes may prompt for credentials.
    if protocol not in (RemoteProtocol.GIT, RemoteProtocol.SSH):
        return NOT_APPLICABLE
    try:
        await run_git(
            env.git,
            path,
            "fetch",
            "-q",
            "--no-tags",
            "--no-recurse-submodules",
            "origin",
            remote_default,
            environment={"GIT_TERMINAL_PROMPT": "0"},
        )
    except CommandFailedError as exc:
        logger.info("Fetch for audit of %s failed: %s", path, exc)
        return NOT_APPLICABLE

    head = await _revision(env, path, "HEAD")
    if not head:
        return NOT_APPLICABLE
    try:
        upstream = await run_git(
            env.git, path, "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"
        )
    except CommandFailedError:
        upstream = ""
    remote = ""
    for ref in (upstream.strip(), f"origin/{remote_default}"):
        if ref:
            remote = await _revision(env, path, ref)
        if remote:
            break
    if not remote:
        return NOT_APPLICABLE
    return _ternary(head == remote)


async def inspect_repository(
    env: Environment, repository: RepositoryState, depth: str = "full"
) -> list[str]:
    """Build the audit row for ``repository``.

    Raises:
        ActionSkipped: origin does not point at GitHub.
    """
    path = repository.path
    folder = os.path.basename(path.rstrip(os.sep))
    origin_url = repository.remote_url or await env.repositories.get_remote_url(path, "origin")

    local_branch = ""
    if depth == "full":
        try:
            local_branch = (await env.repositories.get_current_branch(path)).strip()
        except CollaboratorError as exc:
            logger.warning("Could not read current branch of %s: %s", path, exc)
        if local_branch == "HEAD":
            local_branch = "DETACHED"

    status = await env.repositories.worktree_status(path)
    dirty_files = [line[3:].strip() if len(line) > 3 else line.strip() for line in status]
    dirty = [_ternary(bool(dirty_files)), "; ".join(dirty_files)]

    if not origin_url.strip():
        return [
            folder, "", YES, "", local_branch, NOT_APPLICABLE, "other", NOT_APPLICABLE, *dirty
        ]
    if "github.com" not in origin_url.lower():
        raise ActionSkipped("origin is not a GitHub remote")

    origin_slug = parse_owner_repository(origin_url)
    canonical = repository.canonical_full_name.strip()
    final = canonical or origin_slug
    remote_default = repository.remote_default_branch or await _default_branch_from_git(env, path)
    protocol = detect_protocol(origin_url)

    in_sync = NOT_APPLICABLE
    if depth == "full" and local_branch:
        in_sync = await _in_sync(env, path, remote_default, local_branch, protocol)

    if origin_slug and canonical:
        matches = _ternary(origin_slug.lower() == canonical.lower())
    else:
        matches = NOT_APPLICABLE

    return [
        folder,
        final,
        _ternary(final.rsplit("/", 1)[-1] == folder),
        remote_default,
        local_branch,
        in_sync,
        protocol.value if protocol else "other",
        matches,
        *dirty,
    ]


# ---------------------------------------------------------------------------
# Action
# ---------------------------------------------------------------------------


async def audit_report(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    destination = reader.string("output") or STDOUT
    depth = reader.string("depth", "full").lower()
    if depth not in DEPTHS:
        raise ActionError(f"unsupported audit depth: {depth}")

    if env.dry_run:
        env.out(f"PLAN-AUDIT: {repository.path} -> {destination}")
        return

    row = await inspect_repository(env, repository, depth)
    report = env.reports.setdefault(destination, AuditReport(destination))
    report.rows.append(row)
    logger.debug("Audited %s for %s", repository.path, destination)
