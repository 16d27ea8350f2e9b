"""Rewrite a package namespace across Python sources and packaging files.

``old`` and ``new`` are slash-separated namespaces such as ``acme/widgets``.
Import statements use the dotted form (``acme.widgets``); packaging metadata
(pyproject.toml, setup.cfg, setup.py, requirements files) is rewritten on the
slash form, which is how VCS dependency URLs spell it.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gitfleet.collaborators.git import ref_exists, run_git
from gitfleet.errors import ActionError, ActionSkipped
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState
from gitfleet.workflow.task_runner import sanitize_branch_name

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "namespace-rewrite"
PACKAGING_FILES = ("pyproject.toml", "setup.cfg", "setup.py")
SKIP_DIRS = {".git", ".venv", "venv", "node_modules", "__pycache__", ".tox", "build", "dist"}


@dataclass
class NamespaceRewrite:
    old: str
    new: str

    @property
    def old_module(self) -> str:
        return self.old.replace("/", ".").replace("-", "_")

    @property
    def new_module(self) -> str:
        return self.new.replace("/", ".").replace("-", "_")

    def _import_pattern(self) -> re.Pattern[str]:
        module = re.escape(self.old_module)
        return re.compile(rf"^(\s*(?:from|import)\s+){module}(?=[.\s,;]|$)", re.MULTILINE)

    def rewrite_source(self, text: str) -> str:
        return self._import_pattern().sub(lambda m: m.group(1) + self.new_module, text)

    def rewrite_packaging(self, text: str) -> str:
        return text.replace(self.old, self.new)


def _validate_prefix(value: str, key: str) -> str:
    value = value.strip().strip("/")
    if "/" not in value:
        raise ActionError(f"namespace {key} prefix must contain '/': {value!r}")
    return value


def _is_packaging_file(name: str) -> bool:
    return name in PACKAGING_FILES or (name.startswith("requirements") and name.endswith(".txt"))


def plan_rewrite(root: str, rewrite: NamespaceRewrite) -> dict[str, str]:
    """Map relative path to rewritten text for every file that changes."""
    changes: dict[str, str] = {}
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            if _is_packaging_file(filename):
                transform = rewrite.rewrite_packaging
            elif filename.endswith(".py"):
                transform = rewrite.rewrite_source
            else:
                continue
            absolute = Path(current) / filename
            try:
                original = absolute.read_text()
            except UnicodeDecodeError:
                logger.debug("Skipping undecodable file %s", absolute)
                continue
            updated = transform(original)
            if updated != original:
                changes[absolute.relative_to(root).as_posix()] = updated
    return changes


async def rewrite_namespace(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    old = _validate_prefix(reader.string("old"), "old")
    new = _validate_prefix(reader.string("new"), "new")
    if old == new:
        raise ActionError("namespace old and new prefixes must differ")
    branch_prefix = (
        reader.string("branch_prefix") or reader.string("branch-prefix") or DEFAULT_BRANCH_PREFIX
    )
    push = reader.boolean("push", True)
    remote = reader.string("remote", "origin")
    commit_message = reader.string("commit_message") or f"chore(namespace): rewrite {old} -> {new}"
    path = repository.path

    rewrite = NamespaceRewrite(old=old, new=new)
    changes = plan_rewrite(path, rewrite)
    if not changes:
        env.out(f"NAMESPACE-NOOP: {path} reason=no references")
        raise ActionSkipped("no references")
    if env.dry_run:
        env.out(f"NAMESPACE-PLAN: {path} files={len(changes)}")
        for relative in sorted(changes):
            env.out(f"NAMESPACE-PLAN: {path} file={relative}")
        return

    if not await env.repositories.check_clean_worktree(path):
        env.out(f"NAMESPACE-SKIP: {path} reason=dirty worktree")
        raise ActionSkipped("dirty worktree")
    branch = f"{branch_prefix}/{sanitize_branch_name(new)}"
    if await ref_exists(env.git, path, branch):
        env.out(f"NAMESPACE-SKIP: {path} reason=branch exists {branch}")
        raise ActionSkipped("branch exists")
    if not env.confirm(f"Rewrite namespace {old} -> {new} in {path}? [a/N/y] "):
        env.out(f"NAMESPACE-SKIP: {path} reason=user declined")
        raise ActionSkipped("declined")

    original_branch = (await env.repositories.get_current_branch(path)).strip()
    await run_git(env.git, path, "checkout", "-b", branch)
    try:
        for relative, text in sorted(changes.items()):
            absolute = os.path.join(path, *relative.split("/"))
            mode = env.filesystem.stat(absolute).st_mode & 0o777
            env.filesystem.write_file(absolute, text.encode(), mode)
            await run_git(env.git, path, "add", relative)
        await run_git(env.git, path, "commit", "-m", commit_message)

        pushed = False
        if push and await env.repositories.get_remote_url(path, remote):
            await run_git(env.git, path, "push", "--set-upstream", remote, branch)
            pushed = True
        elif push:
            logger.info("Remote %s not configured for %s; branch left local", remote, path)
    finally:
        if original_branch and original_branch != "HEAD":
            await run_git(env.git, path, "checkout", original_branch)

    push_flag = "true" if pushed else "false"
    env.out(f"NAMESPACE-APPLY: {path} branch={branch} files={len(changes)} push={push_flag}")
