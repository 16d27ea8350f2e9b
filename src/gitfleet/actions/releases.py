"""Annotated release tags: create and push, or move existing tags to new commits."""

from __future__ import annotations

import logging
from typing import Any

from gitfleet.collaborators.git import ref_exists, run_git
from gitfleet.errors import ActionError, CommandFailedError
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

NON_INTERACTIVE = {"GIT_TERMINAL_PROMPT": "0"}


async def _git(env: Environment, path: str, *arguments: str) -> str:
    return await run_git(env.git, path, *arguments, environment=NON_INTERACTIVE)


async def release_tag(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    tag = reader.string("tag")
    if not tag:
        raise ActionError("release action requires 'tag'")
    message = reader.string("message") or f"Release {tag}"
    remote = reader.string("remote", "origin")
    path = repository.path

    if env.dry_run:
        env.out(f"PLAN-RELEASE: {path} -> {tag} ({remote})")
        return

    try:
        await _git(env, path, "tag", "-a", tag, "-m", message)
    except CommandFailedError as exc:
        raise ActionError(f"failed to create tag {tag!r}: {exc}") from exc
    try:
        await _git(env, path, "push", remote, tag)
    except CommandFailedError as exc:
        raise ActionError(f"failed to push tag {tag!r} to {remote}: {exc}") from exc
    env.out(f"RELEASED: {path} -> {tag}")


def _retag_mappings(reader: OptionReader) -> list[tuple[str, str, str]]:
    entries = reader.mapping_list("mappings")
    if not entries and ("tag" in reader or "target" in reader):
        entries = [{"tag": reader.raw("tag"), "target": reader.raw("target")}]
    if not entries:
        raise ActionError("retag requires at least one mapping")

    mappings = []
    for entry in entries:
        item = OptionReader(entry)
        tag, target = item.string("tag"), item.string("target")
        if not tag:
            raise ActionError("retag mapping requires 'tag'")
        if not target:
            raise ActionError(f"target reference required for tag {tag}")
        mappings.append((tag, target, item.string("message") or f"Retag {tag} to {target}"))
    return mappings


async def retag_release(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    """Point each ``tag`` at ``target`` again and force-push it.

    All targets are resolved before any tag is touched.
    """
    reader = OptionReader(options)
    mappings = _retag_mappings(reader)
    remote = reader.string("remote", "origin")
    path = repository.path

    for tag, target, _ in mappings:
        try:
            await _git(env, path, "rev-parse", "--verify", target)
        except CommandFailedError as exc:
            raise ActionError(f"failed to resolve {target!r} for tag {tag!r}") from exc

    if env.dry_run:
        for tag, target, _ in mappings:
            env.out(f"PLAN-RETAG: {path} {tag} -> {target}")
        return

    for tag, target, message in mappings:
        if await ref_exists(env.git, path, f"refs/tags/{tag}"):
            await _git(env, path, "tag", "-d", tag)
        else:
            logger.info("Tag %s does not exist yet in %s", tag, path)
        await _git(env, path, "tag", "-a", tag, target, "-m", message)
        try:
            await _git(env, path, "push", "--force", remote, tag)
        except CommandFailedError as exc:
            raise ActionError(f"failed to push tag {tag!r} to {remote}: {exc}") from exc
        env.out(f"RETAGGED: {path} {tag} -> {target}")
