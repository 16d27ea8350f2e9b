"""Origin remote rewrites: canonical owner/repo and protocol conversion."""

from __future__ import annotations

import logging
from typing import Any

from gitfleet.collaborators.github import (
    RemoteProtocol,
    build_remote_url,
    detect_protocol,
    parse_owner_repository,
)
from gitfleet.errors import ActionError, ActionSkipped
from gitfleet.workflow.compiler import parse_protocol
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

ORIGIN = "origin"


async def update_to_canonical(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    """Point origin at the canonical owner/repo reported by GitHub."""
    reader = OptionReader(options)
    required_owner = reader.string("owner")
    path = repository.path

    current_url = repository.remote_url or await env.repositories.get_remote_url(path, ORIGIN)
    origin_slug = parse_owner_repository(current_url)
    if not origin_slug:
        raise ActionError(f"owner repository not detected for {path}")
    canonical = repository.full_name
    if not canonical:
        raise ActionError(f"canonical repository not resolved for {path}")

    if required_owner and canonical.split("/")[0].lower() != required_owner.lower():
        env.out(f"UPDATE-REMOTE-SKIP: {path} (owner mismatch)")
        raise ActionSkipped("owner mismatch")
    if origin_slug.lower() == canonical.lower():
        env.out(f"UPDATE-REMOTE-SKIP: {path} (already canonical)")
        raise ActionSkipped("already canonical")

    protocol = detect_protocol(current_url) or RemoteProtocol.HTTPS
    target_url = build_remote_url(protocol, canonical)

    if env.dry_run:
        env.out(f"PLAN-UPDATE-REMOTE: {path} origin {current_url} → {target_url}")
        return
    prompt = f"Update 'origin' in '{path}' to canonical ({origin_slug} → {canonical})? [a/N/y] "
    if not env.confirm(prompt):
        env.out(f"UPDATE-REMOTE-SKIP: {path} (user declined)")
        raise ActionSkipped("declined")

    await env.repositories.set_remote_url(path, ORIGIN, target_url)
    repository.remote_url = target_url
    env.out(f"UPDATE-REMOTE-DONE: {path} origin now {target_url}")


async def convert_protocol(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    """Rewrite origin from one URL protocol to another."""
    reader = OptionReader(options)
    source_value, target_value = reader.string("from"), reader.string("to")
    if not source_value or not target_value:
        raise ActionError("protocol conversion requires 'from' and 'to'")
    source, target = parse_protocol(source_value), parse_protocol(target_value)
    if source == target:
        raise ActionError("protocol conversion requires distinct source and target protocols")
    path = repository.path

    current_url = repository.remote_url or await env.repositories.get_remote_url(path, ORIGIN)
    if detect_protocol(current_url) != source:
        env.out(f"CONVERT-SKIP: {path} origin does not use {source}")
        raise ActionSkipped(f"origin does not use {source}")

    slug = repository.full_name or parse_owner_repository(current_url)
    if not slug:
        raise ActionError(f"cannot derive owner/repo for protocol conversion in {path}")
    target_url = build_remote_url(target, slug)

    if env.dry_run:
        env.out(f"PLAN-CONVERT: {path} origin {current_url} → {target_url}")
        return
    if not env.confirm(f"Convert 'origin' in '{path}' ({source} → {target})? [a/N/y] "):
        env.out(f"CONVERT-SKIP: user declined for {path}")
        raise ActionSkipped("declined")

    await env.repositories.set_remote_url(path, ORIGIN, target_url)
    repository.remote_url = target_url
    env.out(f"CONVERT-DONE: {path} origin now {target_url}")
