"""Declarative per-repository preconditions.

Supported keys: ``require_clean`` (bool, or a map with ``enabled`` and
``ignore_dirty_paths``), ``require_changes``, ``branch``, ``branch_in``, and
``paths`` / ``file_exists``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from typing import Any

from gitfleet.errors import ValidationError
from gitfleet.workflow.options import OptionReader, normalize_keys
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

MAX_STATUS_ENTRIES = 5


def split_safeguards(
    raw: dict[str, Any] | None, *, default_soft: bool = False
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return ``(hard_stop, soft_skip)``; a flat map goes to the default side."""
    values = normalize_keys(raw)
    if not values:
        return {}, {}
    if "hard_stop" in values or "soft_skip" in values:
        hard = values.get("hard_stop") or {}
        soft = values.get("soft_skip") or {}
        if not isinstance(hard, dict) or not isinstance(soft, dict):
            raise ValidationError("safeguards hard_stop and soft_skip must be mappings")
        return normalize_keys(hard), normalize_keys(soft)
    if default_soft:
        return {}, values
    return values, {}


def _require_clean_directive(values: dict[str, Any]) -> tuple[bool, list[str]]:
    raw = values.get("require_clean")
    if raw is None:
        return False, []
    if isinstance(raw, dict):
        reader = OptionReader(raw)
        return reader.boolean("enabled", True), reader.string_list("ignore_dirty_paths")
    enabled = OptionReader(values).boolean("require_clean")
    return enabled, OptionReader(values).string_list("ignore_dirty_paths")


def _status_path(entry: str) -> str:
    # Porcelain lines are "XY path" or "XY old -> new".
    path = entry[3:] if len(entry) > 3 else entry.strip()
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return path.strip().strip('"')


def _filter_ignored(entries: list[str], patterns: list[str]) -> list[str]:
    if not patterns:
        return entries
    kept = []
    for entry in entries:
        path = _status_path(entry)
        if any(
            fnmatch.fnmatch(path, pattern) or path.startswith(pattern.rstrip("/") + "/")
            for pattern in patterns
        ):
            continue
        kept.append(entry)
    return kept


async def evaluate_safeguards(
    env: Environment, repository: RepositoryState, raw: dict[str, Any] | None
) -> tuple[bool, str]:
    """Check every declared safeguard; returns ``(passed, reason)``."""
    values = normalize_keys(raw)
    if not values:
        return True, ""
    reader = OptionReader(values)
    path = repository.path

    require_clean, ignored = _require_clean_directive(values)
    if require_clean:
        entries = _filter_ignored(await env.repositories.worktree_status(path), ignored)
        if entries:
            shown = [entry.strip() for entry in entries[:MAX_STATUS_ENTRIES]]
            reason = f"repository not clean: {', '.join(shown)}"
            if len(entries) > MAX_STATUS_ENTRIES:
                reason = f"{reason} (+{len(entries) - MAX_STATUS_ENTRIES} more)"
            return False, reason

    if reader.boolean("require_changes"):
        if not await env.repositories.worktree_status(path):
            return False, "requires changes"

    required_branch = reader.string("branch")
    allowed_branches = reader.string_list("branch_in")
    if required_branch or allowed_branches:
        current = (await env.repositories.get_current_branch(path)).strip()
        if required_branch and current != required_branch:
            return False, f"requires branch {required_branch}"
        if allowed_branches and current not in allowed_branches:
            return False, f"requires branch in {', '.join(allowed_branches)}"

    for relative in reader.string_list("paths") + reader.string_list("file_exists"):
        if not env.filesystem.exists(os.path.join(path, relative)):
            return False, f"missing required path {relative}"

    logger.debug("Safeguards passed for %s", path)
    return True, ""
