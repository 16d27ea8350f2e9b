"""Placeholder rendering for task and option strings.

Supports ``{{ .Repository.<Field> }}`` and ``{{ .Environment.<key> }}``.
Rendering is done per repository at the point a value is consumed.
"""

from __future__ import annotations

import re
from typing import Any

from gitfleet.errors import TemplateError
from gitfleet.workflow.state import RepositoryState

_PLACEHOLDER = re.compile(r"\{\{\s*\.([A-Za-z][A-Za-z0-9_.-]*)\s*\}\}")

REPOSITORY_FIELDS = (
    "Name",
    "Owner",
    "FullName",
    "DefaultBranch",
    "Path",
    "PathDepth",
    "CurrentBranch",
    "InitialClean",
    "HasNestedRepositories",
)


def build_context(repository: RepositoryState, variables: dict[str, str]) -> dict[str, Any]:
    """Template data for one repository."""
    return {
        "Repository": {
            "Name": repository.name,
            "Owner": repository.owner,
            "FullName": repository.full_name,
            "DefaultBranch": repository.default_branch,
            "Path": repository.path,
            "PathDepth": repository.path_depth,
            "CurrentBranch": repository.current_branch,
            "InitialClean": bool(repository.initial_clean),
            "HasNestedRepositories": repository.has_nested_repositories,
        },
        "Environment": dict(variables),
    }


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render(template: str, context: dict[str, Any]) -> str:
    """Expand every placeholder in ``template``."""

    def _replacer(m: re.Match) -> str:
        root, _, rest = m.group(1).partition(".")
        if root == "Environment" and rest:
            return _format(context.get("Environment", {}).get(rest, ""))
        if root == "Repository" and rest in REPOSITORY_FIELDS:
            return _format(context.get("Repository", {}).get(rest, ""))
        raise TemplateError(f"template references unknown field .{m.group(1)}")

    return _PLACEHOLDER.sub(_replacer, template)


def render_value(value: Any, context: dict[str, Any]) -> Any:
    """Render string leaves of a nested option tree."""
    if isinstance(value, str):
        return render(value, context)
    if isinstance(value, dict):
        return {key: render_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, context) for item in value]
    return value
