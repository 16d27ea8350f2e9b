"""Task definitions for the ``tasks apply`` step.

Parsing turns raw option maps into TaskDefinition models; TasksApplyDefinition
goes the other way so commands can build a ``tasks apply`` step in code and
feed it through the same compiler path as YAML.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field

from gitfleet.errors import ValidationError
from gitfleet.workflow.options import OptionReader, normalize_keys

DEFAULT_PUSH_REMOTE = "origin"
DEFAULT_COMMIT_MESSAGE = "Apply task"
DEFAULT_PERMISSIONS = 0o644


class TaskFileMode(enum.StrEnum):
    OVERWRITE = "overwrite"
    SKIP_IF_EXISTS = "skip-if-exists"
    APPEND_IF_MISSING = "append-if-missing"


class TaskBranchDefinition(BaseModel):
    name_template: str = ""
    start_point_template: str = ""
    push_remote: str = DEFAULT_PUSH_REMOTE


class TaskFileDefinition(BaseModel):
    path_template: str
    content_template: str = ""
    mode: TaskFileMode = TaskFileMode.OVERWRITE
    permissions: int = DEFAULT_PERMISSIONS


class TaskActionDefinition(BaseModel):
    type: str
    options: dict[str, Any] = Field(default_factory=dict)


class TaskDefinition(BaseModel):
    name: str
    ensure_clean: bool = True
    ensure_clean_variable: str = ""
    branch: TaskBranchDefinition = Field(default_factory=TaskBranchDefinition)
    files: list[TaskFileDefinition] = Field(default_factory=list)
    commit_message_template: str = DEFAULT_COMMIT_MESSAGE
    actions: list[TaskActionDefinition] = Field(default_factory=list)
    safeguards: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_permissions(raw: Any) -> int:
    if raw is None or raw == "":
        return DEFAULT_PERMISSIONS
    if isinstance(raw, bool):
        raise ValidationError("file permissions must be an octal number")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip().lower().removeprefix("0o")
        try:
            return int(text, 8)
        except ValueError:
            pass
    raise ValidationError(f"invalid file permissions: {raw!r}")


def _parse_file(raw: dict[str, Any], task_name: str) -> TaskFileDefinition:
    reader = OptionReader(raw)
    path = reader.string("path")
    if not path:
        raise ValidationError(f"task {task_name} file entry requires a path")
    mode_value = reader.string("mode", TaskFileMode.OVERWRITE.value).lower()
    try:
        mode = TaskFileMode(mode_value)
    except ValueError:
        raise ValidationError(f"unsupported file mode: {mode_value}") from None
    content = reader.raw("content")
    if content is not None and not isinstance(content, str):
        raise ValidationError(f"task {task_name} file {path} content must be a string")
    return TaskFileDefinition(
        path_template=path,
        content_template=content or "",
        mode=mode,
        permissions=_parse_permissions(reader.raw("permissions")),
    )


def _parse_action(raw: dict[str, Any], task_name: str) -> TaskActionDefinition:
    reader = OptionReader(raw)
    action_type = reader.string("type").lower()
    if not action_type:
        raise ValidationError(f"task {task_name} action requires a type")
    options = reader.mapping("options")
    return TaskActionDefinition(type=action_type, options=normalize_keys(options))


def parse_task_definition(raw: dict[str, Any]) -> TaskDefinition:
    """Build one TaskDefinition from its raw option map."""
    reader = OptionReader(raw)
    name = reader.string("name")
    if not name:
        raise ValidationError("task name must be provided")

    branch_reader = OptionReader(reader.mapping("branch"))
    branch = TaskBranchDefinition(
        name_template=branch_reader.string("name"),
        start_point_template=branch_reader.string("start_point"),
        push_remote=branch_reader.string("push_remote", DEFAULT_PUSH_REMOTE),
    )

    files = [_parse_file(entry, name) for entry in reader.mapping_list("files")]
    actions = [_parse_action(entry, name) for entry in reader.mapping_list("actions")]
    if not files and not actions:
        raise ValidationError(f"task {name} must define at least one file or action")

    commit_message = reader.string("commit_message", DEFAULT_COMMIT_MESSAGE)
    return TaskDefinition(
        name=name,
        ensure_clean=reader.boolean("ensure_clean", True),
        ensure_clean_variable=reader.string("ensure_clean_variable"),
        branch=branch,
        files=files,
        commit_message_template=commit_message,
        actions=actions,
        safeguards=normalize_keys(reader.mapping("safeguards")),
    )


def parse_task_definitions(options: dict[str, Any]) -> list[TaskDefinition]:
    entries = OptionReader(options).mapping_list("tasks")
    if not entries:
        raise ValidationError("tasks apply step requires at least one task entry")
    return [parse_task_definition(entry) for entry in entries]


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TasksApplyDefinition(BaseModel):
    """Programmatic form of a ``tasks apply`` step."""

    tasks: list[TaskDefinition]

    def options(self) -> dict[str, Any]:
        return {"tasks": [_task_options(task) for task in self.tasks]}


def _task_options(task: TaskDefinition) -> dict[str, Any]:
    entry: dict[str, Any] = {"name": task.name}
    if not task.ensure_clean:
        entry["ensure_clean"] = False
    if task.ensure_clean_variable:
        entry["ensure_clean_variable"] = task.ensure_clean_variable

    branch: dict[str, Any] = {}
    if task.branch.name_template:
        branch["name"] = task.branch.name_template
    if task.branch.start_point_template:
        branch["start_point"] = task.branch.start_point_template
    if task.branch.push_remote and task.branch.push_remote != DEFAULT_PUSH_REMOTE:
        branch["push_remote"] = task.branch.push_remote
    if branch:
        entry["branch"] = branch

    if task.files:
        entry["files"] = [
            {
                "path": item.path_template,
                "content": item.content_template,
                "mode": item.mode.value,
                "permissions": item.permissions,
            }
            for item in task.files
        ]

    if task.actions:
        actions = []
        for action in task.actions:
            serialized: dict[str, Any] = {"type": action.type}
            if action.options:
                serialized["options"] = dict(action.options)
            actions.append(serialized)
        entry["actions"] = actions

    if task.safeguards:
        entry["safeguards"] = dict(task.safeguards)

    entry["commit_message"] = task.commit_message_template
    return entry
