"""Compile a Configuration into ordered operation nodes.

Each step's command parts are joined into a key (``"tasks apply"``) and looked
up in a fixed dispatch table. Unknown keys are a compile-time error. Nodes
are returned in dependency order; see build_operations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from gitfleet.collaborators.github import RemoteProtocol
from gitfleet.errors import ActionError, ConfigurationError, ValidationError
from gitfleet.workflow.config import Configuration
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.registry import Registry
from gitfleet.workflow.tasks import TaskDefinition, parse_task_definitions

logger = logging.getLogger(__name__)


def parse_protocol(value: str) -> RemoteProtocol:
    try:
        return RemoteProtocol(value.strip().lower())
    except ValueError:
        raise ValidationError(f"unsupported protocol value: {value}") from None


# ---------------------------------------------------------------------------
# Operations (closed sum type; the executor matches every variant)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskOperation:
    tasks: list[TaskDefinition]


@dataclass(frozen=True)
class RenameOperation:
    include_owner: bool = False
    require_clean: bool = True


@dataclass(frozen=True)
class ProtocolConversionOperation:
    source: RemoteProtocol
    target: RemoteProtocol


@dataclass(frozen=True)
class CanonicalRemoteOperation:
    owner: str = ""


@dataclass(frozen=True)
class AuditReportOperation:
    output: str = ""
    depth: str = "full"


Operation = (
    TaskOperation
    | RenameOperation
    | ProtocolConversionOperation
    | CanonicalRemoteOperation
    | AuditReportOperation
)


@dataclass
class OperationNode:
    name: str
    operation: Operation
    command: str = ""
    dependencies: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Step builders
# ---------------------------------------------------------------------------


def _build_tasks(options: dict[str, Any]) -> Operation:
    return TaskOperation(tasks=parse_task_definitions(options))


def _build_rename(options: dict[str, Any]) -> Operation:
    reader = OptionReader(options)
    return RenameOperation(
        include_owner=reader.boolean("include_owner"),
        require_clean=reader.boolean("require_clean", True),
    )


def _build_protocol(options: dict[str, Any]) -> Operation:
    reader = OptionReader(options)
    source, target = reader.string("from"), reader.string("to")
    if not source or not target:
        raise ValidationError(
            "repo remote update-protocol step requires 'from' and 'to' protocols"
        )
    source_protocol, target_protocol = parse_protocol(source), parse_protocol(target)
    if source_protocol == target_protocol:
        raise ValidationError(
            "repo remote update-protocol step requires distinct source and target protocols"
        )
    return ProtocolConversionOperation(source=source_protocol, target=target_protocol)


def _build_canonical(options: dict[str, Any]) -> Operation:
    return CanonicalRemoteOperation(owner=OptionReader(options).string("owner"))


def _build_audit(options: dict[str, Any]) -> Operation:
    reader = OptionReader(options)
    depth = reader.string("depth", "full").lower()
    if depth not in ("full", "minimal"):
        raise ValidationError(f"unsupported audit depth: {depth}")
    return AuditReportOperation(output=reader.string("output"), depth=depth)


_BUILDERS: dict[str, Callable[[dict[str, Any]], Operation]] = {
    "tasks apply": _build_tasks,
    "folder rename": _build_rename,
    "remote update-protocol": _build_protocol,
    "remote update-to-canonical": _build_canonical,
    "audit report": _build_audit,
}


def command_key(parts: list[str]) -> str:
    return " ".join(part.strip().lower() for part in parts if part.strip())


def _lookup_builder(key: str) -> Callable[[dict[str, Any]], Operation]:
    builder = _BUILDERS.get(key)
    if builder is None and key.startswith("repo "):
        # Older workflows prefix every command with "repo".
        builder = _BUILDERS.get(key.removeprefix("repo "))
    if builder is None:
        raise ConfigurationError(f"unsupported workflow command: {key}")
    return builder


def _check_action_types(operation: Operation, registry: Registry) -> None:
    if not isinstance(operation, TaskOperation):
        return
    for task in operation.tasks:
        for action in task.actions:
            registry.lookup(action.type)


def _dependencies(name: str, after: list[str] | None, previous: str) -> list[str]:
    if after is None:
        return [previous] if previous else []
    dependencies: list[str] = []
    for entry in after:
        entry = entry.strip()
        if not entry or entry in dependencies:
            continue
        if entry == name:
            raise ConfigurationError(f"workflow step {name!r} cannot depend on itself")
        dependencies.append(entry)
    return dependencies


def order_operations(nodes: list[OperationNode]) -> list[OperationNode]:
    """Order nodes so each runs after its dependencies.

    Nodes become ready in stages; within a stage declaration order is kept.
    """
    by_name = {node.name: node for node in nodes}
    waiting = {node.name: len(node.dependencies) for node in nodes}
    dependents: dict[str, list[str]] = {}
    for node in nodes:
        for dependency in node.dependencies:
            if dependency not in by_name:
                raise ConfigurationError(
                    f"workflow step {node.name!r} depends on unknown step {dependency!r}"
                )
            dependents.setdefault(dependency, []).append(node.name)

    ordered: list[OperationNode] = []
    ready = [node for node in nodes if not node.dependencies]
    while ready:
        ordered.extend(ready)
        released = set()
        for node in ready:
            for name in dependents.get(node.name, []):
                waiting[name] -= 1
                if waiting[name] == 0:
                    released.add(name)
        ready = [node for node in nodes if node.name in released]

    if len(ordered) != len(nodes):
        raise ConfigurationError("workflow operations contain cycle")
    return ordered


def build_operations(
    configuration: Configuration, registry: Registry | None = None
) -> list[OperationNode]:
    """Compile steps into nodes ordered by their ``after`` dependencies.

    Steps without ``after`` follow the step declared before them, so a
    workflow without any ``after`` runs in declaration order. When
    ``registry`` is given, task action types are checked against it so an
    unknown type fails before any repository is touched.
    """
    nodes: list[OperationNode] = []
    seen: set[str] = set()
    previous = ""
    for index, step in enumerate(configuration.steps):
        key = command_key(step.command)
        builder = _lookup_builder(key)
        try:
            operation = builder(step.options)
            if registry is not None:
                _check_action_types(operation, registry)
        except (ValidationError, ActionError) as exc:
            raise ValidationError(f"step {step.name or key}: {exc}") from exc

        name = step.name or f"{key}-{index}"
        if name in seen:
            raise ConfigurationError(f"duplicate step name: {name}")
        seen.add(name)
        nodes.append(
            OperationNode(
                name=name,
                operation=operation,
                command=key,
                dependencies=_dependencies(name, step.after, previous),
            )
        )
        previous = name
        logger.debug("Compiled step %s (%s)", name, key)
    return order_operations(nodes)
