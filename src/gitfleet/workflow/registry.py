"""Action registry: action-type string to async handler."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from gitfleet.errors import ActionError

if TYPE_CHECKING:
    from gitfleet.workflow.state import Environment, RepositoryState

ActionHandler = Callable[["Environment", "RepositoryState", dict[str, Any]], Awaitable[None]]


def normalize_type(action_type: str) -> str:
    return action_type.strip().lower()


@dataclass(frozen=True)
class RegisteredAction:
    type: str
    handler: ActionHandler
    # Handler prompts per repository itself; no task-level prompt needed.
    confirms: bool = False


@dataclass
class Registry:
    """Built once at start-up and passed to the executor; read-only afterwards."""

    _actions: dict[str, RegisteredAction] = field(default_factory=dict)

    def register(self, action_type: str, handler: ActionHandler, *, confirms: bool = False) -> None:
        normalized = normalize_type(action_type)
        if not normalized:
            raise ValueError("action type must not be empty")
        if normalized in self._actions:
            raise ValueError(f"action type already registered: {normalized}")
        self._actions[normalized] = RegisteredAction(normalized, handler, confirms)

    def lookup(self, action_type: str) -> RegisteredAction:
        entry = self._actions.get(normalize_type(action_type))
        if entry is None:
            raise ActionError(f"unknown action type: {action_type}")
        return entry

    def __contains__(self, action_type: str) -> bool:
        return normalize_type(action_type) in self._actions

    def types(self) -> list[str]:
        return sorted(self._actions)
