"""Workflow configuration documents.

A workflow is YAML with a top-level ``workflow`` list of steps:

    workflow:
      - step:
          name: normalize
          command: ["folder", "rename"]
          with:
            include_owner: false

``with`` is kept as an untyped tree; the compiler interprets it. ``after``
names steps that must run first; without it a step follows the one declared
before it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from gitfleet.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StepConfiguration(BaseModel):
    """One ``step`` body. ``with`` holds the step's options."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    command: list[str]
    options: dict[str, Any] = Field(default_factory=dict, alias="with")
    # None means "after the previous step"; an empty list means "no dependencies".
    after: list[str] | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise ValueError("command must be a list of strings or a string")
        parts: list[str] = []
        for part in value:
            if not isinstance(part, str):
                raise ValueError("command entries must be strings")
            parts.extend(part.split())
        if not parts:
            raise ValueError("command must not be empty")
        return parts

    @field_validator("options", mode="before")
    @classmethod
    def _default_options(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("after", mode="before")
    @classmethod
    def _after_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class Configuration(BaseModel):
    steps: list[StepConfiguration] = Field(default_factory=list)


class WorkflowEntry(BaseModel):
    step: StepConfiguration


class WorkflowDocument(BaseModel):
    workflow: list[WorkflowEntry]


def _describe(exc: pydantic.ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"]) or "document"
    return f"{location}: {error['msg']}"


def parse_configuration(document: bytes | str) -> Configuration:
    """Parse a YAML workflow document into an ordered Configuration."""
    try:
        raw = yaml.safe_load(document)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse workflow configuration: {exc}") from exc

    try:
        parsed = WorkflowDocument.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"invalid workflow configuration: {_describe(exc)}") from exc
    if not parsed.workflow:
        raise ConfigurationError("workflow configuration must define at least one step")

    steps = [entry.step for entry in parsed.workflow]
    logger.debug("Parsed workflow with %d step(s)", len(steps))
    return Configuration(steps=steps)


def load_configuration(path: Path) -> Configuration:
    """Read and parse a workflow file."""
    try:
        document = path.read_text()
    except OSError as exc:
        raise ConfigurationError(f"failed to read workflow configuration {path}: {exc}") from exc
    return parse_configuration(document)
