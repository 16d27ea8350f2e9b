"""Workflow variables from ``--var`` assignments and ``--var-file`` documents."""

from __future__ import annotations

import re
from pathlib import Path

import yaml

from gitfleet.errors import ConfigurationError

_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ConfigurationError("variable name must not be empty")
    if not _NAME.match(name):
        raise ConfigurationError(f"invalid variable name: {name}")
    return name


def parse_variable_assignments(assignments: list[str]) -> dict[str, str]:
    """Parse ``key=value`` strings; later assignments win."""
    variables: dict[str, str] = {}
    for assignment in assignments:
        name, separator, value = assignment.partition("=")
        if not separator:
            raise ConfigurationError(f"variable assignment must be key=value: {assignment}")
        variables[_check_name(name)] = value.strip()
    return variables


def load_variable_file(path: Path) -> dict[str, str]:
    """Load a YAML mapping of variable names to scalar values."""
    try:
        raw = yaml.safe_load(path.read_text())
    except OSError as exc:
        raise ConfigurationError(f"failed to read variable file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse variable file {path}: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"variable file {path} must contain a mapping")

    variables: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, dict | list):
            raise ConfigurationError(f"variable {key} must be a scalar")
        if isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = "" if value is None else str(value)
        variables[_check_name(str(key))] = text.strip()
    return variables


def resolve_variables(files: list[Path], assignments: list[str]) -> dict[str, str]:
    """Merge variable files in order, then command-line assignments on top."""
    variables: dict[str, str] = {}
    for path in files:
        variables.update(load_variable_file(path))
    variables.update(parse_variable_assignments(assignments))
    return variables
