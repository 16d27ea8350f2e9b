"""Exception taxonomy for gitfleet runs.

Fatal errors (configuration, validation, infrastructure) abort a run before or
during repository processing. Everything else is recorded per repository by
the executor and the run continues.
"""

from __future__ import annotations


class GitfleetError(Exception):
    """Base class for every error raised by gitfleet."""


class ConfigurationError(GitfleetError):
    """Malformed workflow document or unsupported command path."""


class ValidationError(ConfigurationError):
    """A step's or task's options failed shape validation."""


class TemplateError(ValidationError):
    """A template referenced an unknown field or could not be rendered."""


class InfrastructureError(GitfleetError):
    """Discovery or collaborator failure that aborts the whole run."""


class ExecutionCancelledError(InfrastructureError):
    """The run was cancelled before any repository was processed."""


class SafeguardViolation(GitfleetError):
    """A declared precondition did not hold for a repository."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CollaboratorError(GitfleetError):
    """A subprocess or HTTP call failed."""


class CommandFailedError(CollaboratorError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], exit_code: int, output: str) -> None:
        detail = output.strip() or f"exit code {exit_code}"
        super().__init__(f"{' '.join(command)} failed: {detail}")
        self.command = command
        self.exit_code = exit_code
        self.output = output


class RegistryAPIError(CollaboratorError):
    """The container registry API returned an unexpected response."""


class ActionError(GitfleetError):
    """An action's options or preconditions were not satisfied."""


class ActionSkipped(GitfleetError):
    """An action decided not to touch the repository (declined, nothing to do)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
