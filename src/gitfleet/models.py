"""Data models for gitfleet runs."""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field


class RepositoryStatus(enum.StrEnum):
    """Final disposition of one repository in a run."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RuntimeOptions(BaseModel):
    """Per-run switches supplied by the command layer."""

    dry_run: bool = False
    assume_yes: bool = False
    capture_initial_worktree_status: bool = False
    include_nested_repositories: bool = False
    process_repositories_by_descending_depth: bool = False
    skip_repository_metadata: bool = False
    variables: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class CommandDetails(BaseModel):
    """A single git or gh invocation."""

    arguments: list[str]
    working_directory: str = ""
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: int = 600


class ExecutionResult(BaseModel):
    """Captured result of a finished command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0


class RepositoryMetadata(BaseModel):
    """Metadata reported by the GitHub CLI for one repository."""

    name_with_owner: str
    default_branch: str = ""
    is_in_organization: bool = False


class ConfirmationResult(BaseModel):
    """Answer to a confirmation prompt."""

    confirmed: bool = False
    apply_to_all: bool = False


class SkipRecord(BaseModel):
    """A task or action skipped for a repository."""

    repository: str
    node: str
    reason: str


class FailureRecord(BaseModel):
    """A per-repository failure; the run continued past it."""

    repository: str
    node: str
    message: str


class ExecutionOutcome(BaseModel):
    """Summary of a workflow run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    skips: list[SkipRecord] = Field(default_factory=list)
    failures: list[FailureRecord] = Field(default_factory=list)
    cancelled: bool = False

    def record(self, status: RepositoryStatus) -> None:
        if status is RepositoryStatus.FAILED:
            self.failed += 1
        elif status is RepositoryStatus.SKIPPED:
            self.skipped += 1
        else:
            self.processed += 1
