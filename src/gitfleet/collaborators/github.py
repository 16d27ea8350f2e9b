"""GitHub CLI (``gh``) queries."""

from __future__ import annotations

import enum
import json
import logging

from gitfleet.collaborators.base import GitExecutor
from gitfleet.errors import CollaboratorError
from gitfleet.models import CommandDetails, RepositoryMetadata

logger = logging.getLogger(__name__)


class GitHubCLIClient:
    def __init__(self, git: GitExecutor) -> None:
        self.git = git

    async def _json(self, arguments: list[str], working_directory: str = "") -> object:
        result = await self.git.execute_github_cli(
            CommandDetails(arguments=arguments, working_directory=working_directory)
        )
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as exc:
            raise CollaboratorError(f"gh {arguments[0]} {arguments[1]}: invalid JSON: {exc}") from exc

    async def resolve_repo_metadata(self, full_name: str) -> RepositoryMetadata:
        """Resolve canonical name and default branch via ``gh repo view``."""
        full_name = full_name.strip()
        if not full_name:
            raise CollaboratorError("repository must be provided")
        payload = await self._json(
            [
                "repo",
                "view",
                full_name,
                "--json",
                "nameWithOwner,defaultBranchRef,isInOrganization",
            ]
        )
        if not isinstance(payload, dict):
            raise CollaboratorError(f"unexpected gh repo view response for {full_name}")
        default_ref = payload.get("defaultBranchRef") or {}
        return RepositoryMetadata(
            name_with_owner=payload.get("nameWithOwner") or full_name,
            default_branch=default_ref.get("name", "") if isinstance(default_ref, dict) else "",
            is_in_organization=bool(payload.get("isInOrganization")),
        )

    async def list_closed_pull_request_branches(self, path: str, limit: int) -> list[str]:
        """Head branch names of closed pull requests for the repository at ``path``."""
        payload = await self._json(
            ["pr", "list", "--state", "closed", "--json", "headRefName", "--limit", str(limit)],
            working_directory=path,
        )
        if not isinstance(payload, list):
            raise CollaboratorError("unexpected gh pr list response")
        branches = []
        for entry in payload:
            name = entry.get("headRefName", "").strip() if isinstance(entry, dict) else ""
            if name and name not in branches:
                branches.append(name)
        return branches


# ---------------------------------------------------------------------------
# Remote URL helpers
# ---------------------------------------------------------------------------


class RemoteProtocol(enum.StrEnum):
    GIT = "git"
    SSH = "ssh"
    HTTPS = "https"


_PREFIXES = {
    RemoteProtocol.GIT: "git@github.com:",
    RemoteProtocol.SSH: "ssh://git@github.com/",
    RemoteProtocol.HTTPS: "https://github.com/",
}

_URL_TEMPLATES = {
    RemoteProtocol.GIT: "git@github.com:{}.git",
    RemoteProtocol.SSH: "ssh://git@github.com/{}.git",
    RemoteProtocol.HTTPS: "https://github.com/{}.git",
}


def detect_protocol(url: str) -> RemoteProtocol | None:
    url = url.strip()
    for protocol, prefix in _PREFIXES.items():
        if url.startswith(prefix):
            return protocol
    return None


def parse_owner_repository(url: str) -> str:
    """Return ``owner/repo`` for a GitHub remote URL, or an empty string."""
    protocol = detect_protocol(url)
    if protocol is None:
        return ""
    slug = url.strip()[len(_PREFIXES[protocol]) :].removesuffix("/").removesuffix(".git")
    parts = slug.split("/")
    if len(parts) != 2 or not all(parts):
        return ""
    return slug


def build_remote_url(protocol: RemoteProtocol, owner_repository: str) -> str:
    return _URL_TEMPLATES[protocol].format(owner_repository)


def split_owner_repository(full_name: str) -> tuple[str, str]:
    owner, sep, name = full_name.strip().partition("/")
    if not sep:
        return "", owner
    return owner, name
