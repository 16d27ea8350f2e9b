"""Purge untagged GHCR container versions for a repository's package."""

from __future__ import annotations

import logging
import os
from typing import Any

from gitfleet.collaborators.ghcr import OwnerType, PackageVersionService, PurgeRequest
from gitfleet.errors import ActionError
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState

logger = logging.getLogger(__name__)

TOKEN_ENVIRONMENT = ("GITFLEET_GHCR_TOKEN", "GH_TOKEN", "GITHUB_TOKEN")


def resolve_token(token_env: str = "") -> str:
    names = (token_env,) if token_env else TOKEN_ENVIRONMENT
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return ""


async def purge_packages(
    env: Environment, repository: RepositoryState, options: dict[str, Any]
) -> None:
    reader = OptionReader(options)
    package = reader.string("package") or repository.name
    owner = reader.string("owner") or repository.owner
    owner_type_value = reader.string("owner_type", OwnerType.USER.value).lower()
    try:
        owner_type = OwnerType(owner_type_value)
    except ValueError:
        raise ActionError(f"unsupported owner type: {owner_type_value}") from None

    request = PurgeRequest(
        owner=owner,
        package_name=package,
        owner_type=owner_type,
        token=resolve_token(reader.string("token_env")),
    )
    service = env.dependencies.package_service or PackageVersionService()
    result = await service.purge_untagged_versions(request, dry_run=env.dry_run)
    env.out(
        f"PACKAGES-PURGE: {repository.path} package={package} total={result.total_versions}"
        f" untagged={result.untagged_versions} deleted={result.deleted_versions}"
    )
