"""GitHub Container Registry client for purging untagged package versions."""

from __future__ import annotations

import enum
import logging

import httpx
from pydantic import BaseModel

from gitfleet.errors import ActionError, RegistryAPIError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_PAGE_SIZE = 100
_DELETE_OK = {204, 202}


class OwnerType(enum.StrEnum):
    USER = "user"
    ORG = "org"

    @property
    def path_segment(self) -> str:
        return "users" if self is OwnerType.USER else "orgs"


class PurgeRequest(BaseModel):
    owner: str
    package_name: str
    owner_type: OwnerType = OwnerType.USER
    token: str


class PurgeResult(BaseModel):
    total_versions: int = 0
    untagged_versions: int = 0
    deleted_versions: int = 0


def _has_tags(version: dict) -> bool:
    metadata = version.get("metadata") or {}
    container = metadata.get("container") or {}
    return bool(container.get("tags"))


class PackageVersionService:
    """Pages through container versions and deletes the untagged ones."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/") or DEFAULT_BASE_URL
        self.page_size = page_size if page_size > 0 else DEFAULT_PAGE_SIZE

    def _versions_url(self, request: PurgeRequest) -> str:
        return (
            f"{self.base_url}/{request.owner_type.path_segment}/{request.owner}"
            f"/packages/container/{request.package_name}/versions"
        )

    async def purge_untagged_versions(
        self, request: PurgeRequest, *, dry_run: bool = False
    ) -> PurgeResult:
        token = request.token.strip()
        if not token:
            raise ActionError("authentication token must be provided")
        if not request.owner.strip():
            raise ActionError("owner must be provided")
        if not request.package_name.strip():
            raise ActionError("package name must be provided")
        request = request.model_copy(
            update={
                "token": token,
                "owner": request.owner.strip(),
                "package_name": request.package_name.strip(),
            }
        )

        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
        }
        if self.client is not None:
            return await self._purge(self.client, request, headers, dry_run)
        async with httpx.AsyncClient(timeout=30) as client:
            return await self._purge(client, request, headers, dry_run)

    async def _purge(
        self,
        client: httpx.AsyncClient,
        request: PurgeRequest,
        headers: dict[str, str],
        dry_run: bool,
    ) -> PurgeResult:
        logger.info(
            "Starting GHCR untagged version purge owner=%s package=%s owner_type=%s",
            request.owner,
            request.package_name,
            request.owner_type.value,
        )
        versions_url = self._versions_url(request)
        result = PurgeResult()
        untagged: list[int] = []

        # Collect every page before deleting so deletions cannot shift pagination.
        page = 1
        while True:
            try:
                r = await client.get(
                    versions_url,
                    headers=headers,
                    params={"per_page": self.page_size, "page": page},
                )
            except httpx.HTTPError as exc:
                raise RegistryAPIError(f"request execution failed: {exc}") from exc
            if r.status_code != 200:
                raise RegistryAPIError(
                    f"unexpected status code {r.status_code} for GET {versions_url}: {r.text.strip()}"
                )
            versions = r.json()
            if not versions:
                break
            logger.debug("Fetched GHCR versions page %d (%d versions)", page, len(versions))
            result.total_versions += len(versions)
            untagged.extend(int(v["id"]) for v in versions if not _has_tags(v))
            page += 1

        result.untagged_versions = len(untagged)
        if dry_run:
            return result

        for version_id in untagged:
            delete_url = f"{versions_url}/{version_id}"
            logger.info("Deleting untagged GHCR package version %d", version_id)
            try:
                r = await client.delete(delete_url, headers=headers)
            except httpx.HTTPError as exc:
                raise RegistryAPIError(f"request execution failed: {exc}") from exc
            if r.status_code not in _DELETE_OK:
                raise RegistryAPIError(
                    f"failed to delete version {version_id}: {r.status_code} {r.text.strip()}"
                )
            result.deleted_versions += 1

        logger.info(
            "Completed GHCR untagged version purge total=%d untagged=%d deleted=%d",
            result.total_versions,
            result.untagged_versions,
            result.deleted_versions,
        )
        return result
