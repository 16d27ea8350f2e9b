"""Local filesystem access and repository discovery."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from gitfleet.errors import InfrastructureError

logger = logging.getLogger(__name__)


class LocalFileSystem:
    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def write_file(self, path: str, data: bytes, permissions: int) -> None:
        target = Path(path)
        target.write_bytes(data)
        target.chmod(permissions)

    def mkdir_all(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def rename(self, source: str, target: str) -> None:
        os.rename(source, target)

    def abs(self, path: str) -> str:
        return os.path.abspath(path)


class FilesystemRepositoryDiscoverer:
    """Walks roots for directories that contain a ``.git`` entry."""

    def discover_repositories(self, roots: list[str]) -> list[str]:
        found: set[str] = set()
        for root in roots:
            root_path = os.path.abspath(os.path.expanduser(root))
            if not os.path.isdir(root_path):
                raise InfrastructureError(f"repository root does not exist: {root}")

            def _on_error(exc: OSError) -> None:
                logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)

            for current, dirnames, filenames in os.walk(root_path, onerror=_on_error):
                if ".git" in dirnames or ".git" in filenames:
                    found.add(current)
                # Never descend into git metadata.
                dirnames[:] = sorted(d for d in dirnames if d != ".git")

        repositories = sorted(found)
        logger.info("Discovered %d repositories under %s", len(repositories), ", ".join(roots))
        return repositories
