"""Built-in repository actions and the registry that exposes them."""

from gitfleet.actions.audit import audit_report
from gitfleet.actions.branches import change_branch, cleanup_branches, refresh_branch
from gitfleet.actions.files import add_file, replace_in_files
from gitfleet.actions.history import purge_history
from gitfleet.actions.licenses import apply_license
from gitfleet.actions.namespace import rewrite_namespace
from gitfleet.actions.packages import purge_packages
from gitfleet.actions.releases import release_tag, retag_release
from gitfleet.actions.remotes import convert_protocol, update_to_canonical
from gitfleet.actions.rename import rename_folder
from gitfleet.workflow.registry import Registry


def builtin_registry() -> Registry:
    """Registry with every built-in action type."""
    registry = Registry()
    # Handlers that prompt per repository themselves.
    registry.register("repo.folder.rename", rename_folder, confirms=True)
    registry.register("repo.remote.update", update_to_canonical, confirms=True)
    registry.register("repo.remote.convert-protocol", convert_protocol, confirms=True)
    registry.register("repo.namespace.rewrite", rewrite_namespace, confirms=True)
    registry.register("repo.branches.cleanup", cleanup_branches, confirms=True)
    # Read-only; nothing to confirm.
    registry.register("audit.report", audit_report, confirms=True)

    registry.register("repo.history.purge", purge_history)
    registry.register("repo.files.replace", replace_in_files)
    registry.register("repo.files.add", add_file)
    registry.register("repo.license.apply", apply_license)
    registry.register("repo.release.tag", release_tag)
    registry.register("repo.release.retag", retag_release)
    registry.register("branch.refresh", refresh_branch)
    registry.register("branch.change", change_branch)
    registry.register("repo.packages.purge", purge_packages)
    return registry


__all__ = ["builtin_registry"]
