"""gitfleet command line.

Usage:
    gitfleet workflow run maintenance.yaml --roots ~/src --dry-run
    gitfleet workflow run license --var author="Acme Corp" --yes
    gitfleet workflow presets
    gitfleet repo rename --include-owner
    gitfleet branch cleanup --remote origin
    gitfleet repo release tag v1.2.0 --roots ~/src/service
    gitfleet audit --output audit.csv

Roots default to GITFLEET_ROOTS (os.pathsep separated), then the current
directory. Set GITFLEET_DEBUG or pass --debug for debug logging.
"""

# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from gitfleet.errors import ConfigurationError, GitfleetError
from gitfleet.models import ExecutionOutcome, RuntimeOptions
from gitfleet.workflow.config import Configuration, StepConfiguration, load_configuration
from gitfleet.workflow.presets import list_presets, load_preset, preset_names
from gitfleet.workflow.tasks import TaskActionDefinition, TaskDefinition, TasksApplyDefinition
from gitfleet.workflow.variables import resolve_variables

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _runtime_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--roots", nargs="+", help="Directories to search for repositories")
    parent.add_argument("--dry-run", action="store_true", help="Print plans without changing anything")
    parent.add_argument("--yes", "-y", action="store_true", help="Answer yes to every prompt")
    parent.add_argument("--var", action="append", default=[], help="Workflow variable key=value")
    parent.add_argument(
        "--var-file", action="append", default=[], type=Path, help="YAML file of workflow variables"
    )
    parent.add_argument(
        "--include-nested", action="store_true", help="Also process repositories nested in others"
    )
    parent.add_argument(
        "--descending-depth", action="store_true", help="Process deepest repositories first"
    )
    parent.add_argument(
        "--skip-metadata", action="store_true", help="Do not query GitHub for repository metadata"
    )
    return parent


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitfleet",
        description="Apply declarative bulk operations across many local Git repositories.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    runtime = _runtime_parent()
    sub = parser.add_subparsers(dest="command")

    # workflow
    workflow_p = sub.add_parser("workflow", help="Run workflow files and presets")
    workflow_sub = workflow_p.add_subparsers(dest="workflow_command")
    run_p = workflow_sub.add_parser("run", parents=[runtime], help="Run a workflow file or preset")
    run_p.add_argument("target", help="Workflow YAML file or preset name")
    workflow_sub.add_parser("presets", help="List the built-in presets")

    # repo
    repo_p = sub.add_parser("repo", help="Repository maintenance commands")
    repo_sub = repo_p.add_subparsers(dest="repo_command")

    rename_p = repo_sub.add_parser(
        "rename", parents=[runtime], help="Rename folders to their GitHub repository names"
    )
    rename_p.add_argument("--include-owner", action="store_true", help="Use owner/name folders")

    remote_p = repo_sub.add_parser("remote", help="Origin remote updates")
    remote_sub = remote_p.add_subparsers(dest="remote_command")
    canonical_p = remote_sub.add_parser(
        "canonical", parents=[runtime], help="Point origin at the canonical repository"
    )
    canonical_p.add_argument("--owner", default="", help="Only update repositories of this owner")
    protocol_p = remote_sub.add_parser(
        "protocol", parents=[runtime], help="Convert origin between git/ssh/https"
    )
    protocol_p.add_argument("--from", dest="source", required=True, choices=["git", "ssh", "https"])
    protocol_p.add_argument("--to", dest="target", required=True, choices=["git", "ssh", "https"])

    license_p = repo_sub.add_parser("license", parents=[runtime], help="Add a license file")
    license_p.add_argument("--template", default="mit", help="mit, bsl or proprietary")
    license_p.add_argument("--author", default="", help="Copyright holder (default: repo owner)")
    license_p.add_argument("--year", default="", help="Copyright year (default: this year)")

    history_p = repo_sub.add_parser("history", help="Repository history rewrites")
    history_sub = history_p.add_subparsers(dest="history_command")
    purge_p = history_sub.add_parser(
        "purge", parents=[runtime], help="Remove paths from history with git-filter-repo"
    )
    purge_p.add_argument("paths", nargs="+", help="Paths to purge")
    purge_p.add_argument("--remote", default="origin")
    purge_p.add_argument("--no-push", action="store_true", help="Do not force-push the result")

    files_p = repo_sub.add_parser("files", help="File edits")
    files_sub = files_p.add_subparsers(dest="files_command")
    replace_p = files_sub.add_parser(
        "replace", parents=[runtime], help="Literal find and replace across files"
    )
    replace_p.add_argument("--find", required=True)
    replace_p.add_argument("--replace", default="")
    replace_p.add_argument("--pattern", action="append", required=True, help="Glob, repeatable")

    namespace_p = repo_sub.add_parser("namespace", help="Package namespace rewrites")
    namespace_sub = namespace_p.add_subparsers(dest="namespace_command")
    rewrite_p = namespace_sub.add_parser(
        "rewrite", parents=[runtime], help="Rewrite imports from one namespace to another"
    )
    rewrite_p.add_argument("--old", required=True, help="Current namespace, e.g. acme/widgets")
    rewrite_p.add_argument("--new", required=True, help="Replacement namespace")
    rewrite_p.add_argument("--no-push", action="store_true", help="Leave the branch local")

    release_p = repo_sub.add_parser("release", help="Release tags")
    release_sub = release_p.add_subparsers(dest="release_command")
    tag_p = release_sub.add_parser(
        "tag", parents=[runtime], help="Create and push an annotated tag"
    )
    tag_p.add_argument("tag", help="Tag name, e.g. v1.2.0")
    tag_p.add_argument("--message", default="", help="Tag message (default: Release <tag>)")
    tag_p.add_argument("--remote", default="origin")
    retag_p = release_sub.add_parser(
        "retag", parents=[runtime], help="Move existing tags to new commits and force-push them"
    )
    retag_p.add_argument(
        "--map", dest="mappings", action="append", required=True, help="tag=target, repeatable"
    )
    retag_p.add_argument("--remote", default="origin")

    # branch
    branch_p = sub.add_parser("branch", help="Branch maintenance commands")
    branch_sub = branch_p.add_subparsers(dest="branch_command")
    cleanup_p = branch_sub.add_parser(
        "cleanup", parents=[runtime], help="Delete branches of closed pull requests"
    )
    cleanup_p.add_argument("--remote", default="origin")
    cleanup_p.add_argument("--limit", type=int, default=100)
    refresh_p = branch_sub.add_parser(
        "refresh", parents=[runtime], help="Check out a branch and pull it"
    )
    refresh_p.add_argument("--branch", required=True)
    refresh_mode = refresh_p.add_mutually_exclusive_group()
    refresh_mode.add_argument("--stash", action="store_true", help="Stash local changes first")
    refresh_mode.add_argument("--commit", action="store_true", help="Commit local changes first")
    change_p = branch_sub.add_parser(
        "change", parents=[runtime], help="Switch to a branch (default: the remote default branch)"
    )
    change_p.add_argument("branch", nargs="?", default="")
    change_p.add_argument("--remote", default="")
    change_p.add_argument("--create", action="store_true", help="Create the branch when missing")

    # audit
    audit_p = sub.add_parser("audit", parents=[runtime], help="Write a CSV audit of repositories")
    audit_p.add_argument("--output", default="", help="CSV file (default: stdout)")
    audit_p.add_argument("--depth", default="full", choices=["full", "minimal"])

    # packages
    packages_p = sub.add_parser("packages", help="Container package maintenance")
    packages_sub = packages_p.add_subparsers(dest="packages_command")
    packages_purge_p = packages_sub.add_parser(
        "purge", parents=[runtime], help="Delete untagged GHCR package versions"
    )
    packages_purge_p.add_argument("--package", default="", help="Package name (default: repo name)")
    packages_purge_p.add_argument("--owner", default="", help="Package owner (default: repo owner)")
    packages_purge_p.add_argument("--owner-type", default="user", choices=["user", "org"])

    return parser


# ---------------------------------------------------------------------------
# Configuration builders
# ---------------------------------------------------------------------------


def _step(name: str, command: str, options: dict[str, Any]) -> Configuration:
    return Configuration(
        steps=[StepConfiguration(name=name, command=command.split(), options=options)]
    )


def _action_configuration(name: str, action_type: str, options: dict[str, Any]) -> Configuration:
    task = TaskDefinition(
        name=name,
        ensure_clean=False,
        actions=[TaskActionDefinition(type=action_type, options=options)],
    )
    return _step(name, "tasks apply", TasksApplyDefinition(tasks=[task]).options())


def parse_retag_mappings(values: list[str]) -> list[dict[str, str]]:
    mappings = []
    for value in values:
        tag, sep, target = value.partition("=")
        if not sep or not tag.strip() or not target.strip():
            raise ConfigurationError(f"invalid retag mapping {value!r}; expected tag=target")
        mappings.append({"tag": tag.strip(), "target": target.strip()})
    return mappings


def _workflow_configuration(target: str) -> Configuration:
    path = Path(target)
    if path.is_file():
        return load_configuration(path)
    if target.strip().lower() in preset_names():
        return load_preset(target)
    raise ConfigurationError(f"workflow file or preset not found: {target}")


def build_configuration(args: argparse.Namespace) -> tuple[Configuration, dict[str, bool]]:
    """Map parsed arguments to a workflow and runtime overrides."""
    if args.command == "workflow":
        return _workflow_configuration(args.target), {}

    if args.command == "repo":
        if args.repo_command == "rename":
            configuration = _step(
                "folder-rename",
                "folder rename",
                {"include_owner": args.include_owner, "require_clean": True},
            )
            return configuration, {
                "process_repositories_by_descending_depth": True,
                "capture_initial_worktree_status": True,
                "include_nested_repositories": True,
            }
        if args.repo_command == "remote" and args.remote_command == "canonical":
            return _step("remote-canonical", "remote update-to-canonical", {"owner": args.owner}), {}
        if args.repo_command == "remote" and args.remote_command == "protocol":
            options = {"from": args.source, "to": args.target}
            return _step("remote-protocol", "remote update-protocol", options), {}
        if args.repo_command == "license":
            from gitfleet.actions.licenses import license_task

            task = license_task(args.template, author=args.author, year=args.year)
            return _step("license", "tasks apply", TasksApplyDefinition(tasks=[task]).options()), {}
        if args.repo_command == "history" and args.history_command == "purge":
            options = {"paths": args.paths, "remote": args.remote, "push": not args.no_push}
            return _action_configuration("history-purge", "repo.history.purge", options), {}
        if args.repo_command == "files" and args.files_command == "replace":
            options = {"find": args.find, "replace": args.replace, "patterns": args.pattern}
            return _action_configuration("files-replace", "repo.files.replace", options), {}
        if args.repo_command == "namespace" and args.namespace_command == "rewrite":
            options = {"old": args.old, "new": args.new, "push": not args.no_push}
            return _action_configuration("namespace-rewrite", "repo.namespace.rewrite", options), {}
        if args.repo_command == "release" and args.release_command == "tag":
            options = {"tag": args.tag, "message": args.message, "remote": args.remote}
            return _action_configuration("release-tag", "repo.release.tag", options), {}
        if args.repo_command == "release" and args.release_command == "retag":
            options = {"mappings": parse_retag_mappings(args.mappings), "remote": args.remote}
            return _action_configuration("release-retag", "repo.release.retag", options), {}

    if args.command == "branch":
        if args.branch_command == "cleanup":
            options = {"remote": args.remote, "limit": args.limit}
            return _action_configuration("branch-cleanup", "repo.branches.cleanup", options), {}
        if args.branch_command == "refresh":
            options = {"branch": args.branch, "stash": args.stash, "commit": args.commit}
            return _action_configuration("branch-refresh", "branch.refresh", options), {}
        if args.branch_command == "change":
            options = {
                "branch": args.branch,
                "remote": args.remote,
                "create_if_missing": args.create,
            }
            return _action_configuration("branch-change", "branch.change", options), {}

    if args.command == "audit":
        options = {"output": args.output, "depth": args.depth}
        return _step("audit", "audit report", options), {}

    if args.command == "packages" and args.packages_command == "purge":
        options = {"package": args.package, "owner": args.owner, "owner_type": args.owner_type}
        return _action_configuration("packages-purge", "repo.packages.purge", options), {}

    raise ConfigurationError("no command given; see --help")


def resolve_roots(roots: list[str] | None) -> list[str]:
    if roots:
        return roots
    env_roots = [root for root in os.environ.get("GITFLEET_ROOTS", "").split(os.pathsep) if root]
    return env_roots or ["."]


def runtime_options(args: argparse.Namespace, overrides: dict[str, bool]) -> RuntimeOptions:
    values: dict[str, Any] = {
        "dry_run": args.dry_run,
        "assume_yes": args.yes,
        "include_nested_repositories": args.include_nested,
        "process_repositories_by_descending_depth": args.descending_depth,
        "skip_repository_metadata": args.skip_metadata,
        "variables": resolve_variables(args.var_file, args.var),
    }
    for key, value in overrides.items():
        values[key] = values.get(key, False) or value
    return RuntimeOptions(**values)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


async def _execute(
    configuration: Configuration, roots: list[str], options: RuntimeOptions
) -> ExecutionOutcome:
    from gitfleet.actions import builtin_registry
    from gitfleet.collaborators.filesystem import FilesystemRepositoryDiscoverer, LocalFileSystem
    from gitfleet.collaborators.git import GitRepositoryManager, ShellGitExecutor
    from gitfleet.collaborators.github import GitHubCLIClient
    from gitfleet.workflow.compiler import build_operations
    from gitfleet.workflow.executor import Executor
    from gitfleet.workflow.prompting import IOPrompter
    from gitfleet.workflow.state import Dependencies

    registry = builtin_registry()
    nodes = build_operations(configuration, registry)
    git = ShellGitExecutor()
    dependencies = Dependencies(
        discoverer=FilesystemRepositoryDiscoverer(),
        git=git,
        repositories=GitRepositoryManager(git),
        filesystem=LocalFileSystem(),
        prompter=IOPrompter(),
        output=sys.stdout,
        errors=sys.stderr,
        github=GitHubCLIClient(git),
    )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort immediately")

    return await Executor(nodes, dependencies, registry).execute(roots, options, cancel)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    # Only show detailed logs for our own code
    logging.getLogger("gitfleet").setLevel(logging.DEBUG if debug else logging.INFO)


def main(argv: list[str] | None = None) -> None:
    from dotenv import load_dotenv

    load_dotenv()

    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug or bool(os.environ.get("GITFLEET_DEBUG")))

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "workflow" and args.workflow_command == "presets":
        for preset in list_presets():
            print(f"{preset.name:<28} {preset.description}")
        sys.exit(0)
    if args.command == "workflow" and args.workflow_command is None:
        parser.print_help()
        sys.exit(1)

    try:
        configuration, overrides = build_configuration(args)
        options = runtime_options(args, overrides)
        outcome = asyncio.run(_execute(configuration, resolve_roots(args.roots), options))
    except GitfleetError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(1 if outcome.failed else 0)


if __name__ == "__main__":
    main()
