"""Built-in action handlers driven through fakes."""

import asyncio
import json

import pytest

from gitfleet.actions import builtin_registry
from gitfleet.actions.audit import write_reports
from gitfleet.actions.licenses import render_license, template_names
from gitfleet.actions.namespace import NamespaceRewrite
from gitfleet.collaborators.ghcr import OwnerType, PurgeResult
from gitfleet.errors import ActionError, ActionSkipped
from gitfleet.workflow.state import RepositoryState

from conftest import make_repo, output_lines


def _run(env, action_type, repository, options):
    handler = env.registry.lookup(action_type).handler
    return asyncio.run(handler(env, repository, options))


def test_builtin_registry_types():
    registry = builtin_registry()
    assert registry.types() == [
        "audit.report",
        "branch.change",
        "branch.refresh",
        "repo.branches.cleanup",
        "repo.files.add",
        "repo.files.replace",
        "repo.folder.rename",
        "repo.history.purge",
        "repo.license.apply",
        "repo.namespace.rewrite",
        "repo.packages.purge",
        "repo.release.retag",
        "repo.release.tag",
        "repo.remote.convert-protocol",
        "repo.remote.update",
    ]
    assert registry.lookup("repo.folder.rename").confirms
    assert not registry.lookup("repo.files.add").confirms
    with pytest.raises(ActionError, match="unknown action type: nope"):
        registry.lookup("nope")


# ---------------------------------------------------------------------------
# Folder rename
# ---------------------------------------------------------------------------


def test_rename_moves_folder_after_confirmation(make_env, prompter, dependencies, tmp_path):
    old = make_repo(tmp_path, "old-name")
    repository = RepositoryState(path=old, name="widgets", owner="acme")
    prompter.answers = ["y"]

    _run(make_env(), "repo.folder.rename", repository, {})

    new = str(tmp_path / "widgets")
    assert (tmp_path / "widgets" / ".git").is_dir()
    assert repository.path == new
    assert prompter.prompts == [f"Rename '{old}' → '{new}'? [a/N/y] "]
    assert output_lines(dependencies) == [f"Renamed {old} → {new}"]


def test_rename_dry_run_plans_only(make_env, dependencies, tmp_path):
    old = make_repo(tmp_path, "old-name")
    repository = RepositoryState(path=old, name="widgets")

    _run(make_env(dry_run=True), "repo.folder.rename", repository, {})

    assert (tmp_path / "old-name").is_dir()
    assert output_lines(dependencies) == [f"PLAN-RENAME: {old} → {tmp_path / 'widgets'}"]


def test_rename_case_only_plan(make_env, dependencies, tmp_path):
    old = make_repo(tmp_path, "Widgets")
    _run(make_env(dry_run=True), "repo.folder.rename", RepositoryState(path=old, name="widgets"), {})
    assert output_lines(dependencies) == [
        f"PLAN-RENAME: {old} → {tmp_path / 'widgets'} (case-only, two-step move)"
    ]


def test_rename_with_owner_creates_parent(make_env, prompter, tmp_path):
    old = make_repo(tmp_path, "widgets")
    repository = RepositoryState(path=old, name="widgets", owner="acme")
    prompter.answers = ["y"]

    _run(make_env(), "repo.folder.rename", repository, {"include_owner": True})

    assert (tmp_path / "acme" / "widgets" / ".git").is_dir()


def test_rename_refuses_existing_target(make_env, dependencies, tmp_path):
    old = make_repo(tmp_path, "old-name")
    (tmp_path / "widgets").mkdir()
    with pytest.raises(ActionError, match="target exists"):
        _run(make_env(), "repo.folder.rename", RepositoryState(path=old, name="widgets"), {})
    assert output_lines(dependencies) == []


def test_rename_dirty_worktree_skips(make_env, repositories, dependencies, tmp_path):
    old = make_repo(tmp_path, "old-name")
    repositories.status[old] = [" M x"]
    with pytest.raises(ActionSkipped, match="dirty worktree"):
        _run(make_env(), "repo.folder.rename", RepositoryState(path=old, name="widgets"), {})
    assert output_lines(dependencies) == [f"SKIP (dirty worktree): {old}"]
    assert (tmp_path / "old-name").is_dir()


def test_rename_decline_skips(make_env, prompter, dependencies, tmp_path):
    old = make_repo(tmp_path, "old-name")
    prompter.answers = ["n"]
    with pytest.raises(ActionSkipped, match="declined"):
        _run(make_env(), "repo.folder.rename", RepositoryState(path=old, name="widgets"), {})
    assert output_lines(dependencies) == [f"RENAME-SKIP: user declined for {old}"]
    assert not (tmp_path / "widgets").exists()


def test_rename_already_normalized_skips(make_env, dependencies, tmp_path):
    path = make_repo(tmp_path, "widgets")
    repository = RepositoryState(path=path, name="widgets")
    with pytest.raises(ActionSkipped, match="already normalized"):
        _run(make_env(dry_run=True), "repo.folder.rename", repository, {})
    assert output_lines(dependencies) == [f"PLAN-SKIP (already normalized): {path}"]


def test_rename_clean_parent_of_nested_ignores_dirty_status(make_env, repositories, prompter, tmp_path):
    old = make_repo(tmp_path, "old-name")
    repositories.status[old] = ["?? vendor/"]
    prompter.answers = ["y"]
    repository = RepositoryState(
        path=old, name="widgets", has_nested_repositories=True, initial_clean=True
    )

    _run(make_env(), "repo.folder.rename", repository, {})

    assert repository.path == str(tmp_path / "widgets")


# ---------------------------------------------------------------------------
# Remotes
# ---------------------------------------------------------------------------


def test_convert_protocol(make_env, prompter, repositories, dependencies):
    repository = RepositoryState(
        path="/w/widgets",
        full_name="acme/widgets",
        remote_url="https://github.com/acme/widgets.git",
    )
    prompter.answers = ["y"]

    _run(make_env(), "repo.remote.convert-protocol", repository, {"from": "https", "to": "ssh"})

    target = "ssh://git@github.com/acme/widgets.git"
    assert repositories.updated == [("/w/widgets", "origin", target)]
    assert prompter.prompts == ["Convert 'origin' in '/w/widgets' (https → ssh)? [a/N/y] "]
    assert output_lines(dependencies) == [f"CONVERT-DONE: /w/widgets origin now {target}"]


def test_convert_protocol_skips_other_protocols(make_env, repositories, dependencies):
    repository = RepositoryState(path="/w/r", remote_url="git@github.com:acme/r.git")
    with pytest.raises(ActionSkipped, match="origin does not use https"):
        _run(make_env(), "repo.remote.convert-protocol", repository, {"from": "https", "to": "git"})
    assert repositories.updated == []
    assert output_lines(dependencies) == ["CONVERT-SKIP: /w/r origin does not use https"]


def test_canonical_remote_plan_keeps_protocol(make_env, dependencies):
    repository = RepositoryState(
        path="/w/old", full_name="acme/new", remote_url="git@github.com:acme/old.git"
    )
    _run(make_env(dry_run=True), "repo.remote.update", repository, {})
    assert output_lines(dependencies) == [
        "PLAN-UPDATE-REMOTE: /w/old origin git@github.com:acme/old.git → git@github.com:acme/new.git"
    ]


def test_canonical_remote_owner_mismatch(make_env, repositories, dependencies):
    repository = RepositoryState(
        path="/w/old", full_name="acme/new", remote_url="git@github.com:acme/old.git"
    )
    with pytest.raises(ActionSkipped, match="owner mismatch"):
        _run(make_env(assume_yes=True), "repo.remote.update", repository, {"owner": "other"})
    assert repositories.updated == []
    assert output_lines(dependencies) == ["UPDATE-REMOTE-SKIP: /w/old (owner mismatch)"]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def _files_repo(tmp_path):
    path = make_repo(tmp_path, "repo")
    (tmp_path / "repo" / "a.txt").write_text("foo and foo\n")
    (tmp_path / "repo" / "b.md").write_text("foo\n")
    return RepositoryState(path=path, name="repo")


def test_replace_in_files(make_env, git, dependencies, tmp_path):
    repository = _files_repo(tmp_path)
    options = {"find": "foo", "replace": "bar", "pattern": "*.txt", "command": ["make", "fmt"]}

    _run(make_env(), "repo.files.replace", repository, options)

    assert (tmp_path / "repo" / "a.txt").read_text() == "bar and bar\n"
    assert (tmp_path / "repo" / "b.md").read_text() == "foo\n"
    assert git.commands == [["make", "fmt"]]
    assert git.command_dirs == [repository.path]
    assert output_lines(dependencies) == [
        f"REPLACE-APPLY: {repository.path} file=a.txt replacements=2",
        f"REPLACE-COMMAND: {repository.path} command=make fmt",
    ]


def test_replace_dry_run_leaves_files(make_env, git, dependencies, tmp_path):
    repository = _files_repo(tmp_path)
    options = {"find": "foo", "replace": "bar", "patterns": ["*.txt", "*.md"], "command": ["make"]}

    _run(make_env(dry_run=True), "repo.files.replace", repository, options)

    assert (tmp_path / "repo" / "a.txt").read_text() == "foo and foo\n"
    assert git.commands == []
    assert output_lines(dependencies) == [
        f"REPLACE-PLAN: {repository.path} file=a.txt replacements=2",
        f"REPLACE-PLAN: {repository.path} file=b.md replacements=1",
        f"REPLACE-COMMAND-PLAN: {repository.path} command=make",
    ]


def test_replace_without_matches_is_noop(make_env, dependencies, tmp_path):
    repository = _files_repo(tmp_path)
    _run(make_env(), "repo.files.replace", repository, {"find": "zzz", "pattern": "*.txt"})
    assert output_lines(dependencies) == [f"REPLACE-NOOP: {repository.path} reason=no matches"]


def test_replace_requires_find(make_env, tmp_path):
    with pytest.raises(ActionError, match="non-empty 'find'"):
        _run(make_env(), "repo.files.replace", _files_repo(tmp_path), {"pattern": "*"})


def test_files_add_runs_inline_task(make_env, git, dependencies, tmp_path):
    repository = _files_repo(tmp_path)
    options = {"path": "CODEOWNERS", "content": "* @{{ .Repository.Name }}\n", "branch": "owners"}

    _run(make_env(), "repo.files.add", repository, options)

    assert (tmp_path / "repo" / "CODEOWNERS").read_text() == "* @repo\n"
    assert ["commit", "-m", "Add CODEOWNERS"] in git.arguments()
    assert output_lines(dependencies) == [f"TASK-APPLY: add CODEOWNERS {repository.path}"]


# ---------------------------------------------------------------------------
# Licenses
# ---------------------------------------------------------------------------


def test_render_license_templates():
    assert template_names() == ["bsl", "mit", "proprietary"]
    text = render_license("MIT", author="Acme", year="2024", project="widgets")
    assert text.startswith("MIT License\n\nCopyright (c) 2024 Acme\n")
    bsl = render_license("bsl", author="Acme", year="2024", project="widgets")
    assert "Licensed Work:        widgets" in bsl
    with pytest.raises(ActionError, match="unsupported license template"):
        render_license("gpl", author="a", year="1", project="p")


def test_apply_license_defaults_to_repository_owner(make_env, git, tmp_path):
    repository = RepositoryState(path=make_repo(tmp_path, "widgets"), name="widgets", owner="acme")

    _run(make_env(), "repo.license.apply", repository, {"year": "2024"})

    license_text = (tmp_path / "widgets" / "LICENSE").read_text()
    assert "Copyright (c) 2024 acme" in license_text
    assert ["checkout", "-B", "license-widgets"] in git.arguments()
    assert ["commit", "-m", "docs: add license"] in git.arguments()


# ---------------------------------------------------------------------------
# Namespace rewrite
# ---------------------------------------------------------------------------


def test_namespace_rewrite_source_only_touches_imports():
    rewrite = NamespaceRewrite(old="acme/widgets", new="acme/gadgets")
    source = (
        "import acme.widgets.core\n"
        "from acme.widgets import thing\n"
        "import acme.widgetsplus\n"
        "name = 'acme.widgets'\n"
    )
    assert rewrite.rewrite_source(source) == (
        "import acme.gadgets.core\n"
        "from acme.gadgets import thing\n"
        "import acme.widgetsplus\n"
        "name = 'acme.widgets'\n"
    )


def _namespace_repo(tmp_path, repositories):
    path = make_repo(tmp_path, "svc")
    (tmp_path / "svc" / "pkg").mkdir()
    (tmp_path / "svc" / "pkg" / "mod.py").write_text("from acme.widgets import core\n")
    (tmp_path / "svc" / "requirements.txt").write_text(
        "widgets @ git+https://github.com/acme/widgets.git\n"
    )
    (tmp_path / "svc" / "README.md").write_text("acme/widgets\n")
    repositories.remotes[path] = {"origin": "git@github.com:acme/svc.git"}
    return RepositoryState(path=path, name="svc")


NAMESPACE = {"old": "acme/widgets", "new": "acme/gadgets"}


def test_namespace_rewrite_applies_on_branch(make_env, git, prompter, dependencies, tmp_path, repositories):
    repository = _namespace_repo(tmp_path, repositories)
    prompter.answers = ["y"]

    _run(make_env(), "repo.namespace.rewrite", repository, NAMESPACE)

    assert (tmp_path / "svc" / "pkg" / "mod.py").read_text() == "from acme.gadgets import core\n"
    assert "github.com/acme/gadgets.git" in (tmp_path / "svc" / "requirements.txt").read_text()
    assert (tmp_path / "svc" / "README.md").read_text() == "acme/widgets\n"
    branch = "namespace-rewrite/acme-gadgets"
    assert git.mutating() == [
        ["checkout", "-b", branch],
        ["add", "pkg/mod.py"],
        ["add", "requirements.txt"],
        ["commit", "-m", "chore(namespace): rewrite acme/widgets -> acme/gadgets"],
        ["push", "--set-upstream", "origin", branch],
        ["checkout", "main"],
    ]
    assert prompter.prompts == [
        f"Rewrite namespace acme/widgets -> acme/gadgets in {repository.path}? [a/N/y] "
    ]
    assert output_lines(dependencies)[-1] == (
        f"NAMESPACE-APPLY: {repository.path} branch={branch} files=2 push=true"
    )


def test_namespace_rewrite_dry_run(make_env, git, dependencies, tmp_path, repositories):
    repository = _namespace_repo(tmp_path, repositories)

    _run(make_env(dry_run=True), "repo.namespace.rewrite", repository, NAMESPACE)

    assert git.calls == []
    assert output_lines(dependencies) == [
        f"NAMESPACE-PLAN: {repository.path} files=2",
        f"NAMESPACE-PLAN: {repository.path} file=pkg/mod.py",
        f"NAMESPACE-PLAN: {repository.path} file=requirements.txt",
    ]


def test_namespace_rewrite_noop(make_env, dependencies, tmp_path):
    repository = RepositoryState(path=make_repo(tmp_path, "empty"), name="empty")
    with pytest.raises(ActionSkipped, match="no references"):
        _run(make_env(), "repo.namespace.rewrite", repository, NAMESPACE)
    assert output_lines(dependencies) == [f"NAMESPACE-NOOP: {repository.path} reason=no references"]


@pytest.mark.parametrize(
    "options, message",
    [
        ({"old": "widgets", "new": "acme/gadgets"}, "must contain '/'"),
        ({"old": "acme/widgets", "new": "acme/widgets"}, "must differ"),
    ],
)
def test_namespace_rewrite_validation(make_env, tmp_path, options, message):
    repository = RepositoryState(path=str(tmp_path))
    with pytest.raises(ActionError, match=message):
        _run(make_env(), "repo.namespace.rewrite", repository, options)


# ---------------------------------------------------------------------------
# History purge
# ---------------------------------------------------------------------------


def test_history_purge_dry_run(make_env, git, repositories, dependencies):
    repositories.remotes["/w/r"] = {"origin": "git@github.com:acme/r.git"}
    _run(make_env(dry_run=True), "repo.history.purge", RepositoryState(path="/w/r"), {"paths": ["secrets.env"]})
    assert git.calls == []
    assert output_lines(dependencies) == ["HISTORY-PLAN: /w/r paths=secrets.env remote=origin"]


def test_history_purge_skips_without_history(make_env, git, dependencies, tmp_path):
    path = make_repo(tmp_path, "r")
    _run(make_env(), "repo.history.purge", RepositoryState(path=path), {"paths": ["secrets.env"]})
    assert (tmp_path / "r" / ".gitignore").read_text() == "secrets.env\n"
    assert ["commit", "-m", "chore: ignore purged paths"] in git.arguments()
    assert not any(args[0] == "filter-repo" for args in git.arguments())
    assert output_lines(dependencies) == [f"HISTORY-SKIP: {path} (no matching history for secrets.env)"]


def test_history_purge_rewrites_and_pushes(make_env, git, repositories, dependencies, tmp_path):
    path = make_repo(tmp_path, "r")
    (tmp_path / "r" / ".gitignore").write_text("secrets.env\n")
    repositories.remotes[path] = {"origin": "git@github.com:acme/r.git"}
    git.responses[("rev-list", "--all", "--", "secrets.env")] = "abc123\n"
    git.responses[("for-each-ref", "--format=%(refname)", "refs/heads/")] = "refs/heads/main\n"

    _run(make_env(), "repo.history.purge", RepositoryState(path=path), {"paths": ["secrets.env"]})

    arguments = git.arguments()
    assert [
        "filter-repo", "--path", "secrets.env", "--invert-paths", "--prune-empty", "always", "--force"
    ] in arguments
    assert ["remote", "add", "origin", "git@github.com:acme/r.git"] in arguments
    assert ["push", "--force", "--all", "origin"] in arguments
    assert ["branch", "--set-upstream-to=origin/main", "main"] in arguments
    assert not any(args[0] == "commit" for args in arguments)
    assert output_lines(dependencies) == [
        f"HISTORY-PURGE: {path} removed=secrets.env remote=origin push=true restore=true push_missing=false"
    ]


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def test_branch_cleanup_counts(make_env, git, prompter, dependencies):
    git.responses[("ls-remote", "--heads", "origin")] = (
        "a1\trefs/heads/feature-a\nb2\trefs/heads/feature-b\nc3\trefs/heads/main\n"
    )
    git.responses[("pr", "list")] = json.dumps(
        [{"headRefName": "feature-a"}, {"headRefName": "feature-b"}, {"headRefName": "gone"}]
    )
    prompter.answers = ["y", "n"]

    _run(make_env(), "repo.branches.cleanup", RepositoryState(path="/w/r"), {})

    assert git.mutating() == [["push", "origin", "--delete", "feature-a"], ["branch", "-D", "feature-a"]]
    assert git.gh_calls == [
        ("/w/r", ["pr", "list", "--state", "closed", "--json", "headRefName", "--limit", "100"])
    ]
    assert prompter.prompts[0] == (
        "Delete pull request branch 'feature-a' from remote 'origin' and the local repository? [y/N] "
    )
    assert output_lines(dependencies) == [
        "PR cleanup: /w/r closed=3 deleted=1 missing=1 declined=1 failed=0"
    ]


def test_branch_cleanup_counts_failed_deletes(make_env, git, dependencies):
    git.responses[("ls-remote", "--heads", "origin")] = "a1\trefs/heads/feature-a\n"
    git.responses[("pr", "list")] = json.dumps([{"headRefName": "feature-a"}])
    git.failures.add(("push", "origin", "--delete"))

    _run(make_env(assume_yes=True), "repo.branches.cleanup", RepositoryState(path="/w/r"), {})

    assert output_lines(dependencies) == [
        "PR cleanup: /w/r closed=1 deleted=0 missing=0 declined=0 failed=1"
    ]


def test_branch_refresh_commits_checkpoint_and_rebases(make_env, git, repositories, dependencies):
    repositories.status["/w/r"] = [" M app.py"]
    _run(make_env(), "branch.refresh", RepositoryState(path="/w/r"), {"branch": "main", "commit": True})
    assert git.arguments() == [
        ["add", "--all"],
        ["commit", "-m", "chore: checkpoint before refreshing main"],
        ["fetch", "--prune", "origin"],
        ["checkout", "main"],
        ["pull", "--rebase", "origin", "main"],
    ]
    assert output_lines(dependencies) == ["REFRESHED: /w/r (main)"]


def test_branch_refresh_requires_clean_worktree(make_env, repositories):
    repositories.status["/w/r"] = [" M app.py"]
    with pytest.raises(ActionError, match="repository worktree is not clean"):
        _run(make_env(), "branch.refresh", RepositoryState(path="/w/r"), {"branch": "main"})


def test_branch_refresh_rejects_stash_and_commit(make_env):
    with pytest.raises(ActionError, match="mutually exclusive"):
        _run(
            make_env(),
            "branch.refresh",
            RepositoryState(path="/w/r"),
            {"branch": "main", "stash": True, "commit": True},
        )


def test_branch_change_switches_and_pulls(make_env, git, dependencies):
    git.responses[("remote",)] = "origin\nupstream\n"
    repository = RepositoryState(path="/w/r")

    _run(make_env(), "branch.change", repository, {"branch": "feature"})

    assert git.arguments() == [
        ["remote"],
        ["fetch", "--prune", "origin"],
        ["switch", "feature"],
        ["pull", "--rebase"],
    ]
    assert repository.current_branch == "feature"
    assert output_lines(dependencies) == ["SWITCHED: /w/r → feature"]


def test_branch_change_creates_tracking_branch(make_env, git, dependencies):
    git.responses[("remote",)] = "origin\n"
    git.failure_output[("switch", "feature")] = "fatal: invalid reference: feature\n"
    options = {"branch": "feature", "create_if_missing": True}

    _run(make_env(), "branch.change", RepositoryState(path="/w/r"), options)

    assert ["switch", "-c", "feature", "--track", "origin/feature"] in git.arguments()
    assert output_lines(dependencies) == ["SWITCHED: /w/r → feature (created)"]


def test_branch_change_missing_branch_without_create_fails(make_env, git):
    git.failure_output[("switch", "feature")] = "fatal: invalid reference: feature\n"
    with pytest.raises(ActionError, match="failed to switch to branch 'feature': fatal: invalid"):
        _run(make_env(), "branch.change", RepositoryState(path="/w/r"), {"branch": "feature"})
    assert not any(args[:2] == ["switch", "-c"] for args in git.arguments())


def test_branch_change_fetch_failure_skips_pull(make_env, git, dependencies):
    git.responses[("remote",)] = "origin\n"
    git.failures.add(("fetch",))

    _run(make_env(), "branch.change", RepositoryState(path="/w/r"), {"branch": "main"})

    assert ["pull", "--rebase"] not in git.arguments()
    assert output_lines(dependencies) == [
        "FETCH-SKIP: origin (simulated failure)",
        "SWITCHED: /w/r → main",
    ]


def test_branch_change_defaults_to_remote_default_branch(make_env, git):
    repository = RepositoryState(path="/w/r", remote_default_branch="trunk")
    _run(make_env(), "branch.change", repository, {"default_branch": "main"})
    # No remotes configured: nothing to fetch or pull.
    assert git.arguments() == [["remote"], ["switch", "trunk"]]


def test_branch_change_requires_a_branch(make_env, git):
    with pytest.raises(ActionError, match="branch change requires a branch"):
        _run(make_env(), "branch.change", RepositoryState(path="/w/r"), {})
    assert git.calls == []


def test_branch_change_dry_run(make_env, git, dependencies):
    _run(make_env(dry_run=True), "branch.change", RepositoryState(path="/w/r"), {"branch": "main"})
    assert git.calls == []
    assert output_lines(dependencies) == ["PLAN-SWITCH: /w/r → main"]


def test_branch_change_with_stash_refreshes(make_env, git, repositories, dependencies):
    git.responses[("remote",)] = "origin\n"
    repositories.status["/w/r"] = [" M app.py"]

    _run(make_env(), "branch.change", RepositoryState(path="/w/r"), {"branch": "main", "stash": True})

    assert ["stash", "push", "--include-untracked"] in git.arguments()
    assert output_lines(dependencies) == ["SWITCHED: /w/r → main", "REFRESHED: /w/r (main)"]


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


def test_release_tag_creates_and_pushes(make_env, git, dependencies):
    _run(make_env(), "repo.release.tag", RepositoryState(path="/w/r"), {"tag": "v1.2.0"})
    assert git.arguments() == [
        ["tag", "-a", "v1.2.0", "-m", "Release v1.2.0"],
        ["push", "origin", "v1.2.0"],
    ]
    assert output_lines(dependencies) == ["RELEASED: /w/r -> v1.2.0"]


def test_release_tag_requires_tag(make_env):
    with pytest.raises(ActionError, match="release action requires 'tag'"):
        _run(make_env(), "repo.release.tag", RepositoryState(path="/w/r"), {"message": "x"})


def test_release_tag_push_failure(make_env, git, dependencies):
    git.failures.add(("push",))
    with pytest.raises(ActionError, match="failed to push tag 'v1' to upstream"):
        _run(
            make_env(),
            "repo.release.tag",
            RepositoryState(path="/w/r"),
            {"tag": "v1", "remote": "upstream", "message": "First"},
        )
    assert ["tag", "-a", "v1", "-m", "First"] in git.arguments()
    assert output_lines(dependencies) == []


def test_release_tag_dry_run(make_env, git, dependencies):
    _run(make_env(dry_run=True), "repo.release.tag", RepositoryState(path="/w/r"), {"tag": "v1"})
    assert git.calls == []
    assert output_lines(dependencies) == ["PLAN-RELEASE: /w/r -> v1 (origin)"]


def test_retag_moves_existing_and_creates_missing_tags(make_env, git, dependencies):
    git.responses[("rev-parse", "--verify", "abc123")] = "abc123\n"
    git.responses[("rev-parse", "--verify", "def456")] = "def456\n"
    git.responses[("rev-parse", "--verify", "--quiet", "refs/tags/v1.0.0")] = "0ld\n"
    mappings = [
        {"tag": "v1.0.0", "target": "abc123"},
        {"tag": "v1.1.0", "target": "def456", "message": "Fixed release"},
    ]

    _run(make_env(), "repo.release.retag", RepositoryState(path="/w/r"), {"mappings": mappings})

    assert git.mutating() == [
        ["tag", "-d", "v1.0.0"],
        ["tag", "-a", "v1.0.0", "abc123", "-m", "Retag v1.0.0 to abc123"],
        ["push", "--force", "origin", "v1.0.0"],
        ["tag", "-a", "v1.1.0", "def456", "-m", "Fixed release"],
        ["push", "--force", "origin", "v1.1.0"],
    ]
    assert output_lines(dependencies) == [
        "RETAGGED: /w/r v1.0.0 -> abc123",
        "RETAGGED: /w/r v1.1.0 -> def456",
    ]


def test_retag_unresolvable_target_touches_nothing(make_env, git):
    git.responses[("rev-parse", "--verify", "abc123")] = "abc123\n"
    mappings = [{"tag": "v1", "target": "abc123"}, {"tag": "v2", "target": "nope"}]
    with pytest.raises(ActionError, match="failed to resolve 'nope' for tag 'v2'"):
        _run(make_env(), "repo.release.retag", RepositoryState(path="/w/r"), {"mappings": mappings})
    assert git.mutating() == []


def test_retag_single_mapping_dry_run(make_env, git, dependencies):
    git.responses[("rev-parse", "--verify", "main")] = "abc\n"
    _run(
        make_env(dry_run=True),
        "repo.release.retag",
        RepositoryState(path="/w/r"),
        {"tag": "latest", "target": "main"},
    )
    assert git.mutating() == []
    assert output_lines(dependencies) == ["PLAN-RETAG: /w/r latest -> main"]


@pytest.mark.parametrize(
    "options, message",
    [
        ({}, "retag requires at least one mapping"),
        ({"mappings": [{"target": "main"}]}, "retag mapping requires 'tag'"),
        ({"tag": "v1"}, "target reference required for tag v1"),
    ],
)
def test_retag_validation(make_env, options, message):
    with pytest.raises(ActionError, match=message):
        _run(make_env(), "repo.release.retag", RepositoryState(path="/w/r"), options)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

AUDIT_HEADER = (
    "folder_name,final_github_repo,name_matches,remote_default_branch,local_branch,"
    "in_sync,remote_protocol,origin_matches_canonical,worktree_dirty,dirty_files"
)


def test_audit_row_for_canonical_repository_in_sync(make_env, git, repositories, dependencies):
    repositories.status["/w/widgets"] = [" M app.py", "?? notes.txt"]
    git.responses[("rev-parse", "HEAD")] = "abc\n"
    git.responses[("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")] = "origin/main\n"
    git.responses[("rev-parse", "origin/main")] = "abc\n"
    repository = RepositoryState(
        path="/w/widgets",
        remote_url="git@github.com:acme/widgets.git",
        canonical_full_name="acme/widgets",
        remote_default_branch="main",
    )
    env = make_env()

    _run(env, "audit.report", repository, {})
    assert output_lines(dependencies) == []
    write_reports(env)

    assert [
        "fetch", "-q", "--no-tags", "--no-recurse-submodules", "origin", "main"
    ] in git.arguments()
    assert output_lines(dependencies) == [
        AUDIT_HEADER,
        "widgets,acme/widgets,yes,main,main,yes,git,yes,yes,app.py; notes.txt",
    ]
    assert env.reports == {}


def test_audit_minimal_depth_uses_ls_remote_default(make_env, git, repositories, dependencies):
    repositories.remotes["/w/tools-local"] = {"origin": "https://github.com/acme/tools.git"}
    git.responses[("ls-remote", "--symref", "origin", "HEAD")] = (
        "ref: refs/heads/trunk\tHEAD\nabc\tHEAD\n"
    )
    env = make_env()

    _run(env, "audit.report", RepositoryState(path="/w/tools-local"), {"depth": "minimal"})
    write_reports(env)

    assert not any(args[0] == "fetch" for args in git.arguments())
    assert output_lines(dependencies) == [
        AUDIT_HEADER,
        "tools-local,acme/tools,no,trunk,,n/a,https,n/a,no,",
    ]


def test_audit_report_file_collects_every_repository(make_env, repositories, dependencies, tmp_path):
    destination = str(tmp_path / "reports" / "audit.csv")
    repositories.branches["/w/plain"] = "main"
    repositories.remotes["/w/other"] = {"origin": "ssh://git@github.com/acme/other.git"}
    repositories.branches["/w/other"] = "feature"
    env = make_env()

    for path in ("/w/plain", "/w/other"):
        _run(env, "audit.report", RepositoryState(path=path), {"output": destination})
    write_reports(env)

    assert (tmp_path / "reports" / "audit.csv").read_text().splitlines() == [
        AUDIT_HEADER,
        "plain,,yes,,main,n/a,other,n/a,no,",
        "other,acme/other,yes,,feature,n/a,ssh,n/a,no,",
    ]
    assert output_lines(dependencies) == [f"WORKFLOW-AUDIT: wrote report to {destination}"]


def test_audit_skips_non_github_origin(make_env, repositories):
    repository = RepositoryState(path="/w/r", remote_url="https://gitlab.com/acme/r.git")
    env = make_env()
    with pytest.raises(ActionSkipped, match="origin is not a GitHub remote"):
        _run(env, "audit.report", repository, {})
    assert env.reports == {}


def test_audit_dry_run_and_depth_validation(make_env, git, dependencies):
    env = make_env(dry_run=True)
    _run(env, "audit.report", RepositoryState(path="/w/r"), {"output": "audit.csv"})
    assert git.calls == []
    assert env.reports == {}
    assert output_lines(dependencies) == ["PLAN-AUDIT: /w/r -> audit.csv"]

    with pytest.raises(ActionError, match="unsupported audit depth: deep"):
        _run(env, "audit.report", RepositoryState(path="/w/r"), {"depth": "deep"})


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


class FakePackageService:
    def __init__(self):
        self.requests = []

    async def purge_untagged_versions(self, request, *, dry_run=False):
        self.requests.append((request, dry_run))
        return PurgeResult(total_versions=5, untagged_versions=2, deleted_versions=0 if dry_run else 2)


def test_packages_purge_uses_repository_defaults(make_env, dependencies, monkeypatch):
    monkeypatch.delenv("GITFLEET_GHCR_TOKEN", raising=False)
    monkeypatch.setenv("GH_TOKEN", "tok")
    service = FakePackageService()
    dependencies.package_service = service
    repository = RepositoryState(path="/w/r", name="widgets", owner="acme")

    _run(make_env(), "repo.packages.purge", repository, {"owner_type": "org"})

    request, dry_run = service.requests[0]
    assert (request.owner, request.package_name, request.owner_type, request.token) == (
        "acme",
        "widgets",
        OwnerType.ORG,
        "tok",
    )
    assert dry_run is False
    assert output_lines(dependencies) == [
        "PACKAGES-PURGE: /w/r package=widgets total=5 untagged=2 deleted=2"
    ]
