"""Tests for the CLI entry point."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import yaml
from click.testing import CliRunner
from github import GithubException

from staleguard_cli.cli import _build_store, main
from staleguard_cli.outputs import set_output
from staleguard_core.evaluator import Evaluation, EvaluationState, StaleReason
from staleguard_core.git.repo import GitError
from staleguard_core.models import APPROVAL_METADATA_VERSION, ApprovalInfo
from staleguard_store.file import FileStore
from staleguard_store.noop import NoOpStore

APPROVED_SHA = "a" * 40
HEAD_SHA = "h" * 40


def _make_config(event_path=None, github_token="tok", output_path=None):
    return {
        "github_token": github_token,
        "event_path": event_path,
        "workspace": None,
        "output_path": output_path,
        "repo_path": "/tmp/repo",
        "store": "file",
        "cache_dir": ".",
        "diffs_directory": None,
        "max_buffer_bytes": 1024,
        "range_diff": True,
    }


def _write_event(tmp_path, action="synchronize", review_state=None, review_commit=None):
    payload = {
        "action": action,
        "repository": {"full_name": "owner/repo"},
        "pull_request": {
            "number": 7,
            "base": {"ref": "main", "sha": "b" * 40},
            "head": {"sha": HEAD_SHA},
            "rebaseable": True,
        },
    }
    if review_state:
        payload["review"] = {"state": review_state, "submitted_at": "2024-05-01T10:00:00Z"}
        if review_commit:
            payload["review"]["commit_id"] = review_commit
    path = tmp_path / "event.json"
    path.write_text(json.dumps(payload))
    return str(path)


def _patch_common(mocker, config=None, token="tok", store=None):
    """Patch load_config, resolve_github_token, and _build_store for most tests."""
    cfg = config or _make_config()
    mocker.patch("staleguard_core.config.load_config", return_value=cfg)
    mocker.patch("staleguard_cli.auth.resolve_github_token", return_value=token)
    # FileStore spec so isinstance(store, NoOpStore) is False.
    mock_store = store or MagicMock(spec=FileStore)
    if store is None:
        mock_store.load_diff.return_value = None
        mock_store.load_metadata.return_value = None
    mocker.patch("staleguard_cli.cli._build_store", return_value=mock_store)
    return cfg, mock_store


def _metadata_record(approved_sha=APPROVED_SHA):
    return {
        "version": APPROVAL_METADATA_VERSION,
        "approved_sha": approved_sha,
        "merge_base_sha": "m" * 40,
        "base_sha": "m" * 40,
        "base_ref": "main",
        "approved_at": "2024-05-01T10:00:00+00:00",
    }


class TestCLIValidation:
    def test_missing_github_token(self, mocker, tmp_path):
        _patch_common(mocker, config=_make_config(_write_event(tmp_path), github_token=None), token=None)

        result = CliRunner().invoke(main, ["check-approvals"])
        assert result.exit_code != 0
        assert "GITHUB_TOKEN" in result.output

    def test_missing_event_path(self, mocker):
        _patch_common(mocker, config=_make_config(event_path=None))

        result = CliRunner().invoke(main, ["dismiss-stale"])
        assert result.exit_code != 0
        assert "GITHUB_EVENT_PATH" in result.output

    def test_non_pull_request_event(self, mocker, tmp_path):
        path = tmp_path / "event.json"
        path.write_text(json.dumps({"action": "push", "repository": {"full_name": "owner/repo"}}))
        _patch_common(mocker, config=_make_config(str(path)))

        result = CliRunner().invoke(main, ["check-approvals"])
        assert result.exit_code != 0
        assert "must be run on a pull request" in result.output


# ---------------------------------------------------------------------------
# check-approvals command
# ---------------------------------------------------------------------------


class TestCheckApprovalsCommand:
    def test_writes_step_output(self, mocker, tmp_path):
        output = tmp_path / "output"
        _patch_common(mocker, config=_make_config(_write_event(tmp_path), output_path=str(output)))
        mocker.patch("staleguard_cli.commands.check.GitHubPullRequest")
        mocker.patch(
            "staleguard_cli.commands.check.check_for_approvals",
            return_value=ApprovalInfo(approved_sha=APPROVED_SHA, review_id=3),
        )

        result = CliRunner().invoke(main, ["check-approvals"])

        assert result.exit_code == 0
        lines = output.read_text().splitlines()
        assert lines[0].startswith("approved_sha<<")
        assert lines[1] == APPROVED_SHA

    def test_prints_sha_outside_actions(self, mocker, tmp_path):
        _patch_common(mocker, config=_make_config(_write_event(tmp_path)))
        mock_connect = mocker.patch("staleguard_cli.commands.check.GitHubPullRequest").connect
        mocker.patch(
            "staleguard_cli.commands.check.check_for_approvals",
            return_value=ApprovalInfo(approved_sha=APPROVED_SHA, review_id=3),
        )

        result = CliRunner().invoke(main, ["check-approvals"])

        assert result.exit_code == 0
        assert APPROVED_SHA in result.output
        mock_connect.assert_called_once_with("owner/repo", 7, "tok")

    def test_no_approvals_outputs_empty_string(self, mocker, tmp_path):
        output = tmp_path / "output"
        _patch_common(mocker, config=_make_config(_write_event(tmp_path), output_path=str(output)))
        mocker.patch("staleguard_cli.commands.check.GitHubPullRequest")
        mocker.patch("staleguard_cli.commands.check.check_for_approvals", return_value=None)

        result = CliRunner().invoke(main, ["check-approvals"])

        assert result.exit_code == 0
        assert output.read_text().splitlines()[1] == ""


# ---------------------------------------------------------------------------
# dismiss-stale command
# ---------------------------------------------------------------------------


class TestDismissStaleCommand:
    def _setup(self, mocker, tmp_path, action="synchronize", approval=True, store=None):
        cfg, mock_store = _patch_common(mocker, config=_make_config(_write_event(tmp_path, action)), store=store)
        mock_pr_cls = mocker.patch("staleguard_cli.commands.dismiss.GitHubPullRequest")
        mocker.patch(
            "staleguard_cli.commands.dismiss.check_for_approvals",
            return_value=ApprovalInfo(approved_sha=APPROVED_SHA, review_id=3) if approval else None,
        )
        mock_evaluator_cls = mocker.patch("staleguard_cli.commands.dismiss.StaleReviewEvaluator")
        mock_evaluator_cls.return_value.evaluate.return_value = Evaluation(state=EvaluationState.NOT_STALE)
        return mock_store, mock_pr_cls, mock_evaluator_cls

    def test_irrelevant_event_does_no_work(self, mocker, tmp_path):
        _, mock_pr_cls, mock_evaluator_cls = self._setup(mocker, tmp_path, action="opened")

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 0
        mock_pr_cls.connect.assert_not_called()
        mock_evaluator_cls.assert_not_called()

    def test_no_approvals_skips_evaluation(self, mocker, tmp_path):
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path, approval=False)

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 0
        mock_evaluator_cls.assert_not_called()

    def test_cached_artifacts_loaded_by_approved_sha(self, mocker, tmp_path):
        mock_store = MagicMock(spec=FileStore)
        mock_store.load_diff.return_value = "cached diff"
        mock_store.load_metadata.return_value = _metadata_record()
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path, store=mock_store)

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 0
        mock_store.load_diff.assert_called_once_with(APPROVED_SHA)
        mock_store.load_metadata.assert_called_once_with(APPROVED_SHA)
        kwargs = mock_evaluator_cls.call_args.kwargs
        assert kwargs["cached_diff"] == "cached diff"
        assert kwargs["metadata"].merge_base_sha == "m" * 40
        assert kwargs["use_range_diff"] is True

    def test_unknown_metadata_format_ignored(self, mocker, tmp_path):
        mock_store = MagicMock(spec=FileStore)
        mock_store.load_diff.return_value = None
        mock_store.load_metadata.return_value = {"version": 99}
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path, store=mock_store)

        CliRunner().invoke(main, ["dismiss-stale"])

        assert mock_evaluator_cls.call_args.kwargs["metadata"] is None

    def test_cached_diff_option_overrides_store(self, mocker, tmp_path):
        mock_store, _, mock_evaluator_cls = self._setup(mocker, tmp_path)
        diff_file = tmp_path / "approved.diff"
        diff_file.write_text("diff from file")

        CliRunner().invoke(main, ["dismiss-stale", "--cached-diff", str(diff_file)])

        assert mock_evaluator_cls.call_args.kwargs["cached_diff"] == "diff from file"
        mock_store.load_diff.assert_not_called()

    def test_missing_cached_diff_file_is_a_miss(self, mocker, tmp_path):
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path)

        CliRunner().invoke(main, ["dismiss-stale", "--cached-diff", str(tmp_path / "missing.diff")])

        assert mock_evaluator_cls.call_args.kwargs["cached_diff"] is None

    def test_options_passed_through(self, mocker, tmp_path):
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path)

        CliRunner().invoke(
            main,
            ["dismiss-stale", "--no-range-diff", "--diffs-directory", "out", "--repo-path", "/work/checkout"],
        )

        args, kwargs = mock_evaluator_cls.call_args
        assert kwargs["use_range_diff"] is False
        assert kwargs["diffs_directory"] == "out"
        git = args[1]
        assert str(git.repo_path) == "/work/checkout"
        assert git.max_buffer_bytes == 1024

    def test_reports_dismissals(self, mocker, tmp_path):
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path)
        mock_evaluator_cls.return_value.evaluate.return_value = Evaluation(
            state=EvaluationState.STALE,
            reason=StaleReason.CODE_CHANGED,
            message="Code has changed, dismissing stale reviews.",
            dismissed=2,
        )

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 0
        assert "Dismissed 2 approval(s)" in result.output

    def test_git_error_fails_the_command(self, mocker, tmp_path):
        _, _, mock_evaluator_cls = self._setup(mocker, tmp_path)
        mock_evaluator_cls.return_value.evaluate.side_effect = GitError(["git", "fetch"], 128, "fatal: bad object")

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 1
        assert "git fetch" in result.output

    def test_api_error_fails_the_command(self, mocker, tmp_path):
        _, mock_pr_cls, _ = self._setup(mocker, tmp_path)
        mock_pr_cls.connect.side_effect = GithubException(401, "Bad credentials", None)

        result = CliRunner().invoke(main, ["dismiss-stale"])

        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# snapshot command
# ---------------------------------------------------------------------------


class TestSnapshotCommand:
    def test_ignores_non_approval_reviews(self, mocker, tmp_path):
        _, mock_store = _patch_common(mocker, config=_make_config(_write_event(tmp_path, "submitted", "commented")))
        mock_pr_cls = mocker.patch("staleguard_cli.commands.snapshot.GitHubPullRequest")

        result = CliRunner().invoke(main, ["snapshot"])

        assert result.exit_code == 0
        mock_pr_cls.connect.assert_not_called()
        mock_store.save_diff.assert_not_called()

    def test_noop_store_skips_snapshot(self, mocker, tmp_path):
        _patch_common(mocker, config=_make_config(_write_event(tmp_path, "submitted", "approved")), store=NoOpStore())
        mock_pr_cls = mocker.patch("staleguard_cli.commands.snapshot.GitHubPullRequest")

        result = CliRunner().invoke(main, ["snapshot"])

        assert result.exit_code == 0
        mock_pr_cls.connect.assert_not_called()

    def test_saves_diff_and_metadata(self, mocker, tmp_path):
        _, mock_store = _patch_common(mocker, config=_make_config(_write_event(tmp_path, "submitted", "approved")))
        mock_pull_request = mocker.patch("staleguard_cli.commands.snapshot.GitHubPullRequest").connect.return_value
        mock_pull_request.compare_commits.return_value = "approved diff"
        mock_pull_request.get_merge_base.return_value = "m" * 40

        result = CliRunner().invoke(main, ["snapshot"])

        assert result.exit_code == 0
        mock_store.save_diff.assert_called_once_with(HEAD_SHA, "approved diff")
        key, record = mock_store.save_metadata.call_args.args
        assert key == HEAD_SHA
        assert record["approved_sha"] == HEAD_SHA
        assert record["merge_base_sha"] == "m" * 40
        assert record["approved_at"] == "2024-05-01T10:00:00+00:00"

    def test_keys_artifacts_by_reviewed_commit(self, mocker, tmp_path):
        event = _write_event(tmp_path, "submitted", "approved", review_commit=APPROVED_SHA)
        _, mock_store = _patch_common(mocker, config=_make_config(event))
        mock_pull_request = mocker.patch("staleguard_cli.commands.snapshot.GitHubPullRequest").connect.return_value
        mock_pull_request.compare_commits.return_value = "approved diff"
        mock_pull_request.get_merge_base.return_value = "m" * 40

        result = CliRunner().invoke(main, ["snapshot"])

        assert result.exit_code == 0
        mock_pull_request.compare_commits.assert_called_once_with("b" * 40, APPROVED_SHA)
        mock_store.save_diff.assert_called_once_with(APPROVED_SHA, "approved diff")
        key, record = mock_store.save_metadata.call_args.args
        assert key == APPROVED_SHA
        assert record["approved_sha"] == APPROVED_SHA

    def test_api_error_fails_the_command(self, mocker, tmp_path):
        _, mock_store = _patch_common(mocker, config=_make_config(_write_event(tmp_path, "submitted", "approved")))
        mock_pull_request = mocker.patch("staleguard_cli.commands.snapshot.GitHubPullRequest").connect.return_value
        mock_pull_request.compare_commits.side_effect = GithubException(404, "Not Found", None)

        result = CliRunner().invoke(main, ["snapshot"])

        assert result.exit_code == 1
        mock_store.save_diff.assert_not_called()


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestResolveGithubToken:
    def test_returns_env_var_when_set(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert resolve_github_token() == "env-token"

    def test_gh_token_env_var_used(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.setenv("GH_TOKEN", "gh-env-token")
        assert resolve_github_token() == "gh-env-token"

    def test_falls_back_to_gh_cli(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="gh-token\n")
            result = resolve_github_token()
        assert result == "gh-token"

    def test_returns_none_when_gh_not_installed(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError):
            result = resolve_github_token()
        assert result is None

    def test_returns_none_when_gh_times_out(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=5)):
            result = resolve_github_token()
        assert result is None

    def test_returns_none_when_gh_returns_error(self, monkeypatch):
        from staleguard_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="")
            result = resolve_github_token()
        assert result is None


# ---------------------------------------------------------------------------
# _build_store
# ---------------------------------------------------------------------------


class TestBuildStore:
    def test_returns_file_store_by_default(self):
        store = _build_store({})
        assert isinstance(store, FileStore)

    def test_file_store_uses_configured_paths(self, tmp_path):
        store = _build_store(
            {
                "store": "file",
                "cache_dir": str(tmp_path),
                "diff_filename": "x.diff",
                "metadata_filename": "x.json",
            }
        )
        assert store.diff_path == tmp_path / "x.diff"
        assert store.metadata_path == tmp_path / "x.json"

    def test_returns_noop_when_explicitly_set(self):
        assert isinstance(_build_store({"store": "noop"}), NoOpStore)

    def test_falls_back_to_noop_for_unknown_store(self):
        assert isinstance(_build_store({"store": "s3"}), NoOpStore)


# ---------------------------------------------------------------------------
# outputs.py
# ---------------------------------------------------------------------------


class TestSetOutput:
    def test_no_output_file(self):
        assert set_output(None, "approved_sha", "abc") is False

    def test_appends_heredoc_block(self, tmp_path):
        output = tmp_path / "output"
        output.write_text("previous=1\n")

        assert set_output(str(output), "approved_sha", "abc") is True

        lines = output.read_text().splitlines()
        assert lines[0] == "previous=1"
        assert lines[1].startswith("approved_sha<<EOF_")
        assert lines[2] == "abc"
        assert lines[3] == lines[1].split("<<", 1)[1]


# ---------------------------------------------------------------------------
# init command
# ---------------------------------------------------------------------------


class TestInitCommand:
    def test_writes_config_with_file_store(self, mocker, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["init"], input="file\n.cache/staleguard\ny\nN\n")

        assert result.exit_code == 0
        config = yaml.safe_load((tmp_path / ".staleguard.yml").read_text())
        assert config == {"store": "file", "cache_dir": ".cache/staleguard", "range_diff": True}
        assert not (tmp_path / ".github").exists()

    def test_noop_store_has_no_cache_dir(self, mocker, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _patch_common(mocker)

        CliRunner().invoke(main, ["init"], input="noop\nn\nN\n")

        config = yaml.safe_load((tmp_path / ".staleguard.yml").read_text())
        assert config == {"store": "noop", "range_diff": False}

    def test_preserves_existing_keys(self, mocker, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".staleguard.yml").write_text("diffs_directory: debug\n")
        _patch_common(mocker)

        CliRunner().invoke(main, ["init"], input="noop\ny\nN\n")

        config = yaml.safe_load((tmp_path / ".staleguard.yml").read_text())
        assert config["diffs_directory"] == "debug"
        assert config["store"] == "noop"

    def test_writes_both_workflows_for_file_store(self, mocker, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["init", "--branches", "main, release"], input="file\n.staleguard\ny\nY\n")

        assert result.exit_code == 0
        workflows = tmp_path / ".github" / "workflows"
        snapshot_text = (workflows / "staleguard-snapshot.yml").read_text()
        snapshot = yaml.safe_load(snapshot_text)
        dismiss_text = (workflows / "staleguard-dismiss.yml").read_text()
        dismiss = yaml.safe_load(dismiss_text)
        assert "staleguard snapshot" in str(snapshot)
        assert "github.event.review.commit_id || github.event.pull_request.head.sha" in snapshot_text
        assert "staleguard dismiss-stale" in dismiss_text
        # PyYAML parses the bare `on:` key as the boolean True.
        assert dismiss[True]["pull_request"]["branches"] == ["main", "release"]
        assert dismiss[True]["pull_request"]["types"] == ["opened", "synchronize", "edited"]
        assert "${{ steps.check.outputs.approved_sha }}" in dismiss_text
        assert ".staleguard/approved.diff" in dismiss_text

    def test_noop_store_writes_only_dismiss_workflow(self, mocker, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _patch_common(mocker)

        CliRunner().invoke(main, ["init"], input="noop\ny\nY\n")

        workflows = tmp_path / ".github" / "workflows"
        assert (workflows / "staleguard-dismiss.yml").exists()
        assert not (workflows / "staleguard-snapshot.yml").exists()
