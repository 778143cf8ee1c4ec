"""dismiss-stale command: dismiss approvals whose reviewed code has changed."""

from __future__ import annotations

from pathlib import Path

import click
from github import GithubException
from rich.console import Console

from staleguard_cli.context import load_payload, load_snapshot, require_token
from staleguard_core.approvals import check_for_approvals
from staleguard_core.config import resolve_repo_path
from staleguard_core.evaluator import EvaluationState, StaleReviewEvaluator, is_relevant_event
from staleguard_core.gh.pull_request import GitHubPullRequest
from staleguard_core.git.repo import GitError, GitRepo
from staleguard_core.models import ApprovalMetadata

console = Console()


@click.command("dismiss-stale")
@click.option(
    "--cached-diff",
    "cached_diff_path",
    default=None,
    help="Path to a cached diff of the approval. Overrides the configured store.",
)
@click.option("--repo-path", default=None, help="Working copy location. Cloned there if missing.")
@click.option("--diffs-directory", default=None, help="Write every computed diff here for debugging.")
@click.option("--no-range-diff", is_flag=True, help="Skip the commit-range fast path.")
@click.pass_context
def dismiss_stale_cmd(
    ctx,
    cached_diff_path: str | None,
    repo_path: str | None,
    diffs_directory: str | None,
    no_range_diff: bool,
):
    """Dismiss approvals if the approved diff no longer matches the pull request.

    Runs on `pull_request` events. Only `synchronize` and base-changing
    `edited` events are evaluated; anything else exits successfully without
    doing any work, so the job can be a required status check.
    """
    config = ctx.obj["config"]
    store = ctx.obj["store"]
    token = require_token(config)
    snapshot = load_snapshot(load_payload(config))

    if not is_relevant_event(snapshot):
        console.print(f"[dim]Event action is {snapshot.action.value}; skipping dismissal check.[/dim]")
        return

    try:
        pull_request = GitHubPullRequest.connect(snapshot.repo_full_name, snapshot.number, token)
        approval = check_for_approvals(pull_request)
        if approval is None:
            console.print("[dim]No approvals to dismiss.[/dim]")
            return

        key = approval.approved_sha
        cached_diff = _read_cached_diff(cached_diff_path) if cached_diff_path else store.load_diff(key)
        raw_metadata = store.load_metadata(key)
        metadata = ApprovalMetadata.from_dict(raw_metadata)
        if raw_metadata is not None and metadata is None:
            console.print("[yellow]Cached approval metadata has an unknown format; ignoring it.[/yellow]")

        git = GitRepo(
            repo_full_name=snapshot.repo_full_name,
            repo_path=repo_path or resolve_repo_path(config),
            token=token,
            max_buffer_bytes=config.get("max_buffer_bytes", 32 * 1024 * 1024),
        )
        evaluator = StaleReviewEvaluator(
            pull_request,
            git,
            snapshot,
            cached_diff=cached_diff,
            metadata=metadata,
            diffs_directory=diffs_directory or config.get("diffs_directory"),
            use_range_diff=config.get("range_diff", True) and not no_range_diff,
        )
        evaluation = evaluator.evaluate()
    except (GithubException, GitError) as e:
        raise click.ClickException(str(e))

    if evaluation.state is EvaluationState.STALE:
        console.print(f"[bold]Dismissed {evaluation.dismissed} approval(s).[/bold]")


def _read_cached_diff(path: str) -> str | None:
    p = Path(path)
    if not p.exists():
        return None
    console.print(f"[dim]Using cached diff at {path}.[/dim]")
    return p.read_text(encoding="utf-8")
