"""snapshot command: cache what the reviewer approved."""

from __future__ import annotations

from datetime import datetime

import click
from github import GithubException
from rich.console import Console

from staleguard_cli.context import load_payload, load_snapshot, require_token
from staleguard_core.approvals import build_approval_snapshot
from staleguard_core.event import review_commit, review_state
from staleguard_core.gh.pull_request import GitHubPullRequest

console = Console()


def _submitted_at(payload: dict) -> datetime | None:
    raw = (payload.get("review") or {}).get("submitted_at")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


@click.command("snapshot")
@click.pass_context
def snapshot_cmd(ctx):
    """Cache the approved diff and approval metadata.

    Runs on `pull_request_review` events. Reviews that are not approvals are
    ignored. The artifacts are written to the configured store, keyed by the
    commit the review was submitted on (the head SHA if the payload omits
    it), for a cache action to save.
    """
    from staleguard_store.noop import NoOpStore

    config = ctx.obj["config"]
    store = ctx.obj["store"]
    payload = load_payload(config)

    if review_state(payload) != "APPROVED":
        console.print("[dim]Review is not an approval; nothing to cache.[/dim]")
        return
    if isinstance(store, NoOpStore):
        console.print("[yellow]No store configured (store: noop); approval will not be cached.[/yellow]")
        return

    token = require_token(config)
    snapshot = load_snapshot(payload)
    approved_sha = review_commit(payload) or snapshot.head_sha
    try:
        pull_request = GitHubPullRequest.connect(snapshot.repo_full_name, snapshot.number, token)
        diff, metadata = build_approval_snapshot(
            pull_request, snapshot, approved_at=_submitted_at(payload), approved_sha=approved_sha
        )
    except GithubException as e:
        raise click.ClickException(str(e))

    store.save_diff(approved_sha, diff)
    store.save_metadata(approved_sha, metadata.to_dict())
    console.print(
        f"[green]Cached approved diff for {approved_sha[:7]} (merge base {metadata.merge_base_sha[:7]}).[/green]"
    )
