"""check-approvals command: report the most recent approval."""

from __future__ import annotations

import click
from rich.console import Console

from staleguard_cli.context import load_payload, load_snapshot, require_token
from staleguard_cli.outputs import set_output
from staleguard_core.approvals import check_for_approvals
from staleguard_core.gh.pull_request import GitHubPullRequest

console = Console()


@click.command("check-approvals")
@click.pass_context
def check_approvals_cmd(ctx):
    """Output the SHA of the most recently approved commit.

    Sets the `approved_sha` step output, which is an empty string when the
    pull request has no approval. Later steps use it as the cache key for the
    approved diff.
    """
    config = ctx.obj["config"]
    token = require_token(config)
    snapshot = load_snapshot(load_payload(config))

    pull_request = GitHubPullRequest.connect(snapshot.repo_full_name, snapshot.number, token)
    info = check_for_approvals(pull_request)
    approved_sha = info.approved_sha if info else ""

    if info:
        console.print(f"Most recent approval: review {info.review_id} on {approved_sha[:7]}")
    else:
        console.print("[yellow]No approvals found.[/yellow]")

    if not set_output(config.get("output_path"), "approved_sha", approved_sha):
        click.echo(approved_sha)
