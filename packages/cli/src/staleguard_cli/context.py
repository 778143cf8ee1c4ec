"""Helpers shared by the commands that run inside a workflow."""

from __future__ import annotations

import click

from staleguard_core.event import load_event, snapshot_from_event
from staleguard_core.models import PullRequestSnapshot


def require_token(config: dict) -> str:
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "In a workflow the token needs 'contents: read' and 'pull-requests: write'."
        )
    return token


def load_payload(config: dict) -> dict:
    try:
        return load_event(config.get("event_path"))
    except ValueError as e:
        raise click.ClickException(str(e))


def load_snapshot(payload: dict) -> PullRequestSnapshot:
    try:
        return snapshot_from_event(payload)
    except ValueError as e:
        raise click.ClickException(str(e))
