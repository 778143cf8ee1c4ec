"""Turn a GitHub Actions event payload into a PullRequestSnapshot."""

from __future__ import annotations

import json
from pathlib import Path

from staleguard_core.models import EventAction, PullRequestSnapshot


def load_event(event_path: str | None) -> dict:
    """Read the JSON payload GitHub Actions writes to $GITHUB_EVENT_PATH."""
    if not event_path:
        raise ValueError("GITHUB_EVENT_PATH is not set; this must run inside a GitHub Actions workflow.")
    path = Path(event_path)
    if not path.exists():
        raise ValueError(f"Event payload not found: {event_path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _base_changed(payload: dict) -> bool:
    changes = payload.get("changes") or {}
    base = changes.get("base") or {}
    sha = base.get("sha") or {}
    return bool(sha.get("from"))


def snapshot_from_event(payload: dict) -> PullRequestSnapshot:
    """Build the snapshot the evaluator runs against.

    Raises ValueError when the payload is not a pull request event or the
    repository cannot be identified.
    """
    pull_request = payload.get("pull_request")
    repository = payload.get("repository")
    if not pull_request or not repository:
        raise ValueError("This action must be run on a pull request.")
    full_name = repository.get("full_name")
    if not full_name:
        raise ValueError("Unable to determine repository name.")

    number = pull_request.get("number")
    if number is None:
        raise ValueError("Unable to determine pull request number.")

    action = EventAction.parse(payload.get("action"))
    base = pull_request.get("base") or {}
    head = pull_request.get("head") or {}
    return PullRequestSnapshot(
        repo_full_name=full_name,
        number=number,
        base_ref=base.get("ref", ""),
        base_sha=base.get("sha", ""),
        head_sha=head.get("sha", ""),
        # GitHub reports null while mergeability is still being computed.
        rebaseable=bool(pull_request.get("rebaseable")),
        action=action,
        base_changed=action is EventAction.EDITED and _base_changed(payload),
    )


def review_state(payload: dict) -> str:
    """State of the review on a pull_request_review event, upper-cased ("" if absent)."""
    review = payload.get("review") or {}
    return (review.get("state") or "").upper()


def review_commit(payload: dict) -> str | None:
    """Commit the review on a pull_request_review event was submitted on, if reported."""
    review = payload.get("review") or {}
    return review.get("commit_id") or None
