"""Approval lookups used before and at the time of an approval."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from staleguard_core.models import ApprovalInfo, ApprovalMetadata, PullRequestSnapshot

if TYPE_CHECKING:
    from staleguard_core.gh.pull_request import ReviewStateProvider

logger = logging.getLogger(__name__)


def check_for_approvals(pull_request: ReviewStateProvider) -> ApprovalInfo | None:
    """Return the commit and review ID of the most recent approval, or None."""
    approved = pull_request.get_approved_reviews()
    if not approved:
        return None
    latest = approved[-1]
    return ApprovalInfo(approved_sha=latest.commit_id or "", review_id=latest.review_id)


def build_approval_snapshot(
    pull_request: ReviewStateProvider,
    snapshot: PullRequestSnapshot,
    approved_at: datetime | None = None,
    approved_sha: str | None = None,
) -> tuple[str, ApprovalMetadata]:
    """Capture what the reviewer is approving: the diff and its commit range.

    Meant to run on the approval event itself, while the base is still the one
    the reviewer looked at. ``approved_sha`` is the commit the review was
    submitted on; it defaults to the pull request head.
    """
    approved_sha = approved_sha or snapshot.head_sha
    diff = pull_request.compare_commits(snapshot.base_sha, approved_sha)
    merge_base = pull_request.get_merge_base(snapshot.base_sha, approved_sha)
    approved_at = approved_at or datetime.now(timezone.utc)
    metadata = ApprovalMetadata(
        approved_sha=approved_sha,
        merge_base_sha=merge_base,
        base_sha=snapshot.base_sha,
        base_ref=snapshot.base_ref,
        approved_at=approved_at.isoformat(),
    )
    logger.debug("Approval snapshot for %s: merge base %s", approved_sha, merge_base)
    return diff, metadata
