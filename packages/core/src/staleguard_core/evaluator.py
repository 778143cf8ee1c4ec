"""Dismiss approvals whose reviewed diff no longer matches the pull request.

The evaluator runs on `synchronize` events and on `edited` events that moved
the base branch. It tries the cheap commit-level check first (range-diff of
the approved range against the current range) and only then compares the
diff the reviewer saw with the diff that exists now.

Three-dot diffs drift for reasons unrelated to the pull request's own
changes, so a mismatch is re-checked with a two-dot diff and, for rebaseable
pull requests, with a two-dot diff after rebasing onto the current base.
Anything that cannot be proven unchanged is treated as changed: an
unnecessary dismissal is acceptable, a missed one is not.

Known limitation: unrelated commits landing on the base branch between the
approval and the evaluation can still produce a false "stale" verdict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from github import GithubException
from rich.console import Console

from staleguard_core.diff import normalize_diff, write_diff
from staleguard_core.git.repo import GitError
from staleguard_core.models import ApprovalMetadata, EventAction, Outcome, PullRequestSnapshot
from staleguard_core.range_diff import RangeDiffResult, parse_range_diff_output

if TYPE_CHECKING:
    from staleguard_core.gh.pull_request import ReviewStateProvider
    from staleguard_core.git.repo import GitRepo

console = Console()
logger = logging.getLogger(__name__)


class EvaluationState(str, Enum):
    SKIP = "skip"
    FAST_PATH_NOT_STALE = "fast_path_not_stale"
    STALE = "stale"
    NOT_STALE = "not_stale"


class StaleReason(str, Enum):
    UNKNOWN_REVIEWED_DIFF = "unknown_reviewed_diff"
    CODE_CHANGED = "code_changed"
    TWO_DOT_FAILED = "two_dot_failed"


_MESSAGES = {
    StaleReason.UNKNOWN_REVIEWED_DIFF: "Unable to determine the diff that was reviewed, dismissing stale reviews.",
    StaleReason.CODE_CHANGED: "Code has changed, dismissing stale reviews.",
    StaleReason.TWO_DOT_FAILED: (
        "Unable to compute the two-dot diff of the current changes (treated as changed), dismissing stale reviews."
    ),
}


@dataclass
class Evaluation:
    state: EvaluationState
    reason: StaleReason | None = None
    message: str = ""
    range_diff_summary: str | None = None
    dismissed: int = 0

    @property
    def is_stale(self) -> bool:
        return self.state is EvaluationState.STALE


def is_relevant_event(snapshot: PullRequestSnapshot) -> bool:
    """Only a pushed branch or a changed base can invalidate an approval."""
    if snapshot.action is EventAction.SYNCHRONIZE:
        return True
    return snapshot.action is EventAction.EDITED and snapshot.base_changed


def compose_message(reason: StaleReason, range_result: RangeDiffResult | None = None) -> str:
    message = _MESSAGES[reason]
    if range_result is not None and range_result.is_stale:
        message += f" Range-diff: {range_result.summary}."
    return message


class StaleReviewEvaluator:
    """Evaluate one pull request event against its most recent approval.

    Assumes the pull request has at least one approval; callers check that
    first (see approvals.check_for_approvals).
    """

    def __init__(
        self,
        pull_request: ReviewStateProvider,
        git: GitRepo,
        snapshot: PullRequestSnapshot,
        cached_diff: str | None = None,
        metadata: ApprovalMetadata | None = None,
        diffs_directory: str | None = None,
        use_range_diff: bool = True,
    ):
        self._pull_request = pull_request
        self._git = git
        self._snapshot = snapshot
        self._cached_diff = cached_diff
        self._metadata = metadata
        self._diffs_directory = diffs_directory
        self._use_range_diff = use_range_diff

    def evaluate(self) -> Evaluation:
        snapshot = self._snapshot
        if not is_relevant_event(snapshot):
            logger.debug("event action is %s; skipping dismissal check.", snapshot.action.value)
            return Evaluation(state=EvaluationState.SKIP)

        range_result = self._range_diff_verdict() if self._use_range_diff else None
        if range_result is not None and not range_result.is_stale:
            console.print(f"[green]Range-diff: approved commits unchanged ({range_result.summary}).[/green]")
            return Evaluation(state=EvaluationState.FAST_PATH_NOT_STALE, range_diff_summary=range_result.summary)

        reviewed = self._reviewed_diff()
        current = normalize_diff(self._pull_request.compare_commits(snapshot.base_sha, snapshot.head_sha))
        logger.debug("current_diff: %s", current)
        write_diff(self._diffs_directory, "current.diff", current)

        reason = self._reconcile(reviewed, current)
        summary = range_result.summary if range_result is not None else None
        if reason is None:
            console.print("[green]Reviewed diff matches the current diff; approvals kept.[/green]")
            return Evaluation(state=EvaluationState.NOT_STALE, range_diff_summary=summary)

        message = compose_message(reason, range_result)
        console.print(f"[yellow]{message}[/yellow]")
        dismissed = self._pull_request.dismiss_approvals(message)
        return Evaluation(
            state=EvaluationState.STALE,
            reason=reason,
            message=message,
            range_diff_summary=summary,
            dismissed=dismissed,
        )

    # ------------------------------------------------------------------ #
    # Fast path                                                            #
    # ------------------------------------------------------------------ #

    def _range_diff_verdict(self) -> RangeDiffResult | None:
        """Compare approved and current commit ranges; None means "could not tell"."""
        metadata = self._metadata
        snapshot = self._snapshot
        if metadata is None:
            logger.info("No usable approval metadata; skipping range-diff.")
            return None

        try:
            merge_base = self._pull_request.get_merge_base(snapshot.base_ref, snapshot.head_sha)
        except GithubException as e:
            logger.warning("Could not resolve the current merge base, skipping range-diff: %s", e)
            return None

        try:
            self._git.ensure_cloned()
            self._git.fetch(metadata.merge_base_sha, metadata.approved_sha, merge_base, snapshot.head_sha, depth=None)
        except GitError as e:
            logger.warning("Could not fetch commits for range-diff: %s", e)
            return None

        output = self._git.range_diff(
            f"{metadata.merge_base_sha}..{metadata.approved_sha}",
            f"{merge_base}..{snapshot.head_sha}",
        )
        if not output.ok:
            logger.warning("git range-diff failed (%s); falling back to diff comparison.", output.failure.value)
            return None

        result = parse_range_diff_output(output.value)
        logger.info("range-diff: %s", result.summary)
        return result

    # ------------------------------------------------------------------ #
    # Diff comparison                                                      #
    # ------------------------------------------------------------------ #

    def _reviewed_diff(self) -> Outcome[str]:
        if self._cached_diff is not None:
            console.print("Using cached diff of most recent approval.")
            reviewed = Outcome.success(self._cached_diff)
        else:
            reviewed = self._pull_request.get_most_recently_reviewed_diff(self._snapshot.base_ref)

        if not reviewed.ok:
            logger.warning("Reviewed diff is unknown (%s): %s", reviewed.failure.value, reviewed.detail)
            return reviewed
        normalized = normalize_diff(reviewed.value)
        logger.debug("reviewed_diff: %s", normalized)
        write_diff(self._diffs_directory, "reviewed.diff", normalized)
        return Outcome.success(normalized)

    def _reconcile(self, reviewed: Outcome[str], current: str) -> StaleReason | None:
        """Return why the approval is stale, or None if the diffs match."""
        if not reviewed.ok:
            return StaleReason.UNKNOWN_REVIEWED_DIFF
        if reviewed.value == current:
            return None

        # A three-dot diff against a base that just merged one of our ancestor
        # branches picks up that branch's changes; a two-dot diff does not.
        snapshot = self._snapshot
        self._git.ensure_cloned()
        self._git.fetch(snapshot.base_sha, snapshot.head_sha, depth=None if snapshot.rebaseable else 1)
        two_dot = self._git.two_dot_diff(snapshot.base_sha, snapshot.head_sha)
        if not two_dot.ok:
            return StaleReason.TWO_DOT_FAILED
        current = normalize_diff(two_dot.value)
        write_diff(self._diffs_directory, "current-two-dot.diff", current)
        if reviewed.value == current:
            return None

        if snapshot.rebaseable:
            current = self._rebased_diff(current)
        return None if reviewed.value == current else StaleReason.CODE_CHANGED

    def _rebased_diff(self, fallback: str) -> str:
        snapshot = self._snapshot
        rebased = self._git.rebase(head=snapshot.head_sha, onto=snapshot.base_sha)
        if not rebased.ok:
            logger.warning("Rebase failed (%s); keeping the pre-rebase diff.", rebased.failure.value)
            return fallback
        diff = self._git.two_dot_diff(snapshot.base_sha, rebased.value)
        if not diff.ok:
            logger.warning("Two-dot diff after rebase failed (%s); keeping the pre-rebase diff.", diff.failure.value)
            return fallback
        normalized = normalize_diff(diff.value)
        write_diff(self._diffs_directory, "current-rebased.diff", normalized)
        return normalized
