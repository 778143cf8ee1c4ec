"""Review history of a pull request.

ReviewStateProvider is the narrow interface the evaluator depends on; the
GitHub-backed implementation below is the only production one, and tests
substitute in-memory fakes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from github import Github, GithubException

from staleguard_core.models import FailureReason, Outcome, ReviewApproval, TimelineEvent

logger = logging.getLogger(__name__)

BASE_REF_CHANGED = "base_ref_changed"
_DIFF_MEDIA_TYPE = "application/vnd.github.diff"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


class ReviewStateProvider(ABC):
    """Read reviews, timeline events and diffs of one pull request; dismiss approvals."""

    @abstractmethod
    def get_reviews(self) -> list[ReviewApproval]:
        """Return every review on the pull request, in any state."""

    @abstractmethod
    def get_events(self) -> list[TimelineEvent]:
        """Return timeline events in chronological order."""

    @abstractmethod
    def compare_commits(self, base: str, head: str) -> str:
        """Return the raw three-dot diff ``base...head``. Raises on API errors."""

    @abstractmethod
    def get_merge_base(self, base: str, head: str) -> str:
        """Return the SHA of the merge base of ``base`` and ``head``."""

    @abstractmethod
    def dismiss_review(self, review_id: int, message: str) -> None:
        """Dismiss a single review."""

    def get_approved_reviews(self) -> list[ReviewApproval]:
        """Approved reviews, oldest first."""
        reviews = self.get_reviews()
        logger.info("found %d reviews", len(reviews))
        for review in reviews:
            logger.info("review: %s %s %s %s", review.review_id, review.commit_id, review.state, review.submitted_at)
        approved = [r for r in reviews if r.state == "APPROVED"]
        return sorted(approved, key=lambda r: r.submitted_at or _EPOCH)

    def dismiss_approvals(self, message: str) -> int:
        """Dismiss every approval concurrently and return how many were dismissed.

        All requests are attempted; if any failed, the first error is raised
        once the rest have finished.
        """
        approvals = self.get_approved_reviews()
        if not approvals:
            return 0
        errors: list[Exception] = []
        with ThreadPoolExecutor(max_workers=min(len(approvals), 8)) as executor:
            futures = {executor.submit(self.dismiss_review, r.review_id, message): r for r in approvals}
            for future, review in futures.items():
                try:
                    future.result()
                except Exception as e:
                    logger.error("Could not dismiss review %s: %s", review.review_id, e)
                    errors.append(e)
        if errors:
            raise errors[0]
        return len(approvals)

    def get_most_recently_reviewed_diff(self, base_ref: str) -> Outcome[str]:
        """Reconstruct the three-dot diff the latest approval was given on.

        Only possible when the base branch at approval time is still known:
        if the base was changed at or after the approval, the previous base
        cannot be recovered from the REST API and the diff is unknown. The
        compare itself also fails once the approved head has been garbage
        collected after a force push.
        """
        approvals = self.get_approved_reviews()
        if not approvals:
            return Outcome.fail(FailureReason.MISSING_DATA, "no approvals")
        latest = approvals[-1]
        if latest.submitted_at is None:
            return Outcome.fail(FailureReason.MISSING_DATA, "unable to determine time of approval")
        if not latest.commit_id:
            return Outcome.fail(FailureReason.MISSING_DATA, "unable to determine commit of approval")

        try:
            events = self.get_events()
        except GithubException as e:
            logger.warning("Unable to list timeline events: %s", e)
            return Outcome.fail(FailureReason.API_ERROR, str(e))

        for event in reversed(events):
            if event.created_at is None:
                return Outcome.fail(FailureReason.MISSING_DATA, "unable to determine time of event")
            if event.created_at < latest.submitted_at:
                break
            if event.event == BASE_REF_CHANGED:
                logger.info("Base branch changed after the approval; reviewed diff is unknown.")
                return Outcome.fail(FailureReason.BASE_BRANCH_CHANGED, "base branch changed since approval")

        try:
            return Outcome.success(self.compare_commits(base_ref, latest.commit_id))
        except GithubException as e:
            logger.warning("Unable to get diff for %s...%s: %s", base_ref, latest.commit_id, e)
            return Outcome.fail(FailureReason.API_ERROR, str(e))


class GitHubPullRequest(ReviewStateProvider):
    """ReviewStateProvider backed by the GitHub REST API via PyGithub."""

    def __init__(self, repo, pull_number: int):
        self._repo = repo
        self._pull = get_pull(repo, pull_number)

    @classmethod
    def connect(cls, repo_name: str, pull_number: int, token: str) -> GitHubPullRequest:
        return cls(get_repo(repo_name, token), pull_number)

    def get_reviews(self) -> list[ReviewApproval]:
        return [
            ReviewApproval(
                review_id=review.id,
                commit_id=review.commit_id,
                submitted_at=review.submitted_at,
                state=review.state,
            )
            for review in self._pull.get_reviews()
        ]

    def get_events(self) -> list[TimelineEvent]:
        return [
            TimelineEvent(event=event.event, created_at=event.created_at)
            for event in self._pull.as_issue().get_events()
        ]

    def compare_commits(self, base: str, head: str) -> str:
        # PyGithub's Comparison object has no raw diff, so ask for the diff
        # media type directly.
        status, headers, data = self._repo.requester.requestJson(
            "GET",
            f"{self._repo.url}/compare/{base}...{head}",
            headers={"Accept": _DIFF_MEDIA_TYPE},
        )
        if status != 200:
            raise GithubException(status, data, headers)
        if not isinstance(data, str):
            raise GithubException(status, "Response from GitHub API was not a string.", headers)
        return data

    def get_merge_base(self, base: str, head: str) -> str:
        return self._repo.compare(base, head).merge_base_commit.sha

    def dismiss_review(self, review_id: int, message: str) -> None:
        self._pull.get_review(review_id).dismiss(message)
