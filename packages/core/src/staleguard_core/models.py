"""Value types shared by the staleness engine.

Everything here is a read-only snapshot rebuilt on every run. The only record
that outlives a run is ApprovalMetadata, and it is owned by the cache store,
not by this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")

APPROVAL_METADATA_VERSION = 1

_METADATA_FIELDS = ("approved_sha", "merge_base_sha", "base_sha", "base_ref", "approved_at")


class FailureReason(str, Enum):
    """Why a soft operation could not produce a value."""

    BASE_BRANCH_CHANGED = "base_branch_changed"
    API_ERROR = "api_error"
    GIT_ERROR = "git_error"
    BUFFER_EXCEEDED = "buffer_exceeded"
    REBASE_CONFLICT = "rebase_conflict"
    MISSING_DATA = "missing_data"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a typed failure.

    Soft failures (diff reconstruction, rebase, range-diff, oversized output)
    travel as Outcome values instead of exceptions so callers have to decide
    what a missing value means at the point of use.
    """

    value: T | None = None
    failure: FailureReason | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, reason: FailureReason, detail: str = "") -> Outcome[T]:
        return cls(failure=reason, detail=detail)


class EventAction(str, Enum):
    OPENED = "opened"
    SYNCHRONIZE = "synchronize"
    EDITED = "edited"
    OTHER = "other"

    @classmethod
    def parse(cls, action: str | None) -> EventAction:
        try:
            return cls(action)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class PullRequestSnapshot:
    """The triggering pull_request event, reduced to what the evaluator needs."""

    repo_full_name: str
    number: int
    base_ref: str
    base_sha: str
    head_sha: str
    rebaseable: bool = False
    action: EventAction = EventAction.OTHER
    # True only for an `edited` event that recorded the previous base SHA.
    base_changed: bool = False


@dataclass(frozen=True)
class ReviewApproval:
    review_id: int
    commit_id: str | None
    submitted_at: datetime | None
    state: str


@dataclass(frozen=True)
class TimelineEvent:
    event: str
    created_at: datetime | None


@dataclass(frozen=True)
class ApprovalInfo:
    """Most recent approval on a pull request."""

    approved_sha: str
    review_id: int


@dataclass(frozen=True)
class ApprovalMetadata:
    """Persisted context of an approval, used by the range-diff fast path."""

    approved_sha: str
    merge_base_sha: str
    base_sha: str
    base_ref: str
    approved_at: str  # ISO-8601 UTC timestamp
    version: int = APPROVAL_METADATA_VERSION

    @classmethod
    def from_dict(cls, data: dict | None) -> ApprovalMetadata | None:
        """Decode a persisted record, or return None if it cannot be trusted.

        A record written by a different schema version, or missing any field,
        is treated as absent so the evaluator falls back to diff comparison.
        """
        if not isinstance(data, dict):
            return None
        if data.get("version") != APPROVAL_METADATA_VERSION:
            return None
        values = {name: data.get(name) for name in _METADATA_FIELDS}
        if not all(isinstance(v, str) and v for v in values.values()):
            return None
        return cls(version=APPROVAL_METADATA_VERSION, **values)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "approved_sha": self.approved_sha,
            "merge_base_sha": self.merge_base_sha,
            "base_sha": self.base_sha,
            "base_ref": self.base_ref,
            "approved_at": self.approved_at,
        }
