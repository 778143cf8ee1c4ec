"""Classify `git range-diff` output into a stale / not-stale verdict.

git range-diff prints one record per commit pair:

    1:  abc1234 = 1:  def5678 subject     identical
    2:  abc1234 ! 2:  def5678 subject     modified (followed by indented detail)
    3:  abc1234 < -:  ------- subject     removed from the new range
    -:  ------- > 3:  def5678 subject     added in the new range

A clean rebase with no edits yields only "=" records, which proves the
reviewed commits are still what the pull request contains even though the
base moved underneath them.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

_RECORD_RE = re.compile(r"^ {0,3}(?:\d+|-+):\s+[0-9a-f-]+\s+([=!<>])\s+(?:\d+|-+):")

_LABELS = {"=": "identical", "!": "modified", ">": "added", "<": "removed"}


@dataclass(frozen=True)
class RangeDiffResult:
    is_stale: bool
    summary: str


def parse_range_diff_output(output: str | None) -> RangeDiffResult:
    """Tally range-diff records; any non-identical record means stale.

    git right-aligns commit numbers, so a record may carry up to three spaces
    of padding. Blank lines and detail lines (four spaces or a tab) are
    skipped. Lines that do not look like a record are ignored, so an
    unfamiliar format yields "no evidence" rather than an error.
    """
    if not output or not output.strip():
        return RangeDiffResult(is_stale=False, summary="no changes detected")

    counts: Counter[str] = Counter()
    for line in output.splitlines():
        if not line.strip() or line.startswith(("    ", "\t")):
            continue
        match = _RECORD_RE.match(line)
        if match:
            counts[_LABELS[match.group(1)]] += 1

    parts = [f"{counts[label]} {label}" for label in ("modified", "added", "removed") if counts[label]]
    if parts:
        return RangeDiffResult(is_stale=True, summary=", ".join(parts))

    identical = counts["identical"]
    if identical:
        noun = "commit" if identical == 1 else "commits"
        return RangeDiffResult(is_stale=False, summary=f"{identical} identical {noun}")
    return RangeDiffResult(is_stale=False, summary="no changes detected")
