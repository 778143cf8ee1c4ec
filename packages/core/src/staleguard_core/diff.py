"""Diff canonicalisation and debug dumps."""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# "index <blob>..<blob>[ <mode>]" header lines carry blob hashes, which change
# whenever anything upstream of the file changes even if the reviewer would see
# the exact same hunks. The optional mode suffix is dropped along with them.
_INDEX_LINE_RE = re.compile(r"^index [0-9a-f]+\.\.[0-9a-f]+[^\n]*(?:\n|$)", re.MULTILINE)


def normalize_diff(diff: str) -> str:
    """Strip blob-hash index lines so equal content compares equal.

    Everything else (hunk headers, context, renames, whitespace) is kept
    byte-for-byte. Idempotent.
    """
    return _INDEX_LINE_RE.sub("", diff)


def write_diff(directory: str | None, name: str, diff: str | None) -> None:
    """Dump a diff into ``directory`` for later inspection. No-op without a directory."""
    if not directory or diff is None:
        return
    path = Path(directory)
    try:
        path.mkdir(parents=True, exist_ok=True)
        (path / name).write_text(diff, encoding="utf-8")
    except OSError as e:
        # Debug output only; never fail an evaluation over it.
        logger.warning("Could not write %s to %s: %s", name, directory, e)
