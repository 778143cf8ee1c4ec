"""GitHub token lookup for workflow and local runs.

Sources, first hit wins:
  1. GITHUB_TOKEN (set by the workflow step's `env:`)
  2. GH_TOKEN (the variable the gh CLI itself reads)
  3. `gh auth token` (an interactive gh session, for local dry runs)

Whatever is found is also handed to git via GitRepo so `gh auth setup-git`
can authenticate clones and fetches.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")


def resolve_github_token() -> str | None:
    """Return a GitHub token, or None when no source has one.

    Never raises; require_token() turns None into a UsageError.
    """
    for name in _TOKEN_ENV_VARS:
        token = os.environ.get(name)
        if token:
            logger.debug("Using GitHub token from %s.", name)
            return token

    try:
        result = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    token = result.stdout.strip() if result.returncode == 0 else ""
    if not token:
        return None
    logger.debug("Using GitHub token from the gh CLI session.")
    return token
