"""A local working copy for the diffs the GitHub API cannot produce.

The compare API only returns three-dot diffs. Two-dot diffs, rebases and
range-diffs need real commits on disk, so this wraps the git / gh CLIs.

Clone and fetch failures raise GitError: without the commits nothing
downstream can run. Diff, rebase and range-diff failures come back as a
failed Outcome so the caller can fall back instead of aborting.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path

from staleguard_core.models import FailureReason, Outcome

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_BYTES = 32 * 1024 * 1024
_READ_CHUNK = 64 * 1024

# Rebasing creates commits, which needs an identity even on a bare CI runner.
_IDENTITY = ["-c", "user.name=staleguard", "-c", "user.email=staleguard@users.noreply.github.com"]


class GitError(RuntimeError):
    """A git or gh command exited non-zero where the caller cannot continue."""

    def __init__(self, argv: list[str], returncode: int, stderr: str = ""):
        rendered = " ".join(argv)
        super().__init__(f"command failed ({returncode}): {rendered}\n{stderr.strip()}")
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr


class GitRepo:
    """Working copy of ``repo_full_name`` at ``repo_path``.

    The lifecycle only moves forward within a run: absent -> cloned ->
    fetched(revisions). Revisions already fetched with enough history are not
    fetched again.
    """

    def __init__(
        self,
        repo_full_name: str,
        repo_path: str,
        token: str | None = None,
        max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES,
    ):
        self.repo_full_name = repo_full_name
        self.repo_path = Path(repo_path)
        self.max_buffer_bytes = max_buffer_bytes
        # GITHUB_TOKEN is inherited by the git credential helper gh installs.
        self._env = {**os.environ}
        if token:
            self._env["GITHUB_TOKEN"] = token
        # revision -> depth it was fetched with (None = full history)
        self._fetched: dict[str, int | None] = {}

    # ------------------------------------------------------------------ #
    # Working copy lifecycle                                               #
    # ------------------------------------------------------------------ #

    def is_cloned(self) -> bool:
        return (self.repo_path / ".git").exists()

    def ensure_cloned(self) -> None:
        if self.is_cloned():
            return
        logger.debug("Cloning %s to %s.", self.repo_full_name, self.repo_path)
        self.repo_path.mkdir(parents=True, exist_ok=True)
        # gh handles token auth for the clone, and `gh auth setup-git` lets
        # later plain git fetches reuse it.
        self._check(["gh", "repo", "clone", self.repo_full_name, str(self.repo_path), "--", "--depth=1"], cwd=None)
        logger.debug("Configuring git to use gh as a credential helper.")
        self._check(["gh", "auth", "setup-git"], cwd=self.repo_path)

    def fetch(self, *revs: str, depth: int | None = 1) -> None:
        """Fetch ``revs`` from origin. ``depth=None`` fetches their full history."""
        pending = [rev for rev in dict.fromkeys(revs) if rev and not self._has_fetched(rev, depth)]
        if not pending:
            return
        args = ["git", "fetch"]
        if depth is not None:
            args.append(f"--depth={depth}")
        args += ["origin", *pending]
        logger.debug("Fetching %s.", " ".join(pending))
        self._check(args, cwd=self.repo_path)
        for rev in pending:
            self._fetched[rev] = depth

    def _has_fetched(self, rev: str, depth: int | None) -> bool:
        if rev not in self._fetched:
            return False
        # Full history satisfies any request; a shallow fetch only satisfies
        # another shallow one.
        return self._fetched[rev] is None or depth is not None

    # ------------------------------------------------------------------ #
    # Soft operations                                                      #
    # ------------------------------------------------------------------ #

    def two_dot_diff(self, base_sha: str, head_sha: str) -> Outcome[str]:
        """Straight content diff between two commits, ignoring ancestry."""
        logger.debug("Generating diff between %s and %s.", base_sha, head_sha)
        return self._run_bounded(
            ["git", "--no-pager", "diff", "--no-color", base_sha, head_sha],
            ok_codes=(0, 1),
        )

    def rebase(self, head: str, onto: str) -> Outcome[str]:
        """Replay ``head`` onto ``onto`` in a detached checkout.

        Returns the rebased HEAD SHA. A conflict aborts the rebase and returns
        a failed Outcome, leaving the working copy usable.
        """
        logger.info("Rebasing %s onto %s.", head, onto)
        checkout = self._run(["git", "checkout", "--quiet", "--detach", head])
        if checkout.returncode != 0:
            logger.warning("git checkout %s failed with status %d.", head, checkout.returncode)
            return Outcome.fail(FailureReason.GIT_ERROR, checkout.stderr.strip())

        result = self._run(["git", *_IDENTITY, "rebase", onto])
        if result.returncode != 0:
            logger.warning("git rebase onto %s failed with status %d.", onto, result.returncode)
            self._run(["git", "rebase", "--abort"])
            return Outcome.fail(FailureReason.REBASE_CONFLICT, (result.stderr or result.stdout).strip())

        rev = self._run(["git", "rev-parse", "HEAD"])
        if rev.returncode != 0:
            return Outcome.fail(FailureReason.GIT_ERROR, rev.stderr.strip())
        return Outcome.success(rev.stdout.strip())

    def range_diff(self, range_a: str, range_b: str) -> Outcome[str]:
        """Commit-by-commit comparison of two ranges (``base..tip`` each)."""
        logger.debug("Running git range-diff %s %s in %s.", range_a, range_b, self.repo_path)
        return self._run_bounded(["git", "range-diff", "--no-color", range_a, range_b], ok_codes=(0,))

    # ------------------------------------------------------------------ #
    # Process helpers                                                      #
    # ------------------------------------------------------------------ #

    def _run(self, argv: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess:
        """Run a command for its exit status. A command that cannot start reports status -1."""
        try:
            return subprocess.run(
                argv,
                cwd=cwd or self.repo_path,
                env=self._env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            logger.warning("Could not run %s: %s", " ".join(argv[:3]), e)
            return subprocess.CompletedProcess(argv, -1, stdout="", stderr=str(e))

    def _check(self, argv: list[str], cwd: Path | None) -> None:
        try:
            result = subprocess.run(argv, cwd=cwd, env=self._env, capture_output=True, text=True, check=False)
        except OSError as e:
            raise GitError(argv, -1, str(e)) from e
        if result.returncode != 0:
            raise GitError(argv, result.returncode, result.stderr)

    def _run_bounded(self, argv: list[str], ok_codes: tuple[int, ...]) -> Outcome[str]:
        """Run a command whose stdout may be huge, giving up past the buffer ceiling."""
        with tempfile.TemporaryFile() as stderr_file:
            try:
                proc = subprocess.Popen(
                    argv,
                    cwd=self.repo_path,
                    env=self._env,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                )
            except OSError as e:
                logger.warning("%s could not be started: %s", " ".join(argv[:3]), e)
                return Outcome.fail(FailureReason.GIT_ERROR, str(e))

            chunks: list[bytes] = []
            size = 0
            with proc.stdout:
                while True:
                    chunk = proc.stdout.read(_READ_CHUNK)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_buffer_bytes:
                        proc.kill()
                        proc.wait()
                        logger.warning(
                            "%s output exceeded %d bytes; giving up.", " ".join(argv[:3]), self.max_buffer_bytes
                        )
                        detail = f"output exceeded {self.max_buffer_bytes} bytes"
                        return Outcome.fail(FailureReason.BUFFER_EXCEEDED, detail)
                    chunks.append(chunk)
            returncode = proc.wait()

            if returncode not in ok_codes:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode("utf-8", errors="replace")
                logger.warning("%s failed with status %d.", " ".join(argv[:3]), returncode)
                logger.debug("stderr:\n%s", stderr)
                return Outcome.fail(FailureReason.GIT_ERROR, stderr.strip())

        return Outcome.success(b"".join(chunks).decode("utf-8", errors="replace"))
