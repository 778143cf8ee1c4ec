"""init command: write the config file and GitHub Actions workflows.

Two workflows are generated:
- staleguard-snapshot.yml caches the approved diff and metadata whenever a
  review approves, keyed by the commit the review was submitted on.
- staleguard-dismiss.yml runs on every pull request update, restores that
  cache and dismisses stale approvals. It always runs (no job-level `if:`)
  so it can be used as a required status check.
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()

_SNAPSHOT_WORKFLOW = """\
name: Cache approved diff

on:
  pull_request_review:
    types: [submitted]

jobs:
  snapshot-approved-diff:
    runs-on: ubuntu-latest
    if: ${{{{ github.event.review.state == 'approved' }}}}
    permissions:
      contents: read
      pull-requests: read

    steps:
      - uses: actions/checkout@v4

      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install staleguard
        run: pip install "staleguard=={version}"

      - name: Snapshot approved diff
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
        run: staleguard snapshot

      - uses: actions/cache/save@v4
        with:
          path: |
            {cache_dir}/approved.diff
            {cache_dir}/approval-metadata.json
          key: staleguard-${{{{ github.event.review.commit_id || github.event.pull_request.head.sha }}}}
"""

_DISMISS_WORKFLOW = """\
name: Dismiss review if stale

on:
  pull_request:
    # opened keeps the check green on pull requests that never change.
    types: [opened, synchronize, edited]
    branches: [{branches}]

jobs:
  dismiss-if-diff-changed:
    runs-on: ubuntu-latest
    permissions:
      contents: read
      pull-requests: write

    steps:
      - uses: actions/checkout@v4

      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install staleguard
        run: pip install "staleguard=={version}"

      - id: check
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
        run: staleguard check-approvals

      - uses: actions/cache/restore@v4
        if: ${{{{ steps.check.outputs.approved_sha != '' }}}}
        with:
          path: |
            {cache_dir}/approved.diff
            {cache_dir}/approval-metadata.json
          key: staleguard-${{{{ steps.check.outputs.approved_sha }}}}

      - if: ${{{{ steps.check.outputs.approved_sha != '' }}}}
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
        run: staleguard dismiss-stale
"""


@click.command("init")
@click.option("--branches", default="main", show_default=True, help="Comma-separated base branches to watch.")
def init_cmd(branches: str):
    """Set up staleguard for a repository.

    Creates .staleguard.yml and, optionally, the two GitHub Actions workflows
    that cache approvals and dismiss stale ones.
    """
    console.print("\n[bold cyan]staleguard init[/bold cyan]\n")

    console.print("Approval cache:")
    console.print("  [bold]file[/bold]  cache approved diffs with actions/cache (recommended)")
    console.print("  [bold]noop[/bold]  always rebuild the reviewed diff from the review history")
    store_type = click.prompt("Store backend", type=click.Choice(["file", "noop"]), default="file")

    config: dict = {"store": store_type}
    if store_type == "file":
        config["cache_dir"] = click.prompt("Cache directory", default=".staleguard")
    config["range_diff"] = click.confirm("Use git range-diff to recognise clean rebases?", default=True)

    _write_config(config)
    console.print("[green]Created .staleguard.yml[/green]")

    if click.confirm("\nGenerate GitHub Actions workflows?", default=True):
        watched = ", ".join(b.strip() for b in branches.split(",") if b.strip())
        written = _write_workflows(config.get("cache_dir", "."), watched, with_snapshot=store_type == "file")
        for path in written:
            console.print(f"[green]Created {path}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")


def _write_config(config: dict) -> None:
    """Write or update .staleguard.yml, preserving any existing keys."""
    path = Path(".staleguard.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _get_version() -> str:
    """Read the current staleguard version from the installed package metadata."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("staleguard")
    except PackageNotFoundError:
        return "0.1.0"


def _write_workflows(cache_dir: str, branches: str, with_snapshot: bool = True) -> list[Path]:
    workflow_dir = Path(".github/workflows")
    workflow_dir.mkdir(parents=True, exist_ok=True)
    cache_dir = cache_dir.rstrip("/") or "."
    version = _get_version()

    written = []
    if with_snapshot:
        snapshot_path = workflow_dir / "staleguard-snapshot.yml"
        snapshot_path.write_text(_SNAPSHOT_WORKFLOW.format(version=version, cache_dir=cache_dir))
        written.append(snapshot_path)
    dismiss_path = workflow_dir / "staleguard-dismiss.yml"
    dismiss_path.write_text(_DISMISS_WORKFLOW.format(version=version, cache_dir=cache_dir, branches=branches))
    written.append(dismiss_path)
    return written
