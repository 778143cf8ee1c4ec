"""CLI entry point for staleguard.

Commands:
  check-approvals  output the SHA of the most recent approval ("" if none)
  dismiss-stale    dismiss approvals whose reviewed diff no longer matches
  snapshot         cache the approved diff and metadata when a review approves
  init             write .staleguard.yml and the GitHub Actions workflows
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from staleguard_cli.commands.check import check_approvals_cmd
from staleguard_cli.commands.dismiss import dismiss_stale_cmd
from staleguard_cli.commands.init import init_cmd
from staleguard_cli.commands.snapshot import snapshot_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured approval-artifact store.

    Store selection:
      store: file (default) → FileStore in cache_dir
      store: noop           → NoOpStore (always reconstruct from the API)

    This factory lives in cli.py so neither staleguard_core nor
    staleguard_store know about the CLI config format.
    """
    from staleguard_store.noop import NoOpStore

    store_type = config.get("store", "file")

    if store_type == "file":
        from staleguard_store.file import FileStore

        return FileStore(
            directory=config.get("cache_dir") or ".",
            diff_filename=config.get("diff_filename", "approved.diff"),
            metadata_filename=config.get("metadata_filename", "approval-metadata.json"),
        )

    if store_type != "noop":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to no store.[/yellow]")
    return NoOpStore()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("staleguard"),
    prog_name="staleguard",
)
@click.option(
    "--config",
    "config_path",
    default=".staleguard.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="STALEGUARD_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Dismiss pull request approvals once the approved code has really changed."""
    from staleguard_core.config import load_config
    from staleguard_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(check_approvals_cmd)
main.add_command(dismiss_stale_cmd)
main.add_command(snapshot_cmd)
main.add_command(init_cmd)
