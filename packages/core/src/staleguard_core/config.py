import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "repo_path": None,  # None = $GITHUB_WORKSPACE, else the current directory
    "store": "file",  # "file" or "noop"
    "cache_dir": ".",  # where the CI cache action restores / saves the approval artifacts
    "diff_filename": "approved.diff",
    "metadata_filename": "approval-metadata.json",
    "diffs_directory": None,  # set to a path to keep every diff computed during a run
    "max_buffer_bytes": 32 * 1024 * 1024,
    "range_diff": True,
}


def load_config(config_path: str = ".staleguard.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .staleguard.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve the GitHub Actions context from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["event_path"] = os.environ.get("GITHUB_EVENT_PATH")
    config["workspace"] = os.environ.get("GITHUB_WORKSPACE")
    config["output_path"] = os.environ.get("GITHUB_OUTPUT")

    return config


def resolve_repo_path(config: dict) -> str:
    """Where the working copy lives (or will be cloned to)."""
    return config.get("repo_path") or config.get("workspace") or os.getcwd()
