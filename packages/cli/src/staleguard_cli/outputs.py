"""Step outputs for GitHub Actions."""

from __future__ import annotations

import hashlib


def set_output(output_path: str | None, name: str, value: str) -> bool:
    """Append ``name=value`` to the $GITHUB_OUTPUT file.

    Returns False when not running under Actions (no output file), in which
    case the caller just prints the value.
    """
    if not output_path:
        return False
    text = str(value)
    delimiter = f"EOF_{hashlib.sha256(f'{name}:{text}'.encode()).hexdigest()[:16]}"
    with open(output_path, "a", encoding="utf-8") as f:
        f.write(f"{name}<<{delimiter}\n")
        f.write(f"{text}\n")
        f.write(f"{delimiter}\n")
    return True
