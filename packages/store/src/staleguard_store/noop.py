"""No-op store: every lookup misses and nothing is persisted.

With this store the evaluator always reconstructs the reviewed diff from the
review history and never takes the range-diff fast path.
"""

from __future__ import annotations

from staleguard_store.base import BaseStore


class NoOpStore(BaseStore):
    def load_diff(self, key: str) -> str | None:
        return None

    def load_metadata(self, key: str) -> dict | None:
        return None

    def save_diff(self, key: str, diff: str) -> None:
        pass  # intentional no-op

    def save_metadata(self, key: str, metadata: dict) -> None:
        pass  # intentional no-op
