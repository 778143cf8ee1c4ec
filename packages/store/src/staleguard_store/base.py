"""Abstract store interface for approval artifacts.

An approval leaves two blobs behind: the diff the reviewer saw and the
ApprovalMetadata record (as a plain dict). Both are keyed by the approved
head SHA. The CLI depends on BaseStore, not on a concrete backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseStore(ABC):
    """Pluggable persistence for approval artifacts.

    A miss is normal (the approval predates the cache, or the cache expired)
    and is reported as None, never as an exception.
    """

    @abstractmethod
    def load_diff(self, key: str) -> str | None:
        """Return the cached reviewed diff for ``key`` or None."""

    @abstractmethod
    def load_metadata(self, key: str) -> dict | None:
        """Return the cached approval metadata for ``key`` or None."""

    @abstractmethod
    def save_diff(self, key: str, diff: str) -> None:
        """Persist the reviewed diff for ``key``."""

    @abstractmethod
    def save_metadata(self, key: str, metadata: dict) -> None:
        """Persist the approval metadata for ``key``."""

    def close(self) -> None:
        """Release any resources held by the store.

        Optional. Default is a no-op so callers can always call close() safely.
        """
