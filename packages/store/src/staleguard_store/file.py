"""FileStore: approval artifacts as plain files for a CI cache action.

actions/cache restores a fixed path chosen by key, so the files themselves
have fixed names and the key lives in the cache action's `key:`. The key is
still checked where possible: the metadata record carries `approved_sha`, and
a record for a different commit is treated as a miss.

Layout inside ``directory``:
  approved.diff            the three-dot diff at approval time
  approval-metadata.json   the ApprovalMetadata record
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from staleguard_store.base import BaseStore

logger = logging.getLogger(__name__)


class FileStore(BaseStore):
    def __init__(
        self,
        directory: str = ".",
        diff_filename: str = "approved.diff",
        metadata_filename: str = "approval-metadata.json",
    ):
        self._dir = Path(directory)
        self.diff_path = self._dir / diff_filename
        self.metadata_path = self._dir / metadata_filename

    def load_diff(self, key: str) -> str | None:
        logger.debug("Checking for cached diff at %s.", self.diff_path)
        if not self.diff_path.exists():
            return None
        return self.diff_path.read_text(encoding="utf-8")

    def load_metadata(self, key: str) -> dict | None:
        if not self.metadata_path.exists():
            return None
        try:
            data = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable approval metadata at %s: %s", self.metadata_path, e)
            return None
        if not isinstance(data, dict):
            return None
        if data.get("approved_sha") != key:
            logger.warning("Cached approval metadata is for %s, not %s; ignoring it.", data.get("approved_sha"), key)
            return None
        return data

    def save_diff(self, key: str, diff: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self.diff_path.write_text(diff, encoding="utf-8")
        except OSError as e:
            # A missing cache only costs a slower evaluation later.
            logger.warning("FileStore.save_diff() failed (%s): %s", type(e).__name__, e)

    def save_metadata(self, key: str, metadata: dict) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self.metadata_path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("FileStore.save_metadata() failed (%s): %s", type(e).__name__, e)
