"""Checkpoint store: persists the read position of every tracked file.

The file is a JSON array of ``{"inode": int, "pos": int, "file": str}``
objects. Writes are atomic (tmp file + os.replace) so a crash mid-save leaves
the previous checkpoint intact. Loading is best-effort: malformed entries are
skipped, the rest are kept.
"""

import json
import os
import logging
import tempfile

import jsonschema

from taildir.models import CheckpointEntry, entry_to_dict

logger = logging.getLogger(__name__)

ENTRY_SCHEMA = {
    "type": "object",
    "properties": {
        "inode": {"type": "integer", "minimum": 0},
        "pos": {"type": "integer", "minimum": 0},
        "file": {"type": "string"},
    },
    "required": ["inode", "pos", "file"],
}


class CheckpointStore:
    def __init__(self, path: str):
        self._path = path
        self._validator = jsonschema.Draft202012Validator(ENTRY_SCHEMA)

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> list[CheckpointEntry]:
        """Read checkpoint entries. A missing or unreadable file yields []."""
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("Checkpoint file %s not found, starting without saved positions", self._path)
            return []
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.error("Failed loading checkpoint file %s: %s", self._path, e)
            return []

        if not isinstance(data, list):
            logger.error("Checkpoint file %s must hold a JSON array, got %s",
                         self._path, type(data).__name__)
            return []

        entries = []
        for index, raw in enumerate(data):
            errors = [e.message for e in self._validator.iter_errors(raw)]
            if errors:
                logger.warning("Skipping malformed checkpoint entry #%d in %s: %s",
                               index, self._path, "; ".join(errors))
                continue
            entries.append(CheckpointEntry(inode=int(raw["inode"]), pos=int(raw["pos"]), file=raw["file"]))

        logger.info("Loaded %d checkpoint entries from %s", len(entries), self._path)
        return entries

    def save(self, entries: list[CheckpointEntry]) -> None:
        """Atomic write: write to tmp file in the same directory then replace."""
        if not self._path:
            raise ValueError("Checkpoint path must not be empty")
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".checkpoint-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([entry_to_dict(e) for e in entries], f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Saved %d checkpoint entries to %s", len(entries), self._path)
