"""TailEngine: discovers files, reads framed records and tracks committed progress.

Protocol, driven by a single host loop (no internal locking)::

    engine.discover()
    records = engine.read_batch(100, tracked_file)
    ...deliver records...
    engine.commit()
    engine.save_checkpoint()   # periodically

A batch that is read but never committed is read again on the next
``read_batch`` call, so delivery is at-least-once.
"""

import os
import time
import logging
from typing import Mapping

from taildir.annotator import NullAnnotator, RoutingAnnotator
from taildir.checkpoint import CheckpointStore
from taildir.config import EngineConfig, LineConfig
from taildir.framing import RecordFramer, build_framer
from taildir.matcher import GlobMatcher, Matcher
from taildir.models import CheckpointEntry, Record
from taildir.tracked_file import TrackedFile

logger = logging.getLogger(__name__)


class ProtocolError(RuntimeError):
    """Raised when the engine is driven out of protocol order (a caller bug)."""


class TailEngine:
    def __init__(
        self,
        config: EngineConfig,
        matchers: list[Matcher] | None = None,
        header_table: Mapping[str, Mapping[str, str]] | None = None,
        annotator: RoutingAnnotator | None = None,
        clock=time.time,
    ):
        self._config = config
        self._clock = clock
        self._annotator = annotator or NullAnnotator()
        self._header_table = header_table if header_table is not None else config.header_table()
        if matchers is None:
            matchers = [
                GlobMatcher(g.name, g.pattern, cache=config.cache_pattern_matching,
                            date_format=g.date_format)
                for g in config.groups
            ]
        self._matchers = list(matchers)
        framings = {g.name: g.framing for g in config.groups}
        self._framers: dict[str, RecordFramer] = {
            m.group: build_framer(framings.get(m.group, LineConfig())) for m in self._matchers
        }

        self._files: dict[int, TrackedFile] = {}
        self._current: TrackedFile | None = None
        self._dirty: TrackedFile | None = None
        self._committed = True
        self._first_scan = True
        self._update_time = 0.0
        self._last_seen: list[int] = []

        logger.info("Initializing tail engine with groups: %s", self._matchers)
        self.discover()
        if config.checkpoint_file:
            logger.info("Updating positions from checkpoint file: %s", config.checkpoint_file)
            self.load_checkpoint()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def tracked_files(self) -> Mapping[int, TrackedFile]:
        return dict(self._files)

    @property
    def current_file(self) -> TrackedFile | None:
        return self._current

    @property
    def is_dirty(self) -> bool:
        return not self._committed

    def parent_dirs(self) -> set[str]:
        """Parent directories of all groups (for change notification)."""
        return {m.parent_dir for m in self._matchers}

    def select(self, tracked_file: TrackedFile) -> None:
        self._current = tracked_file

    def pending_files(self) -> list[TrackedFile]:
        """Files with data to read.

        These are the files seen in the last scan that grew or changed size,
        followed by tracked files the scan no longer matched (rotated away)
        whose open handle still has unread bytes.
        """
        seen = set(self._last_seen)
        pending = [self._files[i] for i in self._last_seen
                   if i in self._files and self._files[i].needs_read]
        for identity, tf in self._files.items():
            if identity in seen:
                continue
            try:
                unread = tf.has_unread_bytes()
            except OSError as e:
                logger.warning("Cannot stat open handle of %s (inode=%d): %s",
                               tf.path, identity, e)
                continue
            if unread:
                pending.append(tf)
        return pending

    def remove(self, identity: int) -> TrackedFile | None:
        """Stop tracking *identity*. Eviction is always the caller's decision."""
        tf = self._files.pop(identity, None)
        if tf is None:
            return None
        tf.close()
        if self._current is tf:
            self._current = None
        if self._dirty is tf:
            self._dirty = None
            self._committed = True
        logger.info("Stopped tracking %s (inode=%d)", tf.path, identity)
        return tf

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, skip_to_end: bool | None = None) -> list[int]:
        """Scan every group for new, grown, rotated or truncated files.

        Returns the inodes seen in this scan. A file that cannot be stat'ed
        or opened is logged and retried on the next scan.
        """
        if skip_to_end is None:
            skip_to_end = self._config.skip_to_end
        skip = skip_to_end and self._first_scan
        self._first_scan = False
        self._update_time = self._clock()

        seen: list[int] = []
        for matcher in self._matchers:
            headers = dict(self._header_table.get(matcher.group, {}))
            parent_dir = matcher.parent_dir
            for path in matcher.matching_files():
                try:
                    st = os.stat(path)
                except OSError as e:
                    logger.warning("Cannot resolve inode of %s, skipping this round: %s", path, e)
                    continue

                inode = st.st_ino
                tf = self._files.get(inode)
                try:
                    if tf is None or tf.path != path:
                        start = st.st_size if skip else 0
                        tf = self._replace(tf, path, headers, inode, start, parent_dir, matcher.group)
                    else:
                        self._refresh(tf, st)
                except OSError as e:
                    logger.warning("Failed opening %s, skipping this round: %s", path, e)
                    continue

                self._files[inode] = tf
                seen.append(inode)

        self._last_seen = seen
        return seen

    def _replace(self, old, path, headers, inode, start, parent_dir, group) -> TrackedFile:
        logger.info("Opening file: %s, inode: %d, pos: %d, parentDir: %s",
                    path, inode, start, parent_dir)
        tf = TrackedFile(path, inode, start, headers=headers, parent_dir=parent_dir,
                         framer=self._framers[group])
        tf.needs_read = True
        if old is not None:
            logger.info("Inode %d moved from %s to %s", inode, old.path, path)
            old.close()
            if self._current is old:
                self._current = tf
            if self._dirty is old:
                self._dirty = None
                self._committed = True
        return tf

    def _refresh(self, tf: TrackedFile, st: os.stat_result) -> None:
        updated = tf.last_updated < st.st_mtime or tf.confirmed_pos != st.st_size
        if updated:
            if not tf.handle_owned:
                tf.open()
            if st.st_size < tf.confirmed_pos:
                logger.warning("Pos %d is larger than file size %d! Restarting from pos 0, "
                               "file: %s, inode: %d",
                               tf.confirmed_pos, st.st_size, tf.path, tf.identity)
                tf.reset()
        tf.needs_read = updated

    # ------------------------------------------------------------------
    # Read / commit
    # ------------------------------------------------------------------

    def read_batch(
        self,
        max_records: int,
        tracked_file: TrackedFile | None = None,
        flush_partial: bool | None = None,
    ) -> list[Record]:
        """Read up to *max_records* records from the selected file.

        If the previous batch was never committed its progress is discarded
        first and the same records are produced again.
        """
        if max_records < 1:
            raise ValueError("max_records must be >= 1")
        if tracked_file is not None:
            self.select(tracked_file)
        if self._current is None:
            raise ProtocolError("No file selected for reading")

        if not self._committed:
            logger.info("Last read was never committed - resetting position")
            (self._dirty or self._current).rewind()
            self._dirty = None
            self._committed = True

        if flush_partial is None:
            flush_partial = self._config.flush_partial
        current = self._current
        records = current.read_records(max_records, flush_partial, self._config.add_byte_offset)
        if not records:
            return records

        self._attach_headers(current, records)
        self._dirty = current
        self._committed = False
        return records

    def read_record(self) -> Record | None:
        records = self.read_batch(1)
        return records[0] if records else None

    def _attach_headers(self, tf: TrackedFile, records: list[Record]) -> None:
        annotate = self._config.annotate_file_name
        if not annotate and not tf.headers:
            return
        key = self._config.file_name_header
        filename = tf.relative_path
        for record in records:
            record.headers.update(tf.headers)
            if annotate:
                record.headers[key] = filename
                self._annotator.annotate(record, filename, key)

    def commit(self) -> None:
        """Confirm the last batch. A no-op when nothing is pending."""
        if self._committed or self._dirty is None:
            return
        self._dirty.commit(self._update_time)
        self._dirty = None
        self._committed = True

    # ------------------------------------------------------------------
    # Checkpoint
    # ------------------------------------------------------------------

    def checkpoint_entries(self) -> list[CheckpointEntry]:
        return [CheckpointEntry(inode=tf.identity, pos=tf.confirmed_pos, file=tf.path)
                for tf in self._files.values()]

    def load_checkpoint(self, path: str | None = None) -> int:
        """Apply saved positions to tracked files. Returns how many were applied."""
        path = path or self._config.checkpoint_file
        if not path:
            logger.debug("No checkpoint file configured, nothing to load")
            return 0
        store = CheckpointStore(path)
        applied = 0
        for entry in store.load():
            tf = self._files.get(entry.inode)
            if tf is not None and tf.update_pos(entry.file, entry.inode, entry.pos):
                applied += 1
            else:
                logger.info("Missing file: %s, inode: %d, pos: %d", entry.file, entry.inode, entry.pos)
        return applied

    def save_checkpoint(self, path: str | None = None) -> None:
        """Persist confirmed positions. Without a configured path this does nothing."""
        path = path or self._config.checkpoint_file
        if not path:
            logger.debug("No checkpoint file configured, positions are not persisted")
            return
        CheckpointStore(path).save(self.checkpoint_entries())

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def close_idle(self, now: float | None = None) -> list[int]:
        """Close handles of files that have not grown for ``idle_timeout`` seconds."""
        if now is None:
            now = self._clock()
        closed = []
        for tf in self._files.values():
            if tf.handle_owned and tf.last_updated + self._config.idle_timeout < now:
                tf.close()
                closed.append(tf.identity)
                logger.info("Closed idle file: %s, inode: %d, pos: %d",
                            tf.path, tf.identity, tf.confirmed_pos)
        return closed

    def close(self) -> None:
        """Release every open handle. Positions are kept."""
        for tf in self._files.values():
            tf.close()
