"""TrackedFile: one tailed file, its read handle and its read positions."""

import os
import logging

from taildir.framing import LineFraming, RecordFramer
from taildir.models import BYTE_OFFSET_HEADER, Record

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024


class TrackedFile:
    """A file followed by the tail engine, keyed by its inode.

    ``confirmed_pos`` is the committed offset that goes into the checkpoint.
    ``tentative_pos`` is how far the last uncommitted read got; it is rolled
    back to ``confirmed_pos`` when a batch is never committed.
    """

    def __init__(
        self,
        path: str,
        identity: int,
        pos: int = 0,
        headers: dict[str, str] | None = None,
        parent_dir: str = "",
        framer: RecordFramer | None = None,
    ):
        self.path = path
        self.identity = identity
        self.parent_dir = parent_dir
        self.headers = dict(headers or {})
        self.framer = framer or LineFraming()
        self.confirmed_pos = pos
        self.tentative_pos = pos
        self.last_updated = 0.0
        self.needs_read = False
        self._fh = None
        self.open()

    def __repr__(self) -> str:
        return (f"TrackedFile(path={self.path!r}, identity={self.identity}, "
                f"confirmed_pos={self.confirmed_pos}, tentative_pos={self.tentative_pos})")

    @property
    def handle_owned(self) -> bool:
        return self._fh is not None

    @property
    def relative_path(self) -> str:
        """Path with the group's parent directory stripped."""
        if self.parent_dir and self.path.startswith(self.parent_dir):
            return self.path[len(self.parent_dir):]
        return self.path

    def open(self) -> None:
        """Open the read handle if needed. Raises OSError if the file cannot be opened
        or the path now points at a different file than ``identity``."""
        if self._fh is not None:
            return
        fh = open(self.path, "rb")
        current = os.fstat(fh.fileno()).st_ino
        if current != self.identity:
            fh.close()
            raise OSError(
                f"{self.path} now has inode {current}, expected {self.identity}"
            )
        self._fh = fh
        logger.debug("Opened %s (inode=%d) at pos %d", self.path, self.identity, self.confirmed_pos)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def has_unread_bytes(self) -> bool:
        """True when the open handle sees data past ``confirmed_pos``.

        Goes through the handle rather than the path, so it keeps working
        after the file was renamed away.
        """
        if self._fh is None:
            return False
        return os.fstat(self._fh.fileno()).st_size > self.confirmed_pos

    def rewind(self) -> None:
        """Discard uncommitted progress."""
        self.tentative_pos = self.confirmed_pos

    def reset(self) -> None:
        """Restart from the beginning of the file (after truncation)."""
        self.confirmed_pos = 0
        self.tentative_pos = 0

    def commit(self, update_time: float) -> None:
        self.confirmed_pos = self.tentative_pos
        self.last_updated = update_time

    def update_pos(self, path: str, identity: int, pos: int) -> bool:
        """Apply a checkpointed position. Only applies if both inode and path match."""
        if self.identity != identity or self.path != path:
            return False
        self.confirmed_pos = pos
        self.tentative_pos = pos
        logger.info("Updated position of %s (inode=%d) to %d", path, identity, pos)
        return True

    def read_records(
        self,
        max_records: int,
        flush_partial: bool = False,
        add_byte_offset: bool = False,
    ) -> list[Record]:
        """Frame up to *max_records* records starting at ``tentative_pos``.

        Reads only what is currently on disk; bytes the framer holds back stay
        unread and ``tentative_pos`` stops in front of them.
        """
        if self._fh is None:
            self.open()

        records: list[Record] = []
        buf = b""
        buf_start = self.tentative_pos
        self._fh.seek(buf_start)
        eof = False

        while len(records) < max_records and not eof:
            chunk = self._fh.read(READ_CHUNK)
            eof = len(chunk) < READ_CHUNK
            buf += chunk
            if not buf:
                break

            framed, consumed = self.framer.frame(
                buf, buf_start, max_records - len(records), final=eof and flush_partial
            )
            for fr in framed:
                record = Record(body=fr.body)
                if add_byte_offset:
                    record.headers[BYTE_OFFSET_HEADER] = str(fr.offset)
                records.append(record)
            buf = buf[consumed:]
            buf_start += consumed

        self.tentative_pos = buf_start
        return records
