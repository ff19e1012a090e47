"""Records produced by the tail reader and the checkpoint entry shape."""

from dataclasses import dataclass, field

BYTE_OFFSET_HEADER = "byteoffset"


@dataclass
class Record:
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")


@dataclass(frozen=True)
class CheckpointEntry:
    inode: int
    pos: int
    file: str


def entry_to_dict(entry: CheckpointEntry) -> dict:
    return {"inode": entry.inode, "pos": entry.pos, "file": entry.file}


def record_to_dict(record: Record, encoding: str = "utf-8") -> dict:
    """Convert a Record to a JSON-friendly dict (body decoded as text)."""
    return {"headers": dict(record.headers), "body": record.text(encoding)}
