"""Routing annotators: add routing headers derived from a record's file path."""

import os
from typing import Protocol, runtime_checkable

from taildir.models import Record


@runtime_checkable
class RoutingAnnotator(Protocol):
    def annotate(self, record: Record, relative_path: str, header_key: str) -> None: ...


class NullAnnotator:
    def annotate(self, record: Record, relative_path: str, header_key: str) -> None:
        return None


class DirectoryAnnotator:
    """Maps the leading directory segments of the relative path onto header keys.

    With keys ``("system", "date")`` a record from ``crm/20240105/orders.log``
    gets ``system=crm`` and ``date=20240105``. Files with fewer directory
    levels than keys only get the headers that can be filled. The file name
    without its extension goes into ``<header_key>.name``.
    """

    def __init__(self, keys: tuple[str, ...] | list[str]):
        self.keys = tuple(keys)

    def annotate(self, record: Record, relative_path: str, header_key: str) -> None:
        parts = [p for p in relative_path.replace("\\", "/").split("/") if p]
        if not parts:
            return
        *dirs, filename = parts
        for key, value in zip(self.keys, dirs):
            record.headers[key] = value
        record.headers[f"{header_key}.name"] = os.path.splitext(filename)[0]
