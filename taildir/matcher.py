"""File matchers: list the files currently belonging to a group."""

import os
import glob
import time
import logging
from datetime import datetime
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = "{date}"
_GLOB_CHARS = set("*?[")


@runtime_checkable
class Matcher(Protocol):
    group: str
    parent_dir: str

    def matching_files(self) -> list[str]: ...


def static_prefix_dir(pattern: str) -> str:
    """Deepest directory of *pattern* that contains no glob characters, with a
    trailing separator."""
    parts = pattern.split(os.sep)
    static = []
    for part in parts[:-1]:
        if _GLOB_CHARS & set(part):
            break
        static.append(part)
    prefix = os.sep.join(static)
    if not prefix:
        prefix = os.sep if pattern.startswith(os.sep) else "."
    return os.path.join(os.path.abspath(prefix), "")


class GlobMatcher:
    """Matches a group's files with a glob pattern.

    With ``cache`` enabled, and when only the file name part of the pattern
    holds glob characters, the expansion is reused while the parent
    directory's mtime is unchanged. Within a second of a directory change the
    listing is always redone, since mtime granularity can hide a second
    modification. A ``{date}`` placeholder in the pattern is replaced with
    today's date in ``date_format`` on every call.
    """

    def __init__(self, group: str, pattern: str, cache: bool = True,
                 date_format: str = "%Y%m%d", clock=time.time):
        self.group = group
        self.pattern = pattern
        self.date_format = date_format
        self.cache = cache
        self._clock = clock
        self._cached: list[str] | None = None
        self._cached_pattern: str | None = None
        self._last_dir_mtime: float | None = None

    def __repr__(self) -> str:
        return f"GlobMatcher(group={self.group!r}, pattern={self.pattern!r})"

    @property
    def parent_dir(self) -> str:
        return static_prefix_dir(self._expanded_pattern())

    def _expanded_pattern(self) -> str:
        if DATE_PLACEHOLDER in self.pattern:
            today = datetime.now().strftime(self.date_format)
            return self.pattern.replace(DATE_PLACEHOLDER, today)
        return self.pattern

    @staticmethod
    def _dir_mtime(pattern: str) -> float | None:
        try:
            return os.stat(static_prefix_dir(pattern)).st_mtime
        except OSError:
            return None

    def matching_files(self) -> list[str]:
        """Absolute paths of matching regular files, oldest modification first."""
        pattern = self._expanded_pattern()
        cacheable = self.cache and not (_GLOB_CHARS & set(os.path.dirname(pattern)))

        if cacheable and self._cached is not None and pattern == self._cached_pattern:
            dir_mtime = self._dir_mtime(pattern)
            if (dir_mtime is not None and dir_mtime == self._last_dir_mtime
                    and self._clock() - dir_mtime > 1.0):
                return list(self._cached)

        files = self._expand(pattern)
        logger.debug("Group %s: %d file(s) match %s", self.group, len(files), pattern)
        if cacheable:
            self._cached = files
            self._cached_pattern = pattern
            self._last_dir_mtime = self._dir_mtime(pattern)
        return list(files)

    @staticmethod
    def _expand(pattern: str) -> list[str]:
        found = []
        for path in glob.glob(pattern, recursive=True):
            if not os.path.isfile(path):
                continue
            try:
                mtime = os.stat(path).st_mtime
            except OSError:
                continue
            found.append((mtime, os.path.abspath(path)))
        found.sort()
        return [p for _, p in found]
