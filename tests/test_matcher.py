"""Tests for glob-based file matching."""

import os
from datetime import datetime

from taildir.matcher import GlobMatcher, Matcher, static_prefix_dir


def touch(path, mtime):
    path.write_text("x\n")
    os.utime(path, (mtime, mtime))


class TestStaticPrefixDir:
    def test_plain_directory(self, tmp_path):
        pattern = os.path.join(str(tmp_path), "logs", "*.log")
        assert static_prefix_dir(pattern) == os.path.join(str(tmp_path), "logs") + os.sep

    def test_stops_at_first_glob_segment(self, tmp_path):
        pattern = os.path.join(str(tmp_path), "a", "*", "b", "*.log")
        assert static_prefix_dir(pattern) == os.path.join(str(tmp_path), "a") + os.sep

    def test_relative_pattern_is_made_absolute(self):
        assert static_prefix_dir("*.log") == os.path.join(os.getcwd(), "")


class TestGlobMatcher:
    def test_is_a_matcher(self, tmp_path):
        assert isinstance(GlobMatcher("g", str(tmp_path / "*.log")), Matcher)

    def test_oldest_first(self, tmp_path):
        touch(tmp_path / "new.log", 2_000_000)
        touch(tmp_path / "old.log", 1_000_000)
        touch(tmp_path / "mid.log", 1_500_000)
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), cache=False)
        assert matcher.matching_files() == [
            str(tmp_path / "old.log"),
            str(tmp_path / "mid.log"),
            str(tmp_path / "new.log"),
        ]

    def test_directories_ignored(self, tmp_path):
        (tmp_path / "dir.log").mkdir()
        (tmp_path / "a.log").write_text("x\n")
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), cache=False)
        assert matcher.matching_files() == [str(tmp_path / "a.log")]

    def test_recursive_pattern(self, tmp_path):
        (tmp_path / "x" / "y").mkdir(parents=True)
        (tmp_path / "x" / "y" / "deep.log").write_text("x\n")
        matcher = GlobMatcher("g", str(tmp_path / "**" / "*.log"), cache=False)
        assert matcher.matching_files() == [str(tmp_path / "x" / "y" / "deep.log")]
        assert matcher.parent_dir == str(tmp_path) + os.sep

    def test_parent_dir(self, tmp_path):
        matcher = GlobMatcher("g", str(tmp_path / "*.log"))
        assert matcher.parent_dir == str(tmp_path) + os.sep

    def test_date_placeholder(self, tmp_path):
        today = datetime.now().strftime("%Y%m%d")
        (tmp_path / today).mkdir()
        (tmp_path / today / "a.log").write_text("x\n")
        (tmp_path / "19990101").mkdir()
        (tmp_path / "19990101" / "b.log").write_text("x\n")
        matcher = GlobMatcher("g", os.path.join(str(tmp_path), "{date}", "*.log"), cache=False)
        assert matcher.matching_files() == [str(tmp_path / today / "a.log")]
        assert matcher.parent_dir == str(tmp_path / today) + os.sep


class TestCaching:
    def _counting(self, matcher, monkeypatch):
        calls = []
        real = GlobMatcher._expand

        def counting(pattern):
            calls.append(pattern)
            return real(pattern)

        monkeypatch.setattr(matcher, "_expand", counting)
        return calls

    def test_reuses_listing_while_directory_unchanged(self, tmp_path, monkeypatch):
        (tmp_path / "a.log").write_text("x\n")
        os.utime(tmp_path, (1_000_000, 1_000_000))
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), clock=lambda: 2_000_000)
        calls = self._counting(matcher, monkeypatch)

        first = matcher.matching_files()
        assert matcher.matching_files() == first
        assert len(calls) == 1

    def test_relists_when_directory_changes(self, tmp_path, monkeypatch):
        (tmp_path / "a.log").write_text("x\n")
        os.utime(tmp_path, (1_000_000, 1_000_000))
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), clock=lambda: 2_000_000)
        calls = self._counting(matcher, monkeypatch)

        matcher.matching_files()
        (tmp_path / "b.log").write_text("x\n")
        os.utime(tmp_path, (1_000_100, 1_000_100))
        assert len(matcher.matching_files()) == 2
        assert len(calls) == 2

    def test_recent_directory_change_always_relists(self, tmp_path, monkeypatch):
        (tmp_path / "a.log").write_text("x\n")
        os.utime(tmp_path, (1_000_000, 1_000_000))
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), clock=lambda: 1_000_000.5)
        calls = self._counting(matcher, monkeypatch)

        matcher.matching_files()
        matcher.matching_files()
        assert len(calls) == 2

    def test_no_cache_when_directory_has_glob(self, tmp_path, monkeypatch):
        (tmp_path / "d").mkdir()
        (tmp_path / "d" / "a.log").write_text("x\n")
        matcher = GlobMatcher("g", str(tmp_path / "*" / "*.log"), clock=lambda: 9e9)
        calls = self._counting(matcher, monkeypatch)

        matcher.matching_files()
        matcher.matching_files()
        assert len(calls) == 2

    def test_cache_disabled(self, tmp_path, monkeypatch):
        (tmp_path / "a.log").write_text("x\n")
        os.utime(tmp_path, (1_000_000, 1_000_000))
        matcher = GlobMatcher("g", str(tmp_path / "*.log"), cache=False, clock=lambda: 2_000_000)
        calls = self._counting(matcher, monkeypatch)

        matcher.matching_files()
        matcher.matching_files()
        assert len(calls) == 2
