"""Tests for the checkpoint store."""

import json
import os

import pytest

from taildir import checkpoint
from taildir.checkpoint import CheckpointStore
from taildir.models import CheckpointEntry


class TestLoad:
    def test_missing_file_is_empty(self, tmp_path):
        assert CheckpointStore(str(tmp_path / "none.json")).load() == []

    def test_reads_entries(self, tmp_path):
        path = tmp_path / "pos.json"
        path.write_text(json.dumps([
            {"inode": 10, "pos": 5, "file": "/var/log/a.log"},
            {"file": "/var/log/b.log", "pos": 0, "inode": 11},
        ]))
        assert CheckpointStore(str(path)).load() == [
            CheckpointEntry(10, 5, "/var/log/a.log"),
            CheckpointEntry(11, 0, "/var/log/b.log"),
        ]

    def test_malformed_entries_skipped(self, tmp_path, caplog):
        path = tmp_path / "pos.json"
        path.write_text(json.dumps([
            {"inode": 1, "pos": 5, "file": "a"},
            {"inode": 2, "file": "b"},
            {"inode": "x", "pos": 1, "file": "c"},
            {"inode": 3, "pos": -1, "file": "d"},
            {"inode": 4, "pos": True, "file": "e"},
            "junk",
            {"inode": 5, "pos": 7, "file": "f"},
        ]))
        with caplog.at_level("WARNING"):
            entries = CheckpointStore(str(path)).load()
        assert entries == [CheckpointEntry(1, 5, "a"), CheckpointEntry(5, 7, "f")]
        assert caplog.text.count("Skipping malformed checkpoint entry") == 5

    def test_invalid_json_is_empty(self, tmp_path):
        path = tmp_path / "pos.json"
        path.write_text('[{"inode": 1, "pos"')
        assert CheckpointStore(str(path)).load() == []

    def test_non_array_is_empty(self, tmp_path):
        path = tmp_path / "pos.json"
        path.write_text('{"inode": 1, "pos": 2, "file": "a"}')
        assert CheckpointStore(str(path)).load() == []


class TestSave:
    def test_round_trip(self, tmp_path):
        store = CheckpointStore(str(tmp_path / "pos.json"))
        entries = [CheckpointEntry(1, 10, "/a.log"), CheckpointEntry(2, 0, "/b.log")]
        store.save(entries)
        assert store.load() == entries

    def test_file_format(self, tmp_path):
        path = tmp_path / "pos.json"
        CheckpointStore(str(path)).save([CheckpointEntry(7, 42, "/x.log")])
        assert json.loads(path.read_text()) == [{"inode": 7, "pos": 42, "file": "/x.log"}]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "deep" / "dir" / "pos.json"
        CheckpointStore(str(path)).save([])
        assert path.exists()

    def test_no_temp_files_left(self, tmp_path):
        store = CheckpointStore(str(tmp_path / "pos.json"))
        store.save([CheckpointEntry(1, 1, "a")])
        store.save([CheckpointEntry(1, 2, "a")])
        assert os.listdir(tmp_path) == ["pos.json"]

    def test_failed_save_keeps_previous_checkpoint(self, tmp_path, monkeypatch):
        path = tmp_path / "pos.json"
        store = CheckpointStore(str(path))
        store.save([CheckpointEntry(1, 10, "a")])

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(checkpoint.json, "dump", boom)
        with pytest.raises(OSError):
            store.save([CheckpointEntry(1, 99, "a")])
        monkeypatch.undo()

        assert store.load() == [CheckpointEntry(1, 10, "a")]
        assert os.listdir(tmp_path) == ["pos.json"]

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            CheckpointStore("").save([CheckpointEntry(1, 1, "a")])
