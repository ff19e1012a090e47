from taildir.annotator import DirectoryAnnotator, NullAnnotator, RoutingAnnotator
from taildir.models import Record


class TestDirectoryAnnotator:
    def test_maps_directories_to_keys(self):
        record = Record(b"x")
        DirectoryAnnotator(("system", "date")).annotate(record, "crm/20240105/orders.log", "file")
        assert record.headers == {"system": "crm", "date": "20240105", "file.name": "orders"}

    def test_fewer_directories_than_keys(self):
        record = Record(b"x")
        DirectoryAnnotator(("system", "date")).annotate(record, "crm/orders.log", "file")
        assert record.headers == {"system": "crm", "file.name": "orders"}

    def test_file_at_top_level(self):
        record = Record(b"x")
        DirectoryAnnotator(("system",)).annotate(record, "orders.tar.gz", "src")
        assert record.headers == {"src.name": "orders.tar"}

    def test_keeps_existing_headers(self):
        record = Record(b"x", {"topic": "t"})
        DirectoryAnnotator(()).annotate(record, "a/b.log", "file")
        assert record.headers == {"topic": "t", "file.name": "b"}

    def test_empty_path(self):
        record = Record(b"x")
        DirectoryAnnotator(("system",)).annotate(record, "", "file")
        assert record.headers == {}


def test_null_annotator_changes_nothing():
    record = Record(b"x", {"topic": "t"})
    NullAnnotator().annotate(record, "a/b.log", "file")
    assert record.headers == {"topic": "t"}


def test_protocol():
    assert isinstance(NullAnnotator(), RoutingAnnotator)
    assert isinstance(DirectoryAnnotator(("k",)), RoutingAnnotator)
