import os

import pytest

from taildir.config import EngineConfig, GroupConfig, LineConfig


@pytest.fixture
def log_dir(tmp_path):
    d = tmp_path / "logs"
    d.mkdir()
    return d


@pytest.fixture
def checkpoint_path(tmp_path):
    return str(tmp_path / "state" / "taildir_position.json")


@pytest.fixture
def make_config(log_dir, checkpoint_path):
    """Factory for an EngineConfig with a single "app" group over log_dir/*.log."""

    def _make(framing=None, pattern="*.log", headers=None, **kwargs):
        group = GroupConfig(
            name="app",
            pattern=os.path.join(str(log_dir), pattern),
            headers={"topic": "app"} if headers is None else headers,
            framing=framing or LineConfig(),
        )
        kwargs.setdefault("checkpoint_file", checkpoint_path)
        kwargs.setdefault("cache_pattern_matching", False)
        return EngineConfig(groups=(group,), **kwargs)

    return _make


def append(path, data: str | bytes) -> None:
    mode = "ab" if isinstance(data, bytes) else "a"
    with open(path, mode) as f:
        f.write(data)


@pytest.fixture
def append_to():
    return append
