"""Configuration: frozen dataclasses loaded from an optional YAML file and env vars."""

import os
import re
import logging
from dataclasses import dataclass, field, fields
from typing import Mapping

import yaml

logger = logging.getLogger(__name__)

FIXED_WIDTH_VARIANTS = ("a", "b", "c")


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _check_regex(pattern: str, name: str) -> None:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"{name}: invalid regular expression {pattern!r}: {e}") from e


@dataclass(frozen=True)
class LineConfig:
    lines_per_record: int = 1
    skip_header: bool = False

    def __post_init__(self):
        if self.lines_per_record < 1:
            raise ConfigError("line.lines_per_record must be >= 1")


@dataclass(frozen=True)
class TaggedBlockConfig:
    node: str

    def __post_init__(self):
        if not self.node or not re.fullmatch(r"[A-Za-z_][\w.:-]*", self.node):
            raise ConfigError(f"tagged_block.node is not a valid element name: {self.node!r}")


@dataclass(frozen=True)
class DelimitedConfig:
    leading_field: str
    separator: str = ","

    def __post_init__(self):
        if not self.separator:
            raise ConfigError("delimited.separator must not be empty")
        _check_regex(self.leading_field, "delimited.leading_field")


@dataclass(frozen=True)
class FixedWidthConfig:
    width: int
    variant: str = "a"
    skip_line_breaks: bool = False

    def __post_init__(self):
        if self.width < 1:
            raise ConfigError("fixed_width.width must be >= 1")
        if self.variant not in FIXED_WIDTH_VARIANTS:
            raise ConfigError(
                f"fixed_width.variant must be one of {FIXED_WIDTH_VARIANTS}, got {self.variant!r}"
            )


@dataclass(frozen=True)
class RegexPairConfig:
    start: str
    continuation: str
    literal: bool = False

    def __post_init__(self):
        if not self.start or not self.continuation:
            raise ConfigError("regex_pair.start and regex_pair.continuation are required")
        if not self.literal:
            _check_regex(self.start, "regex_pair.start")
            _check_regex(self.continuation, "regex_pair.continuation")


FramingConfig = LineConfig | TaggedBlockConfig | DelimitedConfig | FixedWidthConfig | RegexPairConfig

FRAMING_TYPES: dict[str, type] = {
    "line": LineConfig,
    "tagged_block": TaggedBlockConfig,
    "delimited": DelimitedConfig,
    "fixed_width": FixedWidthConfig,
    "regex_pair": RegexPairConfig,
}


def parse_framing(data: Mapping | None) -> FramingConfig:
    """Build a framing config from a ``{"type": ..., **params}`` mapping.

    ``fixed_width_a``, ``fixed_width_b`` and ``fixed_width_c`` are accepted as
    shorthands for ``fixed_width`` with the matching ``variant``.
    """
    if not data:
        return LineConfig()
    params = dict(data)
    kind = str(params.pop("type", "line"))

    match = re.fullmatch(r"fixed_width_([abc])", kind)
    if match:
        kind = "fixed_width"
        params.setdefault("variant", match.group(1))

    cls = FRAMING_TYPES.get(kind)
    if cls is None:
        raise ConfigError(f"Unknown framing type {kind!r}, expected one of {sorted(FRAMING_TYPES)}")

    allowed = {f.name for f in fields(cls)}
    unknown = set(params) - allowed
    if unknown:
        raise ConfigError(f"Unknown {kind} framing option(s): {', '.join(sorted(unknown))}")
    try:
        return cls(**params)
    except TypeError as e:
        raise ConfigError(f"Invalid {kind} framing options: {e}") from e


@dataclass(frozen=True)
class GroupConfig:
    name: str
    pattern: str
    headers: dict[str, str] = field(default_factory=dict)
    framing: FramingConfig = field(default_factory=LineConfig)
    date_format: str = "%Y%m%d"

    def __post_init__(self):
        if not self.name:
            raise ConfigError("group name must not be empty")
        if not self.pattern:
            raise ConfigError(f"group {self.name!r}: pattern must not be empty")


@dataclass(frozen=True)
class EngineConfig:
    groups: tuple[GroupConfig, ...] = ()
    checkpoint_file: str = "taildir_position.json"
    skip_to_end: bool = False
    add_byte_offset: bool = False
    annotate_file_name: bool = False
    file_name_header: str = "file"
    flush_partial: bool = False
    cache_pattern_matching: bool = True
    batch_size: int = 100
    idle_timeout: float = 120.0
    checkpoint_interval: float = 3.0
    poll_interval: float = 1.0
    routing_keys: tuple[str, ...] = ()

    def __post_init__(self):
        names = [g.name for g in self.groups]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate group name(s): {', '.join(duplicates)}")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be >= 1")
        if self.idle_timeout <= 0:
            raise ConfigError("idle_timeout must be > 0")
        if self.checkpoint_interval <= 0:
            raise ConfigError("checkpoint_interval must be > 0")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be > 0")
        if self.annotate_file_name and not self.file_name_header:
            raise ConfigError("file_name_header must be set when annotate_file_name is enabled")

    def header_table(self) -> dict[str, dict[str, str]]:
        """Group name -> static headers attached to that group's records."""
        return {g.name: dict(g.headers) for g in self.groups}


def load_yaml_config(path: str | None) -> dict:
    """Load the YAML config file. Returns empty dict if no path or file is missing."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    logger.info("Loaded YAML config from %s", path)
    return data


def _parse_groups(raw) -> tuple[GroupConfig, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise ConfigError("groups must be a mapping of group name -> settings")
    groups = []
    for name, settings in raw.items():
        settings = settings or {}
        if "pattern" not in settings:
            raise ConfigError(f"group {name!r}: missing pattern")
        groups.append(GroupConfig(
            name=str(name),
            pattern=str(settings["pattern"]),
            headers={str(k): str(v) for k, v in (settings.get("headers") or {}).items()},
            framing=parse_framing(settings.get("framing")),
            date_format=str(settings.get("date_format", GroupConfig.date_format)),
        ))
    return tuple(groups)


def load_config(yaml_data: dict, env: Mapping[str, str] | None = None) -> EngineConfig:
    """Build EngineConfig from parsed YAML data with env var overrides on top."""
    if env is None:
        env = os.environ

    def pick(key: str, env_key: str | None = None):
        if env_key and env_key in env:
            return env[env_key]
        return yaml_data.get(key, getattr(EngineConfig, key))

    def pick_bool(key: str, env_key: str | None = None) -> bool:
        if env_key and env_key in env:
            return _parse_bool(env[env_key])
        value = yaml_data.get(key, getattr(EngineConfig, key))
        if isinstance(value, str):
            return _parse_bool(value)
        return bool(value)

    try:
        return EngineConfig(
            groups=_parse_groups(yaml_data.get("groups")),
            checkpoint_file=str(pick("checkpoint_file", "TAILDIR_CHECKPOINT_FILE")),
            skip_to_end=pick_bool("skip_to_end", "TAILDIR_SKIP_TO_END"),
            add_byte_offset=pick_bool("add_byte_offset"),
            annotate_file_name=pick_bool("annotate_file_name"),
            file_name_header=str(pick("file_name_header")),
            flush_partial=pick_bool("flush_partial"),
            cache_pattern_matching=pick_bool("cache_pattern_matching"),
            batch_size=int(pick("batch_size", "TAILDIR_BATCH_SIZE")),
            idle_timeout=float(pick("idle_timeout", "TAILDIR_IDLE_TIMEOUT")),
            checkpoint_interval=float(pick("checkpoint_interval")),
            poll_interval=float(pick("poll_interval", "TAILDIR_POLL_INTERVAL")),
            routing_keys=tuple(str(k) for k in yaml_data.get("routing_keys", ())),
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e
