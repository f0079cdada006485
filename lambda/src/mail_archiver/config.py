"""Runtime tunables for the archiver, resolved once per invocation."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

import boto3

logger = logging.getLogger(__name__)

SSM_CLIENT = boto3.client("ssm")

_ssm_cache: dict[str, str] = {}

MIB = 1024 * 1024
DAY_SECONDS = 86400


@dataclass(frozen=True)
class ConfigItem:
    key: str
    env_key: str | None
    default: float
    unit: str


CONFIG_ITEMS: tuple[ConfigItem, ...] = (
    ConfigItem("max_storage_mb", "MAX_STORAGE_MB", 300, "MiB"),
    ConfigItem("star_max_storage_mb", "STAR_MAX_STORAGE_MB", 50, "MiB"),
    ConfigItem("eml_ttl_days", "EML_TTL_DAYS", 60, "days"),
    ConfigItem("max_email_entries", "MAX_EMAIL_ENTRIES", 5000, "entries"),
    ConfigItem("rate_threshold", "RATE_THRESHOLD", 10, "emails"),
    ConfigItem("rate_window_min", "RATE_WINDOW_MIN", 5, "minutes"),
    ConfigItem("attach_max_size_mb", "ATTACH_MAX_SIZE_MB", 5, "MiB"),
    ConfigItem("body_max_length", "BODY_MAX_LEN", 1500, "chars"),
    ConfigItem("tracking_pixel_kb", "TRACKING_PIXEL_KB", 2, "KiB"),
    ConfigItem("image_ttl_multiplier", "IMAGE_TTL_MULTIPLIER", 1.0, "x"),
    ConfigItem("eviction_size_weight", None, 0.4, ""),
    ConfigItem("eviction_age_weight", None, 0.6, ""),
    ConfigItem("eviction_size_norm_mb", None, 5, "MiB"),
)


@dataclass(frozen=True)
class ArchiverConfig:
    max_storage_mb: float = 300
    star_max_storage_mb: float = 50
    eml_ttl_days: float = 60
    max_email_entries: int = 5000
    rate_threshold: int = 10
    rate_window_min: float = 5
    attach_max_size_mb: float = 5
    body_max_length: int = 1500
    tracking_pixel_kb: float = 2
    image_ttl_multiplier: float = 1.0
    eviction_size_weight: float = 0.4
    eviction_age_weight: float = 0.6
    eviction_size_norm_mb: float = 5

    @property
    def max_storage(self) -> int:
        return int(self.max_storage_mb * MIB)

    @property
    def star_max_storage(self) -> int:
        return int(self.star_max_storage_mb * MIB)

    @property
    def text_ttl_seconds(self) -> int:
        return int(self.eml_ttl_days * DAY_SECONDS)

    @property
    def rate_window_ms(self) -> int:
        return int(self.rate_window_min * 60_000)

    @property
    def attach_max_size(self) -> int:
        return int(self.attach_max_size_mb * MIB)

    @property
    def tracking_pixel_size(self) -> int:
        return int(self.tracking_pixel_kb * 1024)

    @property
    def eviction_size_norm(self) -> int:
        return int(self.eviction_size_norm_mb * MIB)


def resolve_config(overrides: Mapping[str, Any] | None, environ: Mapping[str, str]) -> ArchiverConfig:
    """Build the effective config: stored override, then environment, then default.

    Overrides are trusted as-is so an operator can set values outside the usual
    range (e.g. a tracking pixel threshold of 0 to disable the filter).
    Environment values must parse as positive numbers or they are ignored.
    """
    overrides = overrides or {}
    field_types = {f.name: f.type for f in fields(ArchiverConfig)}
    values: dict[str, Any] = {}

    for item in CONFIG_ITEMS:
        cast = int if field_types[item.key] in (int, "int") else float
        value = _coerce(overrides.get(item.key), cast)
        if value is None and item.env_key:
            env_value = _positive_number(environ.get(item.env_key), cast)
            if env_value is None and environ.get(item.env_key):
                logger.warning("Ignoring invalid %s=%r", item.env_key, environ.get(item.env_key))
            value = env_value
        values[item.key] = item.default if value is None else value

    return ArchiverConfig(**values)


def _coerce(value: Any, cast: type) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric config override %r", value)
        return None


def _positive_number(raw: str | None, cast: type) -> float | None:
    if not raw:
        return None
    try:
        value = cast(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def get_ssm_param(name: str) -> str:
    """Fetch an SSM parameter, caching across invocations."""
    if name not in _ssm_cache:
        response = SSM_CLIENT.get_parameter(Name=name, WithDecryption=True)
        _ssm_cache[name] = response["Parameter"]["Value"]
    return _ssm_cache[name]
