"""Configuration model and loaders for Bookbridge.

Responsibilities:
- Define conversion and synchronization settings as typed dataclasses.
- Expose heuristic policy constants (noise threshold, average reading rate,
  match tolerances, fallback totals) as tunable configuration.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `BookbridgeConfig`: normalized runtime settings for conversion jobs.
- `SyncPolicy`: position-mapping policy constants.
- `ConfigLoader`: static construction helpers for `BookbridgeConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from .parsing import (
    normalize_optional_string,
    parse_non_negative_float,
    parse_permissive_boolean,
    parse_positive_float,
    parse_positive_int,
)


_DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
_DEFAULT_ACCEPTED_MEDIA_TYPES = ("application/pdf",)


@dataclass(frozen=True, slots=True)
class SyncPolicy:
    """Policy constants for page/time position mapping.

    Attributes:
        avg_seconds_per_page: Narration rate used when extrapolating past the
            first or last calibration point.
        page_match_tolerance_seconds: A timestamp strictly closer than this to a
            point counts as an exact match for `time_to_page`.
        label_match_tolerance_seconds: Window for `chapter_label_at` lookups.
        fallback_total_pages: Page total for the empty-table global estimate.
        fallback_total_duration_seconds: Duration total for the empty-table
            global estimate.
        unknown_label: Sentinel label returned when no point qualifies.
        strict_monotonic: Reject tables whose timestamps decrease in page order.
    """

    avg_seconds_per_page: float = 12.0
    page_match_tolerance_seconds: float = 5.0
    label_match_tolerance_seconds: float = 30.0
    fallback_total_pages: int = 149
    fallback_total_duration_seconds: float = 5400.0
    unknown_label: str = "Unknown Chapter"
    strict_monotonic: bool = False

    def validate(self) -> None:
        """Validate policy values."""

        if self.avg_seconds_per_page <= 0:
            raise ValueError("`avg_seconds_per_page` must be a positive number.")
        if self.page_match_tolerance_seconds < 0:
            raise ValueError("`page_match_tolerance_seconds` must be a non-negative number.")
        if self.label_match_tolerance_seconds < 0:
            raise ValueError("`label_match_tolerance_seconds` must be a non-negative number.")
        if self.fallback_total_pages <= 0:
            raise ValueError("`fallback_total_pages` must be a positive integer.")
        if self.fallback_total_duration_seconds <= 0:
            raise ValueError("`fallback_total_duration_seconds` must be a positive number.")
        if not self.unknown_label.strip():
            raise ValueError("`unknown_label` must be a non-empty string.")


@dataclass(slots=True)
class BookbridgeConfig:
    """Runtime configuration for conversion jobs and synchronization.

    Attributes:
        output_dir: Durable directory for packaged documents.
        temp_dir: Directory for per-job temporary inputs.
        max_upload_bytes: Size ceiling for submitted payloads.
        accepted_media_types: Media types accepted by `submit_conversion`.
        min_block_chars: Segmenter noise threshold in characters.
        placeholder_title: Title of the fallback chapter for text-less input.
        placeholder_body: Body of the fallback chapter for text-less input.
        default_title: Title used when neither metadata nor filename provide one.
        default_author: Author placeholder used when none is supplied.
        language: Language code written into packaged documents.
        public_url_prefix: URL prefix for artifact references.
        job_retention_seconds: Retention window for terminal job records.
        max_workers: Worker threads for background conversion jobs.
        sync: Position-mapping policy.
    """

    output_dir: Path = Path("out/epubs")
    temp_dir: Path = Path("out/tmp")
    max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES
    accepted_media_types: tuple[str, ...] = _DEFAULT_ACCEPTED_MEDIA_TYPES
    min_block_chars: int = 50
    placeholder_title: str = "Document"
    placeholder_body: str = (
        "No chapter text could be recovered from the source document. "
        "It may contain only images or scanned pages."
    )
    default_title: str = "Converted Book"
    default_author: str = "Unknown Author"
    language: str = "en"
    public_url_prefix: str = "/epubs"
    job_retention_seconds: float = 3600.0
    max_workers: int = 2
    sync: SyncPolicy = field(default_factory=SyncPolicy)

    def validate(self) -> None:
        """Validate runtime configuration values before use."""

        if self.max_upload_bytes <= 0:
            raise ValueError("`max_upload_bytes` must be a positive integer.")
        if not self.accepted_media_types:
            raise ValueError("`accepted_media_types` must list at least one media type.")
        if self.min_block_chars < 0:
            raise ValueError("`min_block_chars` must be a non-negative integer.")
        if self.job_retention_seconds < 0:
            raise ValueError("`job_retention_seconds` must be a non-negative number.")
        if self.max_workers <= 0:
            raise ValueError("`max_workers` must be a positive integer.")
        self._require_non_empty(self.placeholder_title, "placeholder_title")
        self._require_non_empty(self.placeholder_body, "placeholder_body")
        self._require_non_empty(self.default_title, "default_title")
        self._require_non_empty(self.default_author, "default_author")
        self._require_non_empty(self.language, "language")
        self.sync.validate()

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


_Parser = Callable[[object, str], Any]


def _parse_string(value: object, field_name: str) -> str:
    normalized = normalize_optional_string(value)
    if normalized is None:
        raise ValueError(f"`{field_name}` must be a non-empty string.")
    return normalized


def _parse_path(value: object, field_name: str) -> Path:
    return Path(_parse_string(value, field_name))


def _parse_boolean(value: object, field_name: str) -> bool:
    parsed = parse_permissive_boolean(value)
    if parsed is None:
        raise ValueError(
            f"`{field_name}` must be a boolean value (`true`/`false`, `1`/`0`, `yes`/`no`)."
        )
    return parsed


def _parse_non_negative_int(value: object, field_name: str) -> int:
    if not isinstance(value, bool) and normalize_optional_string(value) == "0":
        return 0
    return parse_positive_int(value, field_name)


def _parse_media_types(value: object, field_name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValueError(f"`{field_name}` must be a list of media types.")
    media_types = tuple(
        item for item in (normalize_optional_string(raw) for raw in items) if item is not None
    )
    if not media_types:
        raise ValueError(f"`{field_name}` must list at least one media type.")
    return media_types


class ConfigLoader:
    """Factory methods for creating `BookbridgeConfig` from external sources."""

    _TOP_LEVEL_PARSERS: dict[str, _Parser] = {
        "output_dir": _parse_path,
        "temp_dir": _parse_path,
        "max_upload_bytes": parse_positive_int,
        "accepted_media_types": _parse_media_types,
        "min_block_chars": _parse_non_negative_int,
        "placeholder_title": _parse_string,
        "placeholder_body": _parse_string,
        "default_title": _parse_string,
        "default_author": _parse_string,
        "language": _parse_string,
        "public_url_prefix": _parse_string,
        "job_retention_seconds": parse_non_negative_float,
        "max_workers": parse_positive_int,
    }
    _SYNC_PARSERS: dict[str, _Parser] = {
        "avg_seconds_per_page": parse_positive_float,
        "page_match_tolerance_seconds": parse_non_negative_float,
        "label_match_tolerance_seconds": parse_non_negative_float,
        "fallback_total_pages": parse_positive_int,
        "fallback_total_duration_seconds": parse_positive_float,
        "unknown_label": _parse_string,
        "strict_monotonic": _parse_boolean,
    }
    _ENV_PREFIX = "BOOKBRIDGE_"

    @staticmethod
    def from_yaml(path: Path) -> BookbridgeConfig:
        """Create a validated config from a YAML file.

        Top-level keys map to `BookbridgeConfig` fields; policy constants live
        under an optional `sync` mapping.
        """

        raw_text = path.read_text(encoding="utf-8")
        payload = yaml.safe_load(raw_text)
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return ConfigLoader.from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_mapping(payload: Mapping[str, Any], source_label: str = "config") -> BookbridgeConfig:
        """Create a validated config from a nested mapping."""

        sync_payload = payload.get("sync") or {}
        if not isinstance(sync_payload, Mapping):
            raise ValueError(f"{source_label} field `sync` must be a mapping/object.")

        top_level = {key: value for key, value in payload.items() if key != "sync"}
        ConfigLoader._reject_unknown(top_level, ConfigLoader._TOP_LEVEL_PARSERS, source_label)
        ConfigLoader._reject_unknown(sync_payload, ConfigLoader._SYNC_PARSERS, f"{source_label} `sync`")

        config_kwargs = ConfigLoader._parse_fields(
            top_level, ConfigLoader._TOP_LEVEL_PARSERS, source_label
        )
        sync_kwargs = ConfigLoader._parse_fields(
            sync_payload, ConfigLoader._SYNC_PARSERS, source_label
        )
        config = BookbridgeConfig(sync=SyncPolicy(**sync_kwargs), **config_kwargs)
        config.validate()
        return config

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> BookbridgeConfig:
        """Create a validated config from `BOOKBRIDGE_*` environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        config_kwargs = ConfigLoader._parse_env_fields(env_map, ConfigLoader._TOP_LEVEL_PARSERS)
        sync_kwargs = ConfigLoader._parse_env_fields(env_map, ConfigLoader._SYNC_PARSERS)
        config = BookbridgeConfig(sync=SyncPolicy(**sync_kwargs), **config_kwargs)
        config.validate()
        return config

    @staticmethod
    def _reject_unknown(
        payload: Mapping[str, Any], parsers: Mapping[str, _Parser], source_label: str
    ) -> None:
        """Reject keys that do not map to a known field."""

        unknown = sorted(str(key) for key in set(payload).difference(parsers))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

    @staticmethod
    def _parse_fields(
        payload: Mapping[str, Any], parsers: Mapping[str, _Parser], source_label: str
    ) -> dict[str, Any]:
        """Parse present, non-null fields with their registered parser."""

        parsed: dict[str, Any] = {}
        for key, parser in parsers.items():
            if key not in payload or payload[key] is None:
                continue
            try:
                parsed[key] = parser(payload[key], key)
            except ValueError as exc:
                raise ValueError(f"{source_label} field {exc}") from exc
        return parsed

    @staticmethod
    def _parse_env_fields(env: Mapping[str, str], parsers: Mapping[str, _Parser]) -> dict[str, Any]:
        """Parse fields from upper-cased, prefixed environment variable names."""

        parsed: dict[str, Any] = {}
        for key, parser in parsers.items():
            env_key = f"{ConfigLoader._ENV_PREFIX}{key.upper()}"
            if normalize_optional_string(env.get(env_key)) is None:
                continue
            try:
                parsed[key] = parser(env[env_key], key)
            except ValueError as exc:
                raise ValueError(f"Environment variable `{env_key}`: {exc}") from exc
        return parsed
