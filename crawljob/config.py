"""Typed crawl job configuration with JSON/YAML load/save helpers.

The configuration UI produces a loose, partially optional mapping (camelCase
keys, headers as a JSON string, numbers that may be missing). `CrawlJobConfig`
resolves it once into an immutable value so the engine never re-checks fields.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore

from .constants import (
    DEFAULT_CONTENT_TYPES,
    DEFAULT_DOMAIN_RESTRICTION,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_PER_ORIGIN,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_DELAY_MS,
    DEFAULT_RESPECT_ROBOTS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    DEFAULT_USE_SITEMAPS,
    JSON_INDENT,
    MAX_CONCURRENT,
    MIN_CONCURRENT,
    SUPPORTED_CONFIG_SUFFIXES,
)
from .errors import ConfigValidationError
from .types import AuthType, DomainRestriction, JSONDict, ScheduleFrequency
from .url import extract_domain, normalize_url


# UI field name -> config attribute name.
_CAMEL_CASE_KEYS = {
    "startUrl": "start_url",
    "includePatterns": "include_patterns",
    "excludePatterns": "exclude_patterns",
    "domainRestriction": "domain_restriction",
    "contentTypes": "content_types",
    "maxPages": "max_pages",
    "maxDepth": "max_depth",
    "requestDelayMs": "request_delay_ms",
    "maxConcurrent": "max_concurrent",
    "maxPerOrigin": "max_per_origin",
    "authType": "auth_type",
    "authCredentials": "auth_credentials",
    "customHeaders": "custom_headers",
    "userAgent": "user_agent",
    "respectRobots": "respect_robots",
    "useSitemaps": "use_sitemaps",
    "timeoutSeconds": "timeout_seconds",
    "maxRetries": "max_retries",
    "retryBackoffSeconds": "retry_backoff_seconds",
    "scheduleEnabled": "schedule_enabled",
    "scheduleFrequency": "schedule_frequency",
    "scheduleHour": "schedule_hour",
    "scheduleDayOfWeek": "schedule_day_of_week",
    "scheduleDayOfMonth": "schedule_day_of_month",
}


def _as_int(value: Any, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigValidationError(f"Invalid int for '{key}': {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"Invalid int for '{key}': {value!r}") from exc


def _as_float(value: Any, key: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"Invalid float for '{key}': {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigValidationError(f"Invalid bool for '{key}': {value!r}")


def _as_str_list(value: Any, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigValidationError(f"Invalid list for '{key}': {value!r}")
    return tuple(str(item).strip() for item in value if item is not None and str(item).strip())


def _to_enum(enum_cls, value: Any, key: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_cls)
        raise ConfigValidationError(f"Invalid '{key}': {value!r} (expected one of: {allowed})") from exc


def _coerce_headers(value: Any) -> dict[str, str]:
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ConfigValidationError(f"custom_headers is not valid JSON: {exc}") from exc
    if not isinstance(value, Mapping):
        raise ConfigValidationError(f"custom_headers must be a mapping: {value!r}")
    return {str(k): str(v) for k, v in value.items()}


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass(frozen=True, slots=True)
class ScheduleConfig:
    """Recurrence settings; evaluated by an external trigger, never by the engine."""

    enabled: bool = False
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    hour: int = 0
    day_of_week: int | None = None
    day_of_month: int | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ConfigValidationError("schedule hour must be within 0..23")
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise ConfigValidationError("schedule day_of_week must be within 0..6 (0 = Sunday)")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise ConfigValidationError("schedule day_of_month must be within 1..31")

    def to_json(self) -> JSONDict:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "hour": self.hour,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "ScheduleConfig":
        payload = payload or {}
        return cls(
            enabled=_as_bool(payload.get("enabled", False), "schedule.enabled"),
            frequency=_to_enum(
                ScheduleFrequency,
                payload.get("frequency") or ScheduleFrequency.DAILY,
                "schedule.frequency",
            ),
            hour=_as_int(payload.get("hour", 0), "schedule.hour") or 0,
            day_of_week=_as_int(payload.get("day_of_week"), "schedule.day_of_week"),
            day_of_month=_as_int(payload.get("day_of_month"), "schedule.day_of_month"),
        )


@dataclass(frozen=True, slots=True)
class CrawlJobConfig:
    """Fully resolved, immutable configuration of one crawl job."""

    start_url: str
    name: str = ""

    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    domain_restriction: DomainRestriction = DomainRestriction(DEFAULT_DOMAIN_RESTRICTION)
    content_types: tuple[str, ...] = DEFAULT_CONTENT_TYPES

    max_pages: int = DEFAULT_MAX_PAGES
    max_depth: int = DEFAULT_MAX_DEPTH
    request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    max_per_origin: int = DEFAULT_MAX_PER_ORIGIN

    auth_type: AuthType = AuthType.NONE
    auth_credentials: str | None = field(default=None, repr=False)
    custom_headers: Mapping[str, str] = field(default_factory=dict)
    user_agent: str = DEFAULT_USER_AGENT

    respect_robots: bool = DEFAULT_RESPECT_ROBOTS
    use_sitemaps: bool = DEFAULT_USE_SITEMAPS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    def __post_init__(self) -> None:
        normalized = normalize_url(self.start_url)
        if normalized is None:
            raise ConfigValidationError(f"Invalid start URL: {self.start_url!r}")

        # Frozen dataclass: resolve derived values through object.__setattr__.
        set_ = object.__setattr__
        set_(self, "start_url", normalized)
        set_(self, "name", self.name or extract_domain(normalized))
        set_(self, "include_patterns", tuple(self.include_patterns))
        set_(self, "exclude_patterns", tuple(self.exclude_patterns))
        set_(self, "content_types", tuple(ct.strip().lower() for ct in self.content_types if ct.strip()))
        set_(self, "domain_restriction", _to_enum(DomainRestriction, self.domain_restriction, "domain_restriction"))
        set_(self, "auth_type", _to_enum(AuthType, self.auth_type, "auth_type"))
        set_(self, "custom_headers", dict(self.custom_headers))

        set_(self, "max_pages", max(1, int(self.max_pages)))
        set_(self, "max_depth", max(1, int(self.max_depth)))
        set_(self, "max_concurrent", _clamp(int(self.max_concurrent), MIN_CONCURRENT, MAX_CONCURRENT))
        set_(self, "max_per_origin", _clamp(int(self.max_per_origin), 1, self.max_concurrent))
        set_(self, "max_retries", max(1, int(self.max_retries)))

        if self.request_delay_ms < 0:
            raise ConfigValidationError("request_delay_ms must be >= 0")
        if self.timeout_seconds <= 0:
            raise ConfigValidationError("timeout_seconds must be > 0")
        if self.retry_backoff_seconds < 0:
            raise ConfigValidationError("retry_backoff_seconds must be >= 0")
        if self.auth_type != AuthType.NONE and not self.auth_credentials:
            raise ConfigValidationError(f"auth_type '{self.auth_type.value}' requires auth_credentials")

    @property
    def start_domain(self) -> str:
        return extract_domain(self.start_url)

    def accepts_content_type(self, content_type: str | None) -> bool:
        """Check a response Content-Type header against `content_types`.

        A missing header is treated as `text/html`.
        """

        if not self.content_types:
            return True
        mime = (content_type or "").split(";", maxsplit=1)[0].strip().lower() or "text/html"
        for allowed in self.content_types:
            if allowed.endswith("/*") and mime.startswith(allowed[:-1]):
                return True
            if mime == allowed:
                return True
        return False

    def to_dict(self, *, include_secrets: bool = True) -> JSONDict:
        """Serialize config for storage and reproducibility."""

        return {
            "start_url": self.start_url,
            "name": self.name,
            "include_patterns": list(self.include_patterns),
            "exclude_patterns": list(self.exclude_patterns),
            "domain_restriction": self.domain_restriction.value,
            "content_types": list(self.content_types),
            "max_pages": self.max_pages,
            "max_depth": self.max_depth,
            "request_delay_ms": self.request_delay_ms,
            "max_concurrent": self.max_concurrent,
            "max_per_origin": self.max_per_origin,
            "auth_type": self.auth_type.value,
            "auth_credentials": self.auth_credentials if include_secrets else None,
            "custom_headers": dict(self.custom_headers),
            "user_agent": self.user_agent,
            "respect_robots": self.respect_robots,
            "use_sitemaps": self.use_sitemaps,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "schedule": self.schedule.to_json(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrawlJobConfig":
        """Build config from a parsed mapping (camelCase or snake_case keys)."""

        data = {_CAMEL_CASE_KEYS.get(key, key): value for key, value in payload.items()}

        start_url = data.get("start_url")
        if not start_url:
            raise ConfigValidationError("Config missing required key: 'start_url'")

        schedule_payload = dict(data.get("schedule") or {})
        for flat_key, nested_key in (
            ("schedule_enabled", "enabled"),
            ("schedule_frequency", "frequency"),
            ("schedule_hour", "hour"),
            ("schedule_day_of_week", "day_of_week"),
            ("schedule_day_of_month", "day_of_month"),
        ):
            if data.get(flat_key) is not None:
                schedule_payload[nested_key] = data[flat_key]

        # The UI sends 0 for "unset" on several numeric fields; treat falsy as default.
        return cls(
            start_url=str(start_url),
            name=str(data.get("name") or ""),
            include_patterns=_as_str_list(data.get("include_patterns"), "include_patterns"),
            exclude_patterns=_as_str_list(data.get("exclude_patterns"), "exclude_patterns"),
            domain_restriction=_to_enum(
                DomainRestriction,
                data.get("domain_restriction") or DEFAULT_DOMAIN_RESTRICTION,
                "domain_restriction",
            ),
            content_types=(
                _as_str_list(data.get("content_types"), "content_types")
                if data.get("content_types") is not None
                else DEFAULT_CONTENT_TYPES
            ),
            max_pages=_as_int(data.get("max_pages"), "max_pages") or DEFAULT_MAX_PAGES,
            max_depth=_as_int(data.get("max_depth"), "max_depth") or DEFAULT_MAX_DEPTH,
            request_delay_ms=(
                _as_int(data.get("request_delay_ms"), "request_delay_ms")
                if data.get("request_delay_ms") is not None
                else DEFAULT_REQUEST_DELAY_MS
            ),
            max_concurrent=_as_int(data.get("max_concurrent"), "max_concurrent") or DEFAULT_MAX_CONCURRENT,
            max_per_origin=_as_int(data.get("max_per_origin"), "max_per_origin") or DEFAULT_MAX_PER_ORIGIN,
            auth_type=_to_enum(AuthType, data.get("auth_type") or AuthType.NONE, "auth_type"),
            auth_credentials=(
                None if data.get("auth_credentials") in (None, "") else str(data["auth_credentials"])
            ),
            custom_headers=_coerce_headers(data.get("custom_headers")),
            user_agent=str(data.get("user_agent") or DEFAULT_USER_AGENT),
            respect_robots=_as_bool(data.get("respect_robots", DEFAULT_RESPECT_ROBOTS), "respect_robots"),
            use_sitemaps=_as_bool(data.get("use_sitemaps", DEFAULT_USE_SITEMAPS), "use_sitemaps"),
            timeout_seconds=_as_float(data.get("timeout_seconds"), "timeout_seconds") or DEFAULT_TIMEOUT_SECONDS,
            max_retries=_as_int(data.get("max_retries"), "max_retries") or DEFAULT_MAX_RETRIES,
            retry_backoff_seconds=(
                _as_float(data.get("retry_backoff_seconds"), "retry_backoff_seconds")
                if data.get("retry_backoff_seconds") is not None
                else DEFAULT_RETRY_BACKOFF_SECONDS
            ),
            schedule=ScheduleConfig.from_dict(schedule_payload),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config(path: str | Path) -> CrawlJobConfig:
    """Load CrawlJobConfig from JSON/YAML path."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigValidationError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ConfigValidationError(f"Config at {config_path} must be a mapping")

    return CrawlJobConfig.from_dict(payload)


def save_config(config: CrawlJobConfig, path: str | Path) -> None:
    """Save CrawlJobConfig as JSON or YAML based on file extension."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ConfigValidationError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "CrawlJobConfig",
    "ScheduleConfig",
    "load_config",
    "save_config",
]
