"""
Matcher configuration.

Settings are resolved from the settings table (``matcher_*`` keys), then
from per-provider defaults, then from the built-in defaults below. Delays
and timeouts are stored in milliseconds; the ``*_seconds`` properties give
the values the async runtime expects.

``MatcherConfig`` is a frozen pydantic model: stored strings are coerced to
the field types and range limits are checked on construction.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError


class MatcherConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(default="gpt-4o-mini", min_length=1)
    reasoning_effort: str = "medium"
    bulk_enabled: bool = True
    batch_size: int = Field(default=2, ge=1, le=10)
    max_retries: int = Field(default=3, ge=1, le=5)
    concurrency_limit: int = Field(default=3, ge=1, le=10)
    serialize_operations: bool = False
    inter_request_delay_ms: int = Field(default=0, ge=0, le=10000)
    timeout_ms: int = Field(default=30000, ge=5000, le=120000)
    backoff_base_delay_ms: int = Field(default=2000, ge=0)
    backoff_max_delay_ms: int = Field(default=32000, ge=0)
    backoff_jitter_ms: int = Field(default=1000, ge=0)
    circuit_breaker_threshold: int = Field(default=10, ge=3, le=50)
    circuit_breaker_reset_timeout_ms: int = Field(default=60000, ge=0)
    circuit_breaker_half_open_max_calls: int = Field(default=3, ge=1)
    auto_match_after_scrape: bool = True

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "MatcherConfig":
        if self.backoff_base_delay_ms > self.backoff_max_delay_ms:
            raise ValueError("Backoff base delay must not exceed backoff max delay")
        return self

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    @property
    def backoff_base_delay_seconds(self) -> float:
        return self.backoff_base_delay_ms / 1000

    @property
    def backoff_max_delay_seconds(self) -> float:
        return self.backoff_max_delay_ms / 1000

    @property
    def backoff_jitter_seconds(self) -> float:
        return self.backoff_jitter_ms / 1000

    @property
    def inter_request_delay_seconds(self) -> float:
        return self.inter_request_delay_ms / 1000

    @property
    def circuit_breaker_reset_timeout_seconds(self) -> float:
        return self.circuit_breaker_reset_timeout_ms / 1000

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def with_overrides(self, **overrides: Any) -> "MatcherConfig":
        """Validated copy with ``overrides`` applied."""
        return MatcherConfig.model_validate({**self.model_dump(), **overrides})


DEFAULT_MATCHER_CONFIG = MatcherConfig()

# Providers that cannot take parallel load, or throttle aggressively.
PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "modal": {"concurrency_limit": 1, "serialize_operations": True, "bulk_enabled": False},
    "gemini-cli": {"concurrency_limit": 1, "serialize_operations": True, "timeout_ms": 90000},
    "groq": {"inter_request_delay_ms": 500, "batch_size": 3},
    "cerebras": {"inter_request_delay_ms": 250},
}

# Settings table key -> MatcherConfig field
SETTING_KEYS: Dict[str, str] = {
    "matcher_model": "model",
    "matcher_reasoning_effort": "reasoning_effort",
    "matcher_bulk_enabled": "bulk_enabled",
    "matcher_batch_size": "batch_size",
    "matcher_max_retries": "max_retries",
    "matcher_concurrency_limit": "concurrency_limit",
    "matcher_serialize_operations": "serialize_operations",
    "matcher_inter_request_delay_ms": "inter_request_delay_ms",
    "matcher_timeout_ms": "timeout_ms",
    "matcher_backoff_base_delay": "backoff_base_delay_ms",
    "matcher_backoff_max_delay": "backoff_max_delay_ms",
    "matcher_circuit_breaker_threshold": "circuit_breaker_threshold",
    "matcher_circuit_breaker_reset_timeout": "circuit_breaker_reset_timeout_ms",
    "matcher_auto_match_after_scrape": "auto_match_after_scrape",
}

# Readable messages for the range-checked fields
RANGE_MESSAGES: Dict[str, str] = {
    "batch_size": "Batch size must be between 1 and 10",
    "max_retries": "Max retries must be between 1 and 5",
    "concurrency_limit": "Concurrency limit must be between 1 and 10",
    "inter_request_delay_ms": "Inter-request delay must be between 0ms and 10s",
    "timeout_ms": "Timeout must be between 5s and 120s",
    "circuit_breaker_threshold": "Circuit breaker threshold must be between 3 and 50",
}

ConfigValues = Union[MatcherConfig, Mapping[str, Any]]


def get_provider_defaults(provider: Optional[str]) -> Dict[str, Any]:
    return dict(PROVIDER_DEFAULTS.get(provider or "", {}))


def resolve_matcher_settings(
    settings: Mapping[str, str],
    provider: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Merge stored settings over provider defaults, without validating.

    Blank stored values count as unset. Stored values stay strings; the
    model coerces them.
    """
    resolved = get_provider_defaults(provider)
    for key, field_name in SETTING_KEYS.items():
        raw = settings.get(key)
        if raw is not None and raw.strip() != "":
            resolved[field_name] = raw.strip()
    return resolved


def _describe(error: Dict[str, Any]) -> str:
    if not error["loc"]:
        if error["type"] == "value_error":
            return str(error["ctx"]["error"])
        return error["msg"]

    field_name = str(error["loc"][0])
    if error["type"] in ("greater_than_equal", "less_than_equal") and field_name in RANGE_MESSAGES:
        return RANGE_MESSAGES[field_name]
    return f"{field_name}: {error['msg']}"


def validate_matcher_config(values: ConfigValues) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.

    Accepts a MatcherConfig or a mapping of field names to raw values.
    """
    if isinstance(values, MatcherConfig):
        values = values.model_dump()
    try:
        MatcherConfig.model_validate(dict(values))
    except ValidationError as e:
        return [_describe(error) for error in e.errors()]
    return []


def ensure_valid(values: ConfigValues) -> MatcherConfig:
    """Return a MatcherConfig, or raise ConfigError listing every problem."""
    errors = validate_matcher_config(values)
    if errors:
        raise ConfigError("; ".join(errors))
    if isinstance(values, MatcherConfig):
        return values
    return MatcherConfig.model_validate(dict(values))


def build_matcher_config(
    settings: Mapping[str, str],
    provider: Optional[str] = None,
) -> MatcherConfig:
    """
    Resolve a MatcherConfig from raw settings strings.

    Args:
        settings: Mapping of settings-table keys to stored string values
        provider: Active provider name, used to pick provider defaults

    Returns:
        Fully populated MatcherConfig

    Raises:
        ConfigError: If a stored value cannot be parsed or is out of range
    """
    return ensure_valid(resolve_matcher_settings(settings, provider=provider))


def load_matcher_config(store, provider: Optional[str] = None) -> MatcherConfig:
    """Read matcher settings from the store and resolve them."""
    settings = store.get_settings(list(SETTING_KEYS))
    return build_matcher_config(settings, provider=provider)
