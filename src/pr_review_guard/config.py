"""Configuration loading for PR Review Guard."""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEGRADATION_MODES = ["full", "partial", "minimal", "offline"]
PRODUCTION_BRANCHES = ["main", "master", "production", "prod", "live"]


@dataclass
class LimitsConfig:
    """Changeset size limits."""

    max_files_per_review: int = 50
    max_file_size_bytes: int = 1024 * 1024
    max_total_size_bytes: int = 5 * 1024 * 1024
    max_tokens: int = 4000


@dataclass
class RetryConfig:
    """Retry and fallback behaviour for review calls."""

    max_retries: int = 3
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 10000
    fallbacks_enabled: bool = True


@dataclass
class QualityGateConfig:
    """Quality gate policy."""

    enabled: bool = True
    severity_threshold: str = "HIGH"
    block_production: bool = True
    allow_urgent_override: bool = True
    urgent_keyword: str = "URGENT"
    max_overrides_per_day: int = 3
    production_branches: list[str] = field(
        default_factory=lambda: list(PRODUCTION_BRANCHES)
    )


@dataclass
class DegradationConfig:
    """Service availability monitoring."""

    modes: list[str] = field(default_factory=lambda: list(DEGRADATION_MODES))
    check_interval_ms: int = 30000
    probe_timeout_seconds: float = 10.0


@dataclass
class LLMConfig:
    """LLM configuration."""

    provider: str = "anthropic"
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096


@dataclass
class Config:
    """Main configuration object."""

    version: int = 1
    current_environment: str = "development"
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    quality_gates: QualityGateConfig = field(default_factory=QualityGateConfig)
    degradation: DegradationConfig = field(default_factory=DegradationConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    ignore: list[str] = field(default_factory=list)


def _known_fields(section_cls: type, data: dict) -> dict:
    """Drop keys the dataclass doesn't declare."""
    return {
        k: v for k, v in (data or {}).items()
        if k in section_cls.__dataclass_fields__
    }


def load_config(path: Path) -> Config:
    """Load configuration from YAML file, with defaults for missing values."""
    config = Config()

    if not path.exists():
        return config

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if "version" in data:
        config.version = data["version"]

    if "current_environment" in data:
        config.current_environment = data["current_environment"]

    if "limits" in data:
        config.limits = LimitsConfig(**_known_fields(LimitsConfig, data["limits"]))

    if "retry" in data:
        config.retry = RetryConfig(**_known_fields(RetryConfig, data["retry"]))

    if "quality_gates" in data:
        config.quality_gates = QualityGateConfig(
            **_known_fields(QualityGateConfig, data["quality_gates"])
        )

    if "degradation" in data:
        config.degradation = DegradationConfig(
            **_known_fields(DegradationConfig, data["degradation"])
        )

    if "llm" in data:
        config.llm = LLMConfig(**_known_fields(LLMConfig, data["llm"]))

    if "ignore" in data:
        config.ignore = data["ignore"]

    return config


def validate_config(config: Config) -> list[str]:
    """Return human-readable problems with the config. Empty means valid."""
    errors = []

    limits = config.limits
    for name in (
        "max_files_per_review",
        "max_file_size_bytes",
        "max_total_size_bytes",
        "max_tokens",
    ):
        if getattr(limits, name) <= 0:
            errors.append(f"limits.{name} must be positive")

    retry = config.retry
    if retry.max_retries < 1:
        errors.append("retry.max_retries must be at least 1")
    if retry.retry_delay_ms < 0 or retry.max_retry_delay_ms < 0:
        errors.append("retry delays must be non-negative")
    if retry.max_retry_delay_ms < retry.retry_delay_ms:
        errors.append("retry.max_retry_delay_ms must not be below retry.retry_delay_ms")

    gates = config.quality_gates
    if gates.severity_threshold not in ("HIGH", "MEDIUM", "LOW"):
        errors.append(
            f"quality_gates.severity_threshold must be HIGH, MEDIUM or LOW "
            f"(got {gates.severity_threshold!r})"
        )
    if not isinstance(gates.max_overrides_per_day, int) or gates.max_overrides_per_day < 0:
        errors.append("quality_gates.max_overrides_per_day must be a non-negative number")
    if not gates.urgent_keyword or not gates.urgent_keyword.strip():
        errors.append("quality_gates.urgent_keyword must not be empty")

    unknown_modes = [m for m in config.degradation.modes if m not in DEGRADATION_MODES]
    if unknown_modes:
        errors.append(f"degradation.modes contains unknown modes: {unknown_modes}")
    if config.degradation.check_interval_ms < 0:
        errors.append("degradation.check_interval_ms must be non-negative")

    return errors
