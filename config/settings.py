# settings.py — Analytics configuration
# Tunable thresholds for profiling, cleaning, anomaly detection and tests
"""
settings.py — Analytics Configuration

Every numeric threshold used by the analytics core lives here so the
host application can tune it without touching the algorithms.

Defaults can be overridden with environment variables:
    TABULAR_ANALYTICS_OUTLIER_STD_THRESHOLD=3.0
    TABULAR_ANALYTICS_LOW_CARDINALITY_RATIO=0.1
    TABULAR_ANALYTICS_ZSCORE_THRESHOLD=3.0
    TABULAR_ANALYTICS_IQR_MULTIPLIER=1.5
    TABULAR_ANALYTICS_MULTIVARIATE_THRESHOLD=2.5
    TABULAR_ANALYTICS_SIGNIFICANCE_LEVEL=0.05
    TABULAR_ANALYTICS_AR_PHI=0.8
    TABULAR_ANALYTICS_SEASONAL_PERIOD=12
    TABULAR_ANALYTICS_MAX_ROWS=500000
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

ENV_PREFIX = "TABULAR_ANALYTICS_"

DEFAULT_OUTLIER_STD_THRESHOLD = 3.0
DEFAULT_LOW_CARDINALITY_RATIO = 0.1
DEFAULT_ZSCORE_THRESHOLD = 3.0
DEFAULT_IQR_MULTIPLIER = 1.5
DEFAULT_MULTIVARIATE_THRESHOLD = 2.5
DEFAULT_SIGNIFICANCE_LEVEL = 0.05
DEFAULT_AR_PHI = 0.8
DEFAULT_SEASONAL_PERIOD = 12
DEFAULT_MAX_ROWS = 500_000  # Host-side guard against pathological uploads


# =============================================================================
# CONFIG
# =============================================================================

@dataclass(frozen=True)
class AnalyticsConfig:
    """Thresholds shared by the profiler, cleaner and stats engine."""
    outlier_std_threshold: float = DEFAULT_OUTLIER_STD_THRESHOLD
    low_cardinality_ratio: float = DEFAULT_LOW_CARDINALITY_RATIO
    zscore_threshold: float = DEFAULT_ZSCORE_THRESHOLD
    iqr_multiplier: float = DEFAULT_IQR_MULTIPLIER
    multivariate_threshold: float = DEFAULT_MULTIVARIATE_THRESHOLD
    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL
    ar_phi: float = DEFAULT_AR_PHI
    seasonal_period: int = DEFAULT_SEASONAL_PERIOD
    max_rows: int = DEFAULT_MAX_ROWS


def load_config_from_env(environ: dict[str, str] | None = None) -> AnalyticsConfig:
    """
    Build an AnalyticsConfig from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        AnalyticsConfig with any valid overrides applied.
        Values that fail to parse are ignored with a warning.
    """
    environ = os.environ if environ is None else environ
    config = AnalyticsConfig()
    overrides = {}

    for f in fields(AnalyticsConfig):
        raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None or raw.strip() == "":
            continue

        caster = int if f.type in (int, "int") else float
        try:
            overrides[f.name] = caster(raw.strip())
        except ValueError:
            logger.warning("Ignoring invalid value %r for %s%s", raw, ENV_PREFIX, f.name.upper())

    if overrides:
        config = replace(config, **overrides)
    return config


# Config singleton (lazy initialization)
_config: AnalyticsConfig | None = None


def get_config() -> AnalyticsConfig:
    """
    Get or create the process-wide config.

    Returns:
        AnalyticsConfig loaded from the environment on first call
    """
    global _config
    if _config is None:
        _config = load_config_from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
