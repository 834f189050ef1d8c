"""Tests for environment-driven configuration."""

import logging

from config.settings import (
    AnalyticsConfig,
    get_config,
    load_config_from_env,
    reset_config,
)


class TestLoadConfigFromEnv:
    """Tests for load_config_from_env()."""

    def test_defaults(self):
        config = load_config_from_env({})
        assert config == AnalyticsConfig()
        assert config.outlier_std_threshold == 3.0
        assert config.low_cardinality_ratio == 0.1
        assert config.seasonal_period == 12

    def test_overrides(self):
        config = load_config_from_env({
            "TABULAR_ANALYTICS_ZSCORE_THRESHOLD": "2.5",
            "TABULAR_ANALYTICS_SEASONAL_PERIOD": "4",
            "TABULAR_ANALYTICS_MAX_ROWS": " 1000 ",
        })
        assert config.zscore_threshold == 2.5
        assert config.seasonal_period == 4
        assert isinstance(config.seasonal_period, int)
        assert config.max_rows == 1000

    def test_invalid_value_ignored(self, caplog):
        with caplog.at_level(logging.WARNING, logger="config.settings"):
            config = load_config_from_env({"TABULAR_ANALYTICS_MAX_ROWS": "lots"})

        assert config.max_rows == AnalyticsConfig().max_rows
        assert "TABULAR_ANALYTICS_MAX_ROWS" in caplog.text


class TestGetConfig:
    """Tests for the cached process-wide config."""

    def test_cached_until_reset(self, monkeypatch):
        first = get_config()
        assert get_config() is first

        monkeypatch.setenv("TABULAR_ANALYTICS_AR_PHI", "0.5")
        assert get_config().ar_phi == first.ar_phi

        reset_config()
        assert get_config().ar_phi == 0.5
