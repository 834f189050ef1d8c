"""Tests for input validation and JSON sanitization."""

import json
import logging
import math
from datetime import date

import numpy as np
import pandas as pd

from analytics.validators import (
    sanitize_column_list,
    sanitize_dict_for_json,
    sanitize_option_keys,
    sanitize_period,
    validate_rows,
)


class TestValidateRows:
    """Tests for validate_rows()."""

    def test_valid(self, region_rows):
        assert validate_rows(region_rows) == (True, None)

    def test_rejections(self):
        assert validate_rows(None) == (False, "No data provided")
        assert validate_rows([])[0] is False
        assert validate_rows("a,b\n1,2")[0] is False
        assert validate_rows([{"a": 1}, ["not", "a", "row"]]) == (
            False, "Row 2 is not a key-value record"
        )
        assert validate_rows([{1: "x"}])[0] is False
        assert validate_rows([{}, {}]) == (False, "Row set has no columns")

    def test_size_guard(self):
        is_valid, error = validate_rows([{"a": 1}] * 3, max_rows=2)
        assert not is_valid
        assert "2 row limit" in error


class TestSanitizers:
    """Tests for option sanitization."""

    def test_period(self):
        assert sanitize_period(None) == "monthly"
        assert sanitize_period(" Quarterly ") == "quarterly"
        assert sanitize_period("year") == "annually"
        assert sanitize_period("Hourly") == "hourly"

    def test_column_list(self):
        assert sanitize_column_list("region") == ["region"]
        assert sanitize_column_list([" a ", "a", "", None, "b"]) == ["a", "b"]
        assert sanitize_column_list(["a", "zzz"], available=["a", "b"]) == ["a"]

    def test_option_keys(self, caplog):
        with caplog.at_level(logging.WARNING, logger="analytics.validators"):
            options = sanitize_option_keys(
                {"groupBy": ["r"], "calculateGrowth": False, "metric": "v", "colour": "red"},
                ("group_by", "calculate_growth", "metric"),
            )

        assert options == {"group_by": ["r"], "calculate_growth": False, "metric": "v"}
        assert "colour" in caplog.text


class TestSanitizeDictForJson:
    """Tests for sanitize_dict_for_json()."""

    def test_converts_numpy_and_non_finite(self):
        payload = {
            "i": np.int64(3),
            "f": np.float32(1.5),
            "nan": float("nan"),
            "inf": np.inf,
            "flag": np.bool_(True),
            "arr": np.array([1, 2]),
            "when": pd.Timestamp("2024-01-02"),
            "day": date(2024, 1, 2),
            "nat": pd.NaT,
            "pair": (1, math.nan),
            1: "int key",
        }
        clean = sanitize_dict_for_json(payload)

        assert clean == {
            "i": 3,
            "f": 1.5,
            "nan": None,
            "inf": None,
            "flag": True,
            "arr": [1, 2],
            "when": "2024-01-02T00:00:00",
            "day": "2024-01-02",
            "nat": None,
            "pair": [1, None],
            "1": "int key",
        }
        json.dumps(clean)
