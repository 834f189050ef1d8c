"""Tests for row set cleaning and rule-based transformations."""

import copy
from datetime import date

import pytest

from analytics.cleaner import (
    CleaningOptions,
    TransformationRule,
    apply_transformations,
    clean,
    run_cleaning,
    standardize_value,
)
from analytics.errors import UnsupportedOptionError
from analytics.schema_profiler import profile_columns


class TestNoOp:
    """Tests for cleaning with every option disabled."""

    def test_returns_equal_copy(self, quality_rows):
        """All flags off returns a deep-equal row set that shares no rows."""
        result = clean(quality_rows, CleaningOptions())

        assert result == quality_rows
        assert result is not quality_rows
        assert all(new is not old for new, old in zip(result, quality_rows))

    def test_none_options(self, region_rows):
        assert clean(region_rows) == region_rows

    def test_input_never_mutated(self, sales_rows):
        """Even with every step enabled the input rows are untouched."""
        before = copy.deepcopy(sales_rows)
        options = CleaningOptions(
            fill_missing=True,
            remove_outliers=True,
            standardize_types=True,
            remove_duplicates=True,
            normalize_text=True,
        )
        clean(sales_rows, options)
        assert sales_rows == before


class TestFillMissing:
    """Tests for the fill_missing step."""

    def test_numeric_column_gets_mean(self):
        rows = [{"a": 1}, {"a": None}, {"a": 2}]
        result = run_cleaning(rows, CleaningOptions(fill_missing=True))

        assert [r["a"] for r in result["rows"]] == [1, 1.5, 2]
        assert result["fixed_issues"] == 1

    def test_mean_rounded_to_two_decimals(self):
        rows = [{"a": 1}, {"a": 1}, {"a": 2}, {"a": None}]
        result = clean(rows, CleaningOptions(fill_missing=True))
        assert result[3]["a"] == 1.33

    def test_text_column_gets_mode(self):
        rows = [{"c": "x"}, {"c": "x"}, {"c": "y"}, {"c": None}]
        result = clean(rows, CleaningOptions(fill_missing=True))
        assert result[3]["c"] == "x"

    def test_numeric_needs_strict_majority(self):
        """Half numeric is not enough; the mode (first seen on a tie) is used."""
        rows = [{"m": "1"}, {"m": "x"}, {"m": None}]
        result = clean(rows, CleaningOptions(fill_missing=True))
        assert result[2]["m"] == "1"

    def test_all_missing_column_unchanged(self):
        rows = [{"a": None, "b": 1}, {"a": None, "b": 2}]
        result = clean(rows, CleaningOptions(fill_missing=True))
        assert [r["a"] for r in result] == [None, None]


class TestRemoveOutliers:
    """Tests for the remove_outliers step."""

    @pytest.mark.parametrize("strategy", ["union", "sequential"])
    def test_drops_three_sigma_row(self, outlier_rows, strategy):
        result = run_cleaning(
            outlier_rows, CleaningOptions(remove_outliers=True, outlier_strategy=strategy)
        )

        assert result["cleaned_rows"] == 20
        assert all(r["reading"] == 10 for r in result["rows"])
        assert result["fixed_issues"] == 1

    def test_unknown_strategy_raises(self, outlier_rows):
        with pytest.raises(UnsupportedOptionError):
            clean(outlier_rows, CleaningOptions(remove_outliers=True, outlier_strategy="median"))

    def test_cleaned_report_attached(self, outlier_rows):
        """The cleaned rows are re-profiled."""
        result = run_cleaning(outlier_rows, {"removeOutliers": True})

        assert result["data_quality"]["total_rows"] == 20
        assert not [
            i for i in result["data_quality"]["issues"] if i["issue_type"] == "outliers"
        ]


class TestStandardizeTypes:
    """Tests for the standardize_types step."""

    def test_row_standardization(self):
        rows = [{
            "n": " 42 ",
            "f": "3.5",
            "d": " 2024-01-05 ",
            "s": "  hi ",
            "b": True,
            "dt": date(2024, 1, 5),
            "x": None,
        }]
        result = clean(rows, CleaningOptions(standardize_types=True))

        assert result == [{
            "n": 42,
            "f": 3.5,
            "d": "2024-01-05",
            "s": "hi",
            "b": "true",
            "dt": "2024-01-05",
            "x": None,
        }]
        assert isinstance(result[0]["n"], int)

    def test_stored_dates_profile_as_date(self):
        """Standardized date values are still profiled as dates."""
        rows = [{"when": date(2024, 1, 5)}, {"when": "2024-02-01"}]
        result = clean(rows, CleaningOptions(standardize_types=True))
        assert profile_columns(result)[0]["inferred_type"] == "date"

    def test_non_matching_strings_kept(self):
        assert standardize_value("12abc") == "12abc"
        assert standardize_value("1e5") == "1e5"
        assert standardize_value(7) == 7

    def test_booleans_become_strings(self):
        result = clean([{"flag": True, "off": False, "n": 5}], CleaningOptions(standardize_types=True))
        assert result == [{"flag": "true", "off": "false", "n": 5}]

    def test_counts_changed_rows(self):
        rows = [{"a": "1"}, {"a": 2}, {"a": " x"}]
        result = run_cleaning(rows, CleaningOptions(standardize_types=True))
        assert result["fixed_issues"] == 2


class TestRemoveDuplicates:
    """Tests for the remove_duplicates step."""

    def test_key_order_independent(self):
        rows = [{"a": 1, "b": 2}, {"b": 2, "a": 1}, {"a": 1, "b": 3}]
        result = clean(rows, CleaningOptions(remove_duplicates=True))
        assert result == [{"a": 1, "b": 2}, {"a": 1, "b": 3}]

    def test_idempotent(self):
        rows = [{"a": 1}, {"a": 1}, {"a": 2}, {"a": 2}, {"a": 3}]
        options = CleaningOptions(remove_duplicates=True)

        once = clean(rows, options)
        twice = clean(once, options)
        assert once == twice == [{"a": 1}, {"a": 2}, {"a": 3}]


class TestNormalizeText:
    """Tests for the normalize_text step."""

    def test_trim_and_title_case(self):
        rows = [{"product_name": "  widget PRO ", "Category": "home goods", "city": " paris "}]
        result = clean(rows, CleaningOptions(normalize_text=True))
        assert result == [{"product_name": "Widget Pro", "Category": "Home Goods", "city": "paris"}]


class TestOptions:
    """Tests for CleaningOptions parsing."""

    def test_from_camel_case_mapping(self):
        options = CleaningOptions.from_mapping({
            "fillMissing": True,
            "removeDuplicates": 1,
            "outlierStrategy": "sequential",
            "unknown": True,
        })
        assert options == CleaningOptions(
            fill_missing=True, remove_duplicates=True, outlier_strategy="sequential"
        )
        assert options.any_enabled

    def test_default_disabled(self):
        assert not CleaningOptions().any_enabled


class TestTransformations:
    """Tests for apply_transformations()."""

    def test_each_operation(self):
        rows = [{
            "code": "a$b#c-1.2",
            "price": "$1,234.50",
            "revenue_m": 2,
            "label": " HeLLo ",
            "note": None,
        }]
        rules = [
            TransformationRule("code", "clean"),
            TransformationRule("price", "parse", {"type": "currency"}),
            TransformationRule("revenue_m", "convert", {"from": "millions", "to": "units"}),
            TransformationRule("label", "normalize"),
            {"column": "note", "operation": "fill", "params": {"value": "n/a"}},
        ]
        result = apply_transformations(rows, rules)

        assert result == [{
            "code": "abc-1.2",
            "price": 1234.5,
            "revenue_m": 2_000_000,
            "label": "hello",
            "note": "n/a",
        }]
        assert rows[0]["price"] == "$1,234.50"

    def test_fill_defaults_to_zero_and_adds_key(self):
        result = apply_transformations([{"a": 1}], [TransformationRule("b", "fill")])
        assert result == [{"a": 1, "b": 0}]

    def test_unknown_operation_raises(self):
        with pytest.raises(UnsupportedOptionError, match="transformation"):
            apply_transformations([{"a": 1}], [TransformationRule("a", "explode")])
