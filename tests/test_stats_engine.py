"""Tests for the statistics engine."""

import math

import pytest

from analytics import stats_engine as se
from analytics.errors import UnsupportedOptionError


class TestDescriptive:
    """Tests for the descriptive statistics."""

    def test_population_definitions(self):
        values = [1, 2, 3, 4]
        assert se.mean(values) == 2.5
        assert se.median(values) == 2.5
        assert se.variance(values) == pytest.approx(1.25)
        assert se.std_dev(values) == pytest.approx(math.sqrt(1.25))
        assert se.minimum(values) == 1
        assert se.maximum(values) == 4

    def test_mode(self):
        assert se.mode([1, 2, 2, 3]) == 2
        assert se.mode([3, 1]) == 3

    def test_non_numeric_ignored(self):
        assert se.mean([1, "3", None, "x", True]) == 2

    def test_empty_is_neutral(self):
        assert se.mean([]) == 0
        assert se.median([]) == 0
        assert se.std_dev([]) == 0
        assert se.minimum([]) == 0
        assert se.maximum([]) == 0
        assert se.mode([]) is None


class TestCorrelation:
    """Tests for correlation() and correlation_matrix()."""

    def test_perfect_positive(self):
        assert se.correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_degenerate_is_zero(self):
        assert se.correlation([1, 2, 3], [5, 5, 5]) == 0.0
        assert se.correlation([1], [2]) == 0.0
        assert se.correlation([], []) == 0.0

    def test_only_paired_values_used(self):
        assert se.correlation([1, 2, None, 3], [1, 2, 100, 3]) == pytest.approx(1.0)

    def test_matrix(self):
        rows = [{"x": i, "y": 2 * i, "z": 1, "label": "a"} for i in range(5)]
        matrix = se.correlation_matrix(rows)

        assert set(matrix) == {"x", "y", "z"}
        assert matrix["x"]["y"] == 1.0
        assert matrix["y"]["x"] == 1.0
        assert matrix["x"]["z"] == 0.0
        assert matrix["x"]["x"] == 1.0


class TestHypothesisTests:
    """Tests for t_test() and chi_square_test()."""

    def test_t_test_significant(self):
        result = se.t_test([1, 2, 3, 4, 5], [11, 12, 13, 14, 15])

        assert result["statistic"] == pytest.approx(-10)
        assert result["degrees_of_freedom"] == pytest.approx(8)
        assert result["p_value"] < 0.05
        assert result["exact_p_value"] < 0.05
        assert result["significant"] is True

    def test_t_test_identical_samples(self):
        result = se.t_test([1, 2, 3], [1, 2, 3])
        assert result["statistic"] == 0
        assert result["p_value"] == 1.0
        assert result["significant"] is False

    def test_t_test_degenerate(self):
        assert se.t_test([1], [2, 3])["significant"] is False
        assert se.t_test([4, 4], [4, 4])["p_value"] == 1.0

    def test_chi_square_matching(self):
        result = se.chi_square_test([10, 10, 10], [10, 10, 10])
        assert result["statistic"] == 0
        assert result["degrees_of_freedom"] == 2
        assert result["p_value"] == 1.0

    def test_chi_square_significant(self):
        result = se.chi_square_test([50, 0], [25, 25])
        assert result["statistic"] == 50
        assert result["significant"] is True

    def test_chi_square_skips_zero_expectation(self):
        result = se.chi_square_test([5, 5, 9], [5, 5, 0])
        assert result["degrees_of_freedom"] == 1
        assert result["statistic"] == 0

    def test_chi_square_uniformity(self):
        rows = [{"c": "a"}] * 5 + [{"c": "b"}] * 5 + [{"c": None}]
        result = se.chi_square_uniformity(rows, "c")
        assert result["categories"] == 2
        assert result["statistic"] == 0
        assert result["significant"] is False


class TestRegression:
    """Tests for the regression models."""

    def test_linear_round_trip(self):
        """Noise-free y = 2x + 1 is recovered exactly."""
        model = se.linear_regression_model([(x, 2 * x + 1) for x in range(10)])

        assert model["type"] == "linear"
        assert model["coefficients"]["slope"] == pytest.approx(2)
        assert model["coefficients"]["intercept"] == pytest.approx(1)
        assert model["rmse"] == pytest.approx(0, abs=1e-9)
        assert model["accuracy"] == pytest.approx(1)
        assert model["predictions"][3] == {"x": 3.0, "y": 7.0, "predicted": pytest.approx(7)}

    def test_dict_points_and_bad_points(self):
        points = [{"x": 0, "y": 1}, {"x": 1, "y": 3}, {"x": "n/a", "y": 4}, (2, 5), "junk"]
        model = se.linear_regression_model(points)
        assert len(model["predictions"]) == 3
        assert model["coefficients"]["slope"] == pytest.approx(2)

    def test_linear_constant_x_is_flat(self):
        model = se.linear_regression_model([(1, 2), (1, 4)])
        assert model["coefficients"]["slope"] == 0
        assert model["coefficients"]["intercept"] == 3

    def test_poor_fit_accuracy(self):
        """Accuracy is 1 - rmse / std(y) with population std."""
        model = se.polynomial_regression_model([(0, 0), (1, 10), (2, 0), (3, 10)], degree=1)
        assert model["coefficients"] == pytest.approx([2, 2])
        assert model["accuracy"] == pytest.approx(1 - math.sqrt(20) / 5, abs=1e-6)

    def test_empty_points(self):
        model = se.linear_regression_model([])
        assert model["rmse"] == 0
        assert model["predictions"] == []

    def test_polynomial_recovers_quadratic(self):
        model = se.polynomial_regression_model([(x, x * x) for x in range(-3, 4)], degree=2)

        assert model["type"] == "polynomial"
        assert model["degree"] == 2
        assert model["coefficients"] == pytest.approx([0, 0, 1], abs=1e-6)
        assert model["rmse"] == pytest.approx(0, abs=1e-6)

    def test_polynomial_too_few_points_is_flat(self):
        model = se.polynomial_regression_model([(0, 1), (1, 3)], degree=3)
        assert model["coefficients"] == [2.0, 0.0, 0.0, 0.0]

    def test_invalid_degree_raises(self):
        with pytest.raises(UnsupportedOptionError):
            se.polynomial_regression_model([(0, 0), (1, 1)], degree=0)

    def test_dispatcher(self):
        points = [(x, 2 * x + 1) for x in range(5)]
        assert se.build_regression_model(points, "linear")["type"] == "linear"
        assert se.build_regression_model(points, "polynomial", 2)["degree"] == 2
        with pytest.raises(UnsupportedOptionError, match="model type"):
            se.build_regression_model(points, "random_forest")


class TestAnomalies:
    """Tests for the anomaly detectors."""

    def test_zscore_flags_the_spike(self):
        """In [10, 10, 10, 10, 100] the spike sits at |z| = 2, the most five points allow."""
        result = se.detect_anomalies_zscore([10, 10, 10, 10, 100], threshold=1.5)

        assert result["anomalies"] == [{"index": 4, "value": 100, "z_score": 2.0}]
        assert result["total_anomalies"] == 1

    def test_zscore_default_threshold(self):
        values = [10] * 20 + [100]
        result = se.detect_anomalies_zscore(values)

        assert result["threshold"] == 3.0
        assert [a["value"] for a in result["anomalies"]] == [100]

    def test_iqr_flags_the_spike(self):
        result = se.detect_anomalies_iqr([10, 10, 10, 10, 100])

        assert [a["value"] for a in result["anomalies"]] == [100]
        assert result["bounds"] == {"lower": 10.0, "upper": 10.0}

    def test_degenerate_inputs(self):
        assert se.detect_anomalies_zscore([5, 5, 5])["anomalies"] == []
        assert se.detect_anomalies_zscore([])["anomalies"] == []
        assert se.detect_anomalies_iqr([])["anomalies"] == []

    def test_averaged_zscore(self):
        rows = [{"a": 10, "b": 10, "c": "x"} for _ in range(20)]
        rows.append({"a": 100, "b": 100, "c": "y"})
        result = se.averaged_zscore_anomalies(rows, ["a", "b", "c"])

        assert result["method"] == "averaged z-score"
        assert [a["index"] for a in result["anomalies"]] == [20]

    def test_metric_anomaly_records(self):
        rows = [{"company": f"Co {i}", "cost": 10} for i in range(19)]
        rows.append({"company": "Spike Inc", "cost": 100})
        (record,) = se.detect_metric_anomalies(rows, "cost")

        assert record["label"] == "Spike Inc"
        assert record["metric"] == "cost"
        assert record["observed"] == 100
        assert record["expected"] == 14.5
        assert record["deviation"] == 85.5
        assert record["severity"] == "high"
        assert record["trend"] == "declining"

    def test_metric_anomaly_label_fallback_and_direction(self):
        rows = [{"v": 10} for _ in range(19)] + [{"v": 100}]
        (record,) = se.detect_metric_anomalies(rows, "v", higher_is_better=True)
        assert record["label"] == "Row 20"
        assert record["trend"] == "improving"

    def test_metric_anomaly_constant_column(self):
        assert se.detect_metric_anomalies([{"v": 1}, {"v": 1}], "v") == []


class TestTimeSeries:
    """Tests for decomposition, forecasting and trend detection."""

    def test_seasonal_decompose(self):
        values = [1, 2, 3] * 8
        result = se.seasonal_decompose(values, period=3)

        assert result["trend"][:2] == [None, None]
        assert result["trend"][2] == pytest.approx(2)
        assert result["seasonal_indices"] == pytest.approx([-1, 0, 1])
        assert result["residual"] == pytest.approx([0] * 24)
        assert result["original"] == [float(v) for v in values]

    def test_seasonal_decompose_empty(self):
        assert se.seasonal_decompose([])["trend"] == []

    def test_ar1_forecast(self):
        assert se.ar1_naive_forecast([0, 10], 2) == pytest.approx([9, 8.2])
        assert se.ar1_naive_forecast([0, 10], 0) == []
        assert se.ar1_naive_forecast([], 3) == []

    def test_detect_trends(self):
        rows = [
            {"month": "2024-04-01", "sales": 40},
            {"month": "2024-01-01", "sales": 10},
            {"month": "2024-03-01", "sales": 30},
            {"month": "2024-02-01", "sales": 20},
        ]
        result = se.detect_trends(rows, "month", "sales")

        assert result["trend"] == "increasing"
        assert result["slope"] == 10
        assert result["change_percent"] == 300
        assert result["forecast"] == pytest.approx([50, 60, 70])
        assert result["seasonality"] is False

    def test_detect_repeating_pattern(self):
        rows = [
            {"date": f"{2022 + i // 12}-{i % 12 + 1:02d}-01", "v": i % 2}
            for i in range(24)
        ]
        result = se.detect_trends(rows, "date", "v")
        assert result["trend"] == "stable"
        assert result["seasonality"] is True

    def test_linear_forecast(self):
        rows = [{"t": f"2024-0{m}-01", "v": 10 * m} for m in (1, 2, 3)]
        points = se.linear_forecast(rows, "t", "v", horizon=2)

        assert len(points) == 5
        assert points[0]["actual"] == 10
        assert points[3]["period"] == "Period 4"
        assert points[3]["forecast"] == pytest.approx(40)
        assert points[3]["lower"] == pytest.approx(32)
        assert points[4]["confidence"] == 0.91


class TestComprehensiveAnalysis:
    """Tests for comprehensive_analysis()."""

    def test_summary_and_recommendations(self, sales_rows):
        result = se.comprehensive_analysis(sales_rows)
        summary = result["summary"]

        assert summary["total_rows"] == 24
        assert summary["date_columns"] == ["date"]
        assert summary["numeric_columns"] == ["units", "revenue"]
        assert summary["categorical_columns"] == ["region", "product_name"]
        assert result["insights"][0] == "Data completeness: 100.0% of cells contain valid data"
        assert result["correlations"][0]["columns"] == ["units", "revenue"]
        assert "Perform regression analysis to predict key metrics" in result["recommendations"]
        assert "Create pivot tables to analyze metrics by categories" in result["recommendations"]
        assert result["statistics"]["units"]["min"] == 7

    def test_numeric_text_insight(self):
        rows = [{"code": "1"}, {"code": "2"}, {"code": "3"}]
        result = se.comprehensive_analysis(rows)
        assert any('Column "code" appears to contain mostly numeric values' in i for i in result["insights"])

    def test_empty(self):
        result = se.comprehensive_analysis([])
        assert result["summary"]["total_rows"] == 0
        assert result["insights"] == []
