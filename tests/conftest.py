"""Shared pytest fixtures for all tests."""

import os

import pytest

from config.settings import ENV_PREFIX, reset_config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Isolate every test from TABULAR_ANALYTICS_* variables and the cached config."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def region_rows() -> list[dict]:
    return [
        {"region": "US", "rev": 10},
        {"region": "US", "rev": 20},
        {"region": "EU", "rev": 5},
    ]


@pytest.fixture
def monthly_rows() -> list[dict]:
    return [
        {"date": "2024-01-15", "value": 100},
        {"date": "2024-02-10", "value": 150},
    ]


@pytest.fixture
def quality_rows() -> list[dict]:
    return [
        {"a": 1, "b": "x"},
        {"a": None, "b": "y"},
    ]


@pytest.fixture
def outlier_rows() -> list[dict]:
    """Twenty ordinary readings and one value far beyond 3 standard deviations."""
    rows = [{"id": i, "reading": 10} for i in range(20)]
    rows.append({"id": 20, "reading": 1000})
    return rows


@pytest.fixture
def sales_rows() -> list[dict]:
    """Monthly sales for two regions over one year."""
    rows = []
    for month in range(1, 13):
        rows.append({
            "date": f"2024-{month:02d}-01",
            "region": "North",
            "product_name": "  widget pro ",
            "units": 10 + month,
            "revenue": 100.0 * month,
        })
        rows.append({
            "date": f"2024-{month:02d}-15",
            "region": "South",
            "product_name": "gadget",
            "units": 5 + 2 * month,
            "revenue": 50.0 * month + 25,
        })
    return rows
