"""
🧪 Unit Tests for the summary and frequency engines
File: tests/unit/test_summary_stats.py
"""

import numpy as np
import pandas as pd
import pytest

from pubtable.exceptions import ConfigurationError
from pubtable.summary_stats import (
    count_missing,
    factor_levels,
    get_frequency,
    get_summary,
    parse_frequency_format,
    parse_summary_format,
    summarize_values,
)

pytestmark = pytest.mark.unit


class TestTemplates:
    def test_summary_template(self):
        fmt = parse_summary_format("mean(x) (sd(x))", digits=1)
        assert fmt.statistics == ("mean", "sd")
        assert fmt.description == "mean (sd)"

    def test_unknown_statistic(self):
        with pytest.raises(ConfigurationError, match="Unknown statistic"):
            parse_summary_format("geomean(x)", digits=1)

    def test_template_without_statistic(self):
        with pytest.raises(ConfigurationError):
            parse_summary_format("mean", digits=1)

    def test_column_percent_rewrites_percent(self):
        fmt = parse_frequency_format("count(x) (percent(x))", digits=1, column_percent=True)
        assert fmt.template == "count(x) (colpercent(x))"

    def test_row_percent_kept(self):
        fmt = parse_frequency_format("count(x) (percent(x))", digits=1, column_percent=False)
        assert fmt.statistics == ("count", "percent")


class TestSummarizeValues:
    def test_mean_sd_ignores_missing(self):
        fmt = parse_summary_format("mean(x) (sd(x))", digits=1)
        assert summarize_values([1, 2, 3, np.nan], fmt) == "2.0 (1.0)"

    def test_median_iqr_pair(self):
        fmt = parse_summary_format("median(x) [iqr(x)]", digits=1)
        assert summarize_values([1, 2, 3, 4, 5], fmt) == "3.0 [2.0, 4.0]"

    def test_counts_are_integers(self):
        fmt = parse_summary_format("n(x): min(x)-max(x)", digits=2)
        assert summarize_values([1.5, 2.5, np.nan], fmt) == "2: 1.50-2.50"

    def test_single_value_has_undefined_sd(self):
        fmt = parse_summary_format("mean(x) (sd(x))", digits=1)
        assert summarize_values([4.0], fmt) == "4.0 (NA)"


class TestGetSummary:
    def test_per_group_and_total(self):
        data = pd.DataFrame({"age": [20, 30, 40, 50]})
        group = pd.Series(["a", "a", "b", "b"])
        fmt = parse_summary_format("mean(x)", digits=0)
        res = get_summary(data, ["age"], fmt, group, ["a", "b"])["age"]
        assert res.groups == {"a": "25", "b": "45"}
        assert res.totals == "35"


class TestGetFrequency:
    """
    Given sex = M, M, F | F, F, NA in groups a | b
    """

    @pytest.fixture
    def data(self):
        return (
            pd.DataFrame({"sex": ["M", "M", "F", "F", "F", None]}),
            pd.Series(["a", "a", "a", "b", "b", "b"]),
        )

    def test_column_percent(self, data):
        frame, group = data
        fmt = parse_frequency_format("count(x) (percent(x))", digits=1, column_percent=True)
        res = get_frequency(frame, ["sex"], fmt, group, ["a", "b"])["sex"]
        assert res.levels == ("F", "M")
        assert res.groups.loc["F", "a"] == "1 (33.3)"
        assert res.groups.loc["M", "a"] == "2 (66.7)"
        assert res.groups.loc["F", "b"] == "2 (100.0)"
        assert res.groups.loc["M", "b"] == "0 (0.0)"
        assert res.totals["F"] == "3 (60.0)"
        assert res.totals["M"] == "2 (40.0)"

    def test_row_percent(self, data):
        frame, group = data
        fmt = parse_frequency_format("count(x) (percent(x))", digits=1, column_percent=False)
        res = get_frequency(frame, ["sex"], fmt, group, ["a", "b"])["sex"]
        assert res.groups.loc["F", "a"] == "1 (33.3)"
        assert res.groups.loc["F", "b"] == "2 (66.7)"
        assert res.groups.loc["M", "a"] == "2 (100.0)"

    def test_missing_counts(self, data):
        frame, group = data
        per_group, totals = count_missing(frame, ["sex"], group, ["a", "b"])
        assert totals == {"sex": 1}
        assert per_group == {"sex": {"a": 0, "b": 1}}


class TestFactorLevels:
    def test_categorical_order_kept(self):
        s = pd.Series(pd.Categorical(["low", "high"], categories=["low", "mid", "high"]))
        assert factor_levels(s) == ["low", "mid", "high"]

    def test_boolean(self):
        assert factor_levels(pd.Series([True, False, None])) == ["False", "True"]

    def test_numeric_sorted_numerically(self):
        assert factor_levels(pd.Series([10, 2, 1, 2])) == ["1", "2", "10"]
