"""
🔗 Integration Tests for descriptive tables and cause-specific Cox tables
File: tests/integration/test_univariate_pipeline.py

1. Baseline table by group with every comparison method
2. Printing through publish_univariate
3. Cause-specific Cox models: fitting, per-cause and combined tables
"""

import io

import numpy as np
import pandas as pd
import pytest

from pubtable.exceptions import ConfigurationError
from pubtable.formatting import SIGNIF_LEGEND
from pubtable.publish import fit_cause_specific_cox, publish_cause_specific, publish_univariate
from pubtable.univariate_table import univariate_table

pytestmark = pytest.mark.integration


class TestUnivariatePipeline:
    FORMULA = "sex ~ age + Q(bmi) + stage + smoker"

    def test_default_comparison(self, clinical_data):
        tab = univariate_table(self.FORMULA, clinical_data)
        assert tab.vartype == {"age": "numeric", "bmi": "Q", "stage": "factor", "smoker": "factor"}
        assert tab.groups == ("female", "male")
        assert tab.group_labels == ("female", "male")
        for var in tab.variables:
            assert 0 <= tab.p_values[var] <= 1

        out = tab.summary()
        n_female = int((clinical_data["sex"] == "female").sum())
        assert f"female (n={n_female})" in out.columns
        # one row each for age and bmi, three for stage, two for smoker
        assert len(out) == 7
        assert list(out.loc[out["Variable"] == "smoker", "Level"]) == ["False"]

    def test_boolean_without_missing(self, clinical_data):
        tab = univariate_table(self.FORMULA, clinical_data)
        assert tab.missing_totals["smoker"] == 0
        assert sum(tab.missing_groups["smoker"].values()) == 0

    def test_logistic_comparison(self, clinical_data):
        tab = univariate_table(self.FORMULA, clinical_data, compare_groups="logistic")
        assert tab.compare_groups == "logistic"
        assert all(np.isfinite(p) for p in tab.p_values.values())

    def test_cox_comparison(self, clinical_data):
        tab = univariate_table(
            "sex ~ age + stage", clinical_data, compare_groups="cox",
            outcome=clinical_data[["time", "status"]],
        )
        assert 0 <= tab.p_values["age"] <= 1
        assert 0 <= tab.p_values["stage"] <= 1

    def test_totals_hidden(self, clinical_data):
        tab = univariate_table(self.FORMULA, clinical_data, show_totals=False)
        assert not any(c.startswith("Total") for c in tab.summary().columns)

    def test_publish_univariate(self, clinical_data):
        stream = io.StringIO()
        tab = univariate_table(self.FORMULA, clinical_data)
        out = publish_univariate(tab, stream=stream, show_missing="always")
        assert (out["Level"] == "missing").sum() == 4
        assert "mean (sd)" in stream.getvalue()


class TestCauseSpecificCox:
    @pytest.fixture
    def competing_data(self, clinical_data):
        rng = np.random.default_rng(7)
        data = clinical_data.copy()
        data["cause"] = data["status"] * rng.choice([1, 2], len(data))
        return data

    def test_one_model_per_cause(self, competing_data):
        csc = fit_cause_specific_cox("age + C(sex)", competing_data, time="time", status="cause")
        assert csc.causes == ["1", "2"]

    def test_combined_tables(self, competing_data):
        csc = fit_cause_specific_cox("~ age + C(sex)", competing_data, time="time", status="cause")
        tables = publish_cause_specific(csc, print_table=False)
        assert list(tables) == ["1", "2"]
        assert list(tables["1"].columns)[:3] == ["cause.1.Variable", "cause.1.Units", "cause.1.HazardRatio"]

    def test_single_cause(self, competing_data):
        csc = fit_cause_specific_cox("age + C(sex)", competing_data, time="time", status="cause")
        stream = io.StringIO()
        table = publish_cause_specific(csc, cause=2, stream=stream, pvalue_stars=True)
        assert "HazardRatio" in table.columns
        text = stream.getvalue()
        assert text.startswith("Cause: 2")
        assert SIGNIF_LEGEND in text

    def test_unknown_cause(self, competing_data):
        csc = fit_cause_specific_cox("age", competing_data, time="time", status="cause")
        with pytest.raises(ConfigurationError, match="Unknown cause"):
            publish_cause_specific(csc, cause=3, print_table=False)

    def test_no_events(self, clinical_data):
        data = clinical_data.assign(status=0)
        with pytest.raises(ConfigurationError):
            fit_cause_specific_cox("age", data, time="time", status="status")
