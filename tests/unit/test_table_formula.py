"""
🧪 Unit Tests for descriptive-table formulas
File: tests/unit/test_table_formula.py
"""

import numpy as np
import pandas as pd
import pytest

from pubtable.exceptions import ConfigurationError
from pubtable.table_formula import parse_table_formula

pytestmark = pytest.mark.unit


@pytest.fixture
def data():
    return pd.DataFrame({
        "grp": ["a", "b", "a", "b"],
        "age": [30.0, np.nan, 50.0, 60.0],
        "bmi": [22.0, 25.0, 27.0, 30.0],
        "stage": [1, 2, 3, 1],
        "body mass": [60, 70, 80, 90],
    })


class TestParseTableFormula:
    def test_group_and_specials(self, data):
        parsed = parse_table_formula("grp ~ age + Q(bmi) + F(stage)", data)
        assert parsed.group == "grp"
        assert parsed.variables == ("age", "bmi", "stage")
        assert parsed.forced == {"bmi": "Q", "stage": "factor"}

    @pytest.mark.parametrize("formula", ["~ age", "age"])
    def test_no_group(self, data, formula):
        parsed = parse_table_formula(formula, data)
        assert parsed.group is None
        assert parsed.variables == ("age",)

    def test_dot_expands_remaining_columns(self, data):
        parsed = parse_table_formula("grp ~ F(stage) + .", data)
        assert parsed.variables == ("stage", "age", "bmi", "body mass")

    def test_backticks(self, data):
        parsed = parse_table_formula("grp ~ `body mass`", data)
        assert parsed.variables == ("body mass",)

    def test_extra_arguments_ignored(self, data):
        parsed = parse_table_formula("grp ~ S(stage, digits = 2)", data)
        assert parsed.forced == {"stage": "numeric"}

    def test_unknown_column(self, data):
        with pytest.raises(ConfigurationError, match="not found"):
            parse_table_formula("grp ~ weight", data)

    def test_empty_right_side(self, data):
        with pytest.raises(ConfigurationError):
            parse_table_formula("grp ~ ", data)

    def test_na_action(self, data):
        assert len(parse_table_formula("grp ~ age", data, na_action="pass").frame) == 4
        assert len(parse_table_formula("grp ~ age", data, na_action="omit").frame) == 3
        with pytest.raises(ConfigurationError):
            parse_table_formula("grp ~ age", data, na_action="fail")
