"""
🧪 Unit Tests for model introspection
File: tests/unit/test_model_terms.py
"""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from pubtable.exceptions import ConfigurationError, FormulaUnavailable
from pubtable.model_terms import (
    FittedModel,
    ModelFamily,
    ModelSnapshot,
    ModelTerm,
    display_name,
    raw_variables,
    split_interaction,
)

pytestmark = pytest.mark.unit


class TestNames:
    def test_split_interaction_respects_parentheses(self):
        assert split_interaction('C(a, Treatment("x")):b') == ['C(a, Treatment("x"))', "b"]

    @pytest.mark.parametrize(
        "factor,expected",
        [
            ("age", "age"),
            ("C(sex)", "sex"),
            ('C(sex, Treatment("m"))', "sex"),
            ('Q("body mass")', "body mass"),
            ("C(Q('body mass'))", "body mass"),
        ],
    )
    def test_display_name(self, factor, expected):
        assert display_name(factor) == expected

    def test_raw_variables(self):
        assert raw_variables("np.log(bili)", ["bili", "age"]) == ("bili",)
        assert raw_variables('Q("body mass")', ["body mass"]) == ("body mass",)
        assert raw_variables("I(age ** 2)", ["age", "age2"]) == ("age",)

    def test_term_order(self):
        assert ModelTerm.from_label("age").order == 1
        term = ModelTerm.from_label("C(sex):age")
        assert term.order == 2
        assert term.factors == ("C(sex)", "age")


class TestModelFamily:
    def test_parse(self):
        assert ModelFamily.parse("Logistic") is ModelFamily.LOGISTIC
        assert ModelFamily.parse(ModelFamily.COX) is ModelFamily.COX

    def test_parse_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown model family"):
            ModelFamily.parse("probit")

    def test_labels(self):
        assert ModelFamily.LINEAR.model_label == "Linear regression"
        assert not ModelFamily.LINEAR.ratio_scale
        assert ModelFamily.POISSON.ratio_scale


class TestModelSnapshot:
    def test_ordered_and_boolean_levels(self):
        snap = ModelSnapshot.build(
            "linear",
            {
                "Intercept": 1.0,
                "C(grade, Poly).Linear": 0.2,
                "C(grade, Poly).Quadratic": 0.1,
                "smoker[T.True]": 0.5,
            },
            terms=["C(grade, Poly)", "smoker"],
        )
        assert snap.has_intercept
        assert snap.ordered_names == ("C(grade, Poly)",)
        assert snap.levels["smoker"] == ("False", "True")
        assert snap.factor_names == ("smoker",)
        assert snap.is_ordered("C(grade, Poly)")
        assert snap.is_factor("smoker")
        assert not snap.is_factor("age")

    def test_missing_union_with_data(self):
        """
        Given NAs in rows {0, 1} for a and {1, 2} for b
        When the interaction a:b is counted
        Then the union of rows (3) is reported, not the sum (4)
        """
        data = pd.DataFrame({"a": [np.nan, np.nan, 1, 2], "b": [1, np.nan, np.nan, 2]})
        snap = ModelSnapshot.build(
            "linear", {"Intercept": 0.0, "a": 1.0, "b": 1.0, "a:b": 1.0},
            terms=["a", "b", "a:b"], data=data,
        )
        assert snap.missing_count(snap.terms[0]) == 2
        assert snap.missing_count(snap.terms[2]) == 3

    def test_missing_summed_without_data(self):
        snap = ModelSnapshot.build(
            "linear", {"Intercept": 0.0, "a:b": 1.0}, terms=["a:b"], missing={"a": 2, "b": 2},
        )
        assert snap.missing_count(snap.terms[0]) == 4

    def test_units_by_label_or_variable(self):
        snap = ModelSnapshot.build(
            "linear", {"Intercept": 0.0, "np.log(bili)": 1.0},
            terms=[ModelTerm("np.log(bili)", ("np.log(bili)",), ("bili",))],
            units={"bili": "mg/dl"},
        )
        assert snap.unit(snap.terms[0]) == "mg/dl"


class TestFittedModel:
    def test_formula_required(self):
        rng = np.random.default_rng(0)
        X = sm.add_constant(rng.normal(size=(50, 2)))
        y = X @ np.array([1.0, 0.5, -0.5]) + rng.normal(size=50)
        fitted = FittedModel(sm.OLS(y, X).fit())
        assert fitted.family is ModelFamily.LINEAR
        with pytest.raises(FormulaUnavailable):
            fitted.snapshot()

    def test_unsupported_model_class(self):
        rng = np.random.default_rng(0)
        y = rng.integers(0, 3, 60)
        X = sm.add_constant(rng.normal(size=(60, 1)))
        result = sm.MNLogit(y, X).fit(disp=0)
        with pytest.raises(ConfigurationError, match="Unsupported model class"):
            FittedModel(result)
