"""
🧪 Unit Tests for interaction contrasts
File: tests/unit/test_interactions.py
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from pubtable.exceptions import InputShapeError, UnsupportedInteraction
from pubtable.interactions import WaldContrastEstimator, parse_interaction_term, reference_level
from pubtable.model_terms import ModelSnapshot

pytestmark = pytest.mark.unit


def _snapshot(coefficients, terms, levels=None):
    return ModelSnapshot.build("linear", coefficients, terms, factor_levels=levels or {})


class TestParseInteraction:
    def test_categorical_by_numeric(self):
        """
        Given sex (f, m) interacting with age
        Then each level of sex gets the slope of age within that level
        """
        snap = _snapshot(
            {"Intercept": 1.0, "C(sex)[T.m]": 0.5, "age": 0.1, "C(sex)[T.m]:age": 0.05},
            ["C(sex)", "age", "C(sex):age"],
            {"C(sex)": ["f", "m"]},
        )
        term = parse_interaction_term(snap.interaction_terms[0], snap)
        labels = [c.label for c in term.contrasts]
        assert labels == ["age: sex(f)", "age: sex(m)"]
        assert dict(term.contrasts[0].weights) == {"age": 1.0}
        assert dict(term.contrasts[1].weights) == {"age": 1.0, "C(sex)[T.m]:age": 1.0}

    def test_categorical_by_categorical(self):
        snap = _snapshot(
            {
                "Intercept": 0.0,
                "C(a)[T.y]": 0.4,
                "C(b)[T.v]": 0.2,
                "C(a)[T.y]:C(b)[T.v]": 0.3,
            },
            ["C(a)", "C(b)", "C(a):C(b)"],
            {"C(a)": ["x", "y"], "C(b)": ["u", "v"]},
        )
        term = parse_interaction_term(snap.interaction_terms[0], snap)
        assert [c.label for c in term.contrasts] == ["a(y vs x): b(u)", "a(y vs x): b(v)"]
        assert dict(term.contrasts[1].weights) == {"C(a)[T.y]": 1.0, "C(a)[T.y]:C(b)[T.v]": 1.0}

    def test_numeric_by_numeric(self):
        snap = _snapshot({"Intercept": 0.0, "x": 1.0, "z": 1.0, "x:z": 0.2}, ["x", "z", "x:z"])
        term = parse_interaction_term(snap.interaction_terms[0], snap)
        assert [c.label for c in term.contrasts] == ["x:z"]

    def test_ordered_factor_rejected(self):
        snap = _snapshot(
            {
                "Intercept": 0.0,
                "C(g, Poly).Linear": 0.1,
                "C(g, Poly).Quadratic": 0.1,
                "age": 0.1,
                "C(g, Poly).Linear:age": 0.1,
                "C(g, Poly).Quadratic:age": 0.1,
            },
            ["C(g, Poly)", "age", "C(g, Poly):age"],
        )
        with pytest.raises(UnsupportedInteraction) as exc:
            parse_interaction_term(snap.interaction_terms[0], snap)
        assert exc.value.variable == "C(g, Poly)"

    def test_missing_coefficients(self):
        snap = _snapshot({"Intercept": 0.0, "x": 1.0}, ["x", "x:z"])
        with pytest.raises(InputShapeError):
            parse_interaction_term(snap.interaction_terms[0], snap)

    def test_reference_level(self):
        assert reference_level("C(a)", ("x", "y", "z"), {"C(a)[T.y]", "C(a)[T.z]"}) == "x"


class TestWaldContrasts:
    def test_sum_of_coefficients(self):
        names = ["Intercept", "C(sex)[T.m]", "age", "C(sex)[T.m]:age"]
        coefficients = pd.Series([1.0, 0.5, 0.1, 0.05], index=names)
        cov = pd.DataFrame(np.eye(4) * 0.01, index=names, columns=names)
        snap = _snapshot(coefficients, ["C(sex)", "age", "C(sex):age"], {"C(sex)": ["f", "m"]})
        term = parse_interaction_term(snap.interaction_terms[0], snap)

        est = WaldContrastEstimator(coefficients, cov, alpha=0.05).estimate(term.matrix(names))
        male = est.loc["age: sex(m)"]
        assert male["Coefficient"] == pytest.approx(0.15)
        assert male["StandardError"] == pytest.approx(np.sqrt(0.02))
        crit = stats.norm.isf(0.025)
        assert male["Lower"] == pytest.approx(0.15 - crit * np.sqrt(0.02))
        assert est.loc["age: sex(f)", "Coefficient"] == pytest.approx(0.1)
