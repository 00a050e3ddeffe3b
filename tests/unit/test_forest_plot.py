"""
🧪 Unit Tests for forest plots of regression tables
File: tests/unit/test_forest_plot.py
"""

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import pytest

from pubtable.forest_plot import ForestPlot, create_forest_plot, reference_value
from pubtable.model_terms import ModelSnapshot
from pubtable.regression_table import build_regression_table

pytestmark = pytest.mark.unit


def _table(family="logistic", probindex=False):
    names = ["Intercept", "age", "C(sex)[T.male]"]
    if family == "cox":
        names = names[1:]
    coef = pd.Series([-1.0, 0.05, 0.4][-len(names):], index=names)
    intervals = pd.DataFrame(
        {"lower": [-1.5, 0.01, 0.1][-len(names):], "upper": [-0.5, 0.09, 0.7][-len(names):]}, index=names,
    )
    pvalues = pd.Series([0.001, 0.02, 0.01][-len(names):], index=names)
    snap = ModelSnapshot.build(family, coef, ["age", "C(sex)"], factor_levels={"C(sex)": ["female", "male"]})
    return build_regression_table(snap, intervals, pvalues, probindex=probindex)


class TestForestPlot:
    def test_figure_created(self):
        fig = create_forest_plot(_table(), title="Risk factors")
        assert isinstance(fig, go.Figure)
        # label, estimate, p-value columns and the marker panel
        assert len(fig.data) == 4
        assert "Risk factors" in fig.layout.title.text

    def test_reference_rows_left_out_by_default(self):
        plot = ForestPlot(_table())
        assert list(plot.data["Label"]) == ["sex: male", "age"]
        assert len(ForestPlot(_table(), show_reference_rows=True).data) == 3

    def test_markers_on_ratio_scale(self):
        fig = create_forest_plot(_table())
        markers = fig.data[3]
        assert np.allclose(sorted(markers.x), sorted([np.exp(0.05), np.exp(0.4)]))

    @pytest.mark.parametrize(
        "family,probindex,expected",
        [("logistic", False, 1.0), ("linear", False, 0.0), ("cox", True, 50.0), ("cox", False, 1.0)],
    )
    def test_reference_line(self, family, probindex, expected):
        table = _table(family, probindex)
        assert reference_value(table) == expected
        fig = create_forest_plot(table)
        assert any(shape.x0 == expected for shape in fig.layout.shapes)

    def test_stars_in_labels(self):
        fig = create_forest_plot(_table(), show_sig_stars=True)
        assert "sex: male *" in list(fig.data[0].text)

    def test_summary_stats(self):
        stats = ForestPlot(_table()).get_summary_stats()
        assert stats["n_variables"] == 2
        assert stats["n_significant"] == 2
        assert stats["n_ci_significant"] == 2

    def test_reference_line_on_marker_panel(self):
        """
        Given a logistic table
        When the figure is built
        Then the no-effect line sits on the marker axis and can be switched off
        """
        fig = create_forest_plot(_table())
        lines = [shape for shape in fig.layout.shapes if shape.type == "line"]
        assert len(lines) == 1
        assert lines[0].xref == "x4"
        assert lines[0].x0 == lines[0].x1 == 1.0
        assert create_forest_plot(_table(), show_ref_line=False).layout.shapes == ()
