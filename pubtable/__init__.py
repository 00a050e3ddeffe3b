"""
Publication-ready tables for statistical analyses.

Contains:
- formatting: number, confidence-interval and p-value formatting
- summary_stats: summary and frequency statistics from format templates
- table_formula: "group ~ x + Q(y) + factor(z)" table formulas
- univariate_table: descriptive tables by group with optional tests
- model_terms: model introspection into a ModelSnapshot
- ci_methods: default, profile, robust and simultaneous inference
- interactions: interaction terms as linear contrasts
- regression_table: per-term blocks of a regression table
- publish: display frames, printing, cause-specific Cox tables
- forest_plot: plotly forest plots of regression tables
"""

from pubtable.exceptions import (
    AmbiguousOutcome,
    ConfigurationError,
    DataError,
    FormulaUnavailable,
    InputShapeError,
    LengthMismatch,
    NoIntercept,
    PubTableError,
    UnknownIntervalMethod,
    UnknownPValueMethod,
    UnsupportedGroupCount,
    UnsupportedInteraction,
)
from pubtable.formatting import format_ci, format_p_value
from pubtable.model_terms import FittedModel, ModelFamily, ModelSnapshot
from pubtable.publish import (
    fit_cause_specific_cox,
    publish_cause_specific,
    publish_regression,
    publish_univariate,
    summarize_regression_table,
)
from pubtable.regression_table import RegressionBlock, RegressionTable, build_regression_table, regression_table
from pubtable.summary_stats import get_frequency, get_summary
from pubtable.univariate_table import UnivariateTable, univariate_table

__all__ = [
    "AmbiguousOutcome",
    "ConfigurationError",
    "DataError",
    "FittedModel",
    "FormulaUnavailable",
    "InputShapeError",
    "LengthMismatch",
    "ModelFamily",
    "ModelSnapshot",
    "NoIntercept",
    "PubTableError",
    "RegressionBlock",
    "RegressionTable",
    "UnivariateTable",
    "UnknownIntervalMethod",
    "UnknownPValueMethod",
    "UnsupportedGroupCount",
    "UnsupportedInteraction",
    "build_regression_table",
    "fit_cause_specific_cox",
    "format_ci",
    "format_p_value",
    "get_frequency",
    "get_summary",
    "publish_cause_specific",
    "publish_regression",
    "publish_univariate",
    "regression_table",
    "summarize_regression_table",
    "univariate_table",
]
