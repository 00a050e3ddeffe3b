"""
Univariate (descriptive) tables: baseline characteristics by group.

Example:
    >>> tab = univariate_table("treatment ~ age + Q(bmi) + sex", data=df)
    >>> tab.summary()

Each analysis variable is classified as numeric, Q (numeric shown with the
quantile format) or factor, summarized per group and pooled, and optionally
compared across groups.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError
from scipy import stats
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from config import CONFIG, SHOW_MISSING
from logger import get_logger
from pubtable.exceptions import AmbiguousOutcome, ConfigurationError, UnsupportedGroupCount
from pubtable.formatting import format_level_label, format_p_value
from pubtable.summary_stats import (
    StatTemplate,
    count_missing,
    factor_levels,
    get_frequency,
    get_summary,
    parse_frequency_format,
    parse_summary_format,
    robust_sort_key,
)
from pubtable.table_formula import parse_table_formula

logger = get_logger(__name__)

VARTYPES = ("numeric", "Q", "factor")
OUTCOME_COLUMNS = ("time", "status")


def classify_variable(series: pd.Series, forced: str | None = None) -> str:
    """
    'factor', 'numeric' or 'Q' for one column.

    Non-numeric and boolean columns are factors; so are numeric columns with
    fewer than CONFIG['univariate.category_threshold'] distinct values.
    """
    if forced:
        return forced
    if pd.api.types.is_bool_dtype(series) or not pd.api.types.is_numeric_dtype(series):
        return "factor"
    if series.dropna().nunique() < CONFIG.get("univariate.category_threshold", 3):
        return "factor"
    return "numeric"


def normalize_compare_groups(value: Any) -> bool | str:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        if lowered in ("logistic", "cox"):
            return lowered
    raise ConfigurationError(
        f"Unknown group comparison '{value}'. Valid options: [False, True, 'logistic', 'cox']"
    )


# --- group comparison tests ---------------------------------------------------

def _non_empty(samples: list[np.ndarray]) -> list[np.ndarray]:
    return [s for s in samples if len(s) > 0]


def _split_by_group(x: pd.Series, group: pd.Series, groups: Sequence[str]) -> list[np.ndarray]:
    values = pd.to_numeric(x, errors="coerce")
    return _non_empty([values[group == g].dropna().to_numpy(dtype=float) for g in groups])


def p_continuous(x: pd.Series, group: pd.Series, groups: Sequence[str]) -> float:
    """One-way ANOVA of `x` across groups."""
    samples = _split_by_group(x, group, groups)
    if len(samples) < 2 or sum(len(s) for s in samples) <= len(samples):
        return np.nan
    _f, p = stats.f_oneway(*samples)
    return float(p)


def p_quantile(x: pd.Series, group: pd.Series, groups: Sequence[str]) -> float:
    """Kruskal-Wallis rank test of `x` across groups."""
    samples = _split_by_group(x, group, groups)
    if len(samples) < 2:
        return np.nan
    try:
        _h, p = stats.kruskal(*samples)
    except ValueError as e:
        # all values identical
        logger.warning(f"Kruskal-Wallis test not computable: {e}")
        return np.nan
    return float(p)


def p_categorical(x: pd.Series, group: pd.Series, groups: Sequence[str]) -> float:
    """
    Chi-square test of the level-by-group table; Fisher's exact test for a
    2x2 table with an expected count below CONFIG['univariate.fisher_expected_min'].
    """
    keep = x.notna() & group.isin(groups)
    tab = pd.crosstab(x[keep].astype(str), group[keep])
    tab = tab.loc[tab.sum(axis=1) > 0, tab.sum(axis=0) > 0]
    if tab.shape[0] < 2 or tab.shape[1] < 2:
        return np.nan

    _chi2, p_chi2, _dof, expected = stats.chi2_contingency(tab)
    if tab.shape == (2, 2) and expected.min() < CONFIG.get("univariate.fisher_expected_min", 5):
        _odds, p_fisher = stats.fisher_exact(tab.to_numpy())
        return float(p_fisher)
    return float(p_chi2)


def _design(x: pd.Series, kind: str) -> pd.DataFrame:
    if kind == "factor":
        return pd.get_dummies(x.astype(str), prefix="x", drop_first=True, dtype=float)
    return pd.to_numeric(x, errors="coerce").astype(float).to_frame("x")


def p_logistic(x: pd.Series, kind: str, group: pd.Series, groups: Sequence[str]) -> float:
    """Likelihood-ratio p-value of a logistic regression of the group on `x`."""
    keep = x.notna() & group.isin(groups)
    X = _design(x[keep], kind)
    if X.shape[1] == 0:
        return np.nan
    y = (group[keep] == groups[1]).astype(float)
    try:
        fit = sm.Logit(y, sm.add_constant(X, has_constant="add")).fit(disp=0)
    except (np.linalg.LinAlgError, PerfectSeparationError) as e:
        logger.warning(f"Logistic group comparison failed: {e}")
        return np.nan
    return float(fit.llr_pvalue)


def p_cox(x: pd.Series, kind: str, outcome: pd.DataFrame) -> float:
    """Likelihood-ratio p-value of a Cox model of the outcome on `x`."""
    keep = x.notna() & outcome["time"].notna() & outcome["status"].notna()
    X = _design(x[keep], kind)
    if X.shape[1] == 0:
        return np.nan
    df = pd.concat([outcome.loc[keep, ["time", "status"]], X], axis=1)
    try:
        cph = CoxPHFitter()
        cph.fit(df, duration_col="time", event_col="status")
    except ConvergenceError as e:
        logger.warning(f"Cox group comparison failed: {e}")
        return np.nan
    return float(cph.log_likelihood_ratio_test().p_value)


def _align_outcome(outcome: Any, data: pd.DataFrame, frame_index: pd.Index) -> pd.DataFrame:
    if outcome is None:
        raise AmbiguousOutcome("cox", "no outcome given")
    outcome = pd.DataFrame(outcome)
    missing_cols = [c for c in OUTCOME_COLUMNS if c not in outcome.columns]
    if missing_cols:
        raise AmbiguousOutcome("cox", f"missing columns {missing_cols}")
    if len(outcome) != len(data):
        raise AmbiguousOutcome("cox", f"outcome has {len(outcome)} rows, data has {len(data)}")
    outcome = outcome.set_axis(data.index, axis=0)
    return outcome.loc[frame_index]


# --- table --------------------------------------------------------------------

@dataclass(frozen=True)
class UnivariateTable:
    """
    Structured descriptive table.

    `summary_groups[var]` is a dict group -> string for numeric/Q variables
    and a DataFrame (levels x groups) for factors; `summary_totals[var]` is a
    string or a Series over levels.
    """

    variables: tuple[str, ...]
    vartype: dict[str, str]
    summary_groups: dict[str, Any]
    summary_totals: dict[str, Any]
    missing_groups: dict[str, dict[str, int]]
    missing_totals: dict[str, int]
    n_groups: dict[str, int]
    p_values: dict[str, float] | None
    group_name: str | None
    groups: tuple[str, ...]
    group_labels: tuple[str, ...]
    xlevels: dict[str, tuple[str, ...]]
    formats: dict[str, StatTemplate]
    compare_groups: bool | str
    show_totals: bool = True
    n: bool | str = "inNames"
    labels: dict[str, str] = field(default_factory=dict)
    digits_pvalue: int = 3

    def _column_names(self) -> tuple[list[str], str]:
        if self.n == "inNames":
            names = [f"{lab} (n={self.n_groups[g]})" for g, lab in zip(self.groups, self.group_labels)]
            return names, f"Total (n={self.n_groups['Total']})"
        return list(self.group_labels), "Total"

    def summary(self, show_missing: str | None = None, show_pvalues: bool = True) -> pd.DataFrame:
        """
        Display frame with columns Variable, Level, one column per group,
        Total and p-value.
        """
        show_missing = show_missing or CONFIG.get("format.show_missing", "ifany")
        if show_missing not in SHOW_MISSING:
            raise ConfigurationError(f"show_missing must be one of {SHOW_MISSING}, got '{show_missing}'")

        group_cols, total_col = self._column_names()
        rows: list[dict[str, Any]] = []

        def add(variable: str, level: str, cells: Sequence[Any], total: Any, p: str = "") -> None:
            row = {"Variable": variable, "Level": level}
            row.update(dict(zip(group_cols, cells)))
            row[total_col] = total
            row["p-value"] = p
            rows.append(row)

        if self.n is True:
            add("n", "", [self.n_groups[g] for g in self.groups], self.n_groups["Total"])

        for var in self.variables:
            label = self.labels.get(var, var)
            p_str = ""
            if self.p_values is not None:
                p_str = format_p_value(
                    self.p_values.get(var, np.nan),
                    digits=self.digits_pvalue,
                    eps=10 ** -self.digits_pvalue,
                    stars=False,
                )
            kind = self.vartype[var]
            if kind == "factor":
                cells = self.summary_groups[var]
                for i, lev in enumerate(self.xlevels[var]):
                    add(
                        label if i == 0 else "",
                        self.labels.get(f"{var}.{lev}", lev),
                        [cells.loc[lev, g] for g in self.groups],
                        self.summary_totals[var].loc[lev],
                        p_str if i == 0 else "",
                    )
            else:
                add(
                    label,
                    self.formats[kind].description,
                    [self.summary_groups[var].get(g, "") for g in self.groups],
                    self.summary_totals[var],
                    p_str,
                )

            n_missing = self.missing_totals[var]
            if show_missing == "always" or (show_missing == "ifany" and n_missing > 0):
                add(
                    "",
                    "missing",
                    [self.missing_groups.get(var, {}).get(g, 0) for g in self.groups],
                    n_missing,
                )

        out = pd.DataFrame(rows)
        if not self.show_totals:
            out = out.drop(columns=[total_col])
        if not show_pvalues or self.p_values is None:
            out = out.drop(columns=["p-value"])
        return out


def univariate_table(
    formula: str,
    data: pd.DataFrame,
    summary_format: str | None = None,
    q_format: str | None = None,
    freq_format: str | None = None,
    column_percent: bool | None = None,
    digits: int | Sequence[int] | None = None,
    short_group_names: bool | None = None,
    compare_groups: Any = None,
    show_totals: bool | None = None,
    n: bool | str | None = None,
    outcome: pd.DataFrame | None = None,
    na_action: str = "pass",
    labels: Mapping[str, str] | None = None,
) -> UnivariateTable:
    """
    Build a descriptive table from a formula such as "group ~ age + Q(bmi) + F(stage)".

    Parameters:
        digits: one int or (summary, frequency, p-value) digits.
        short_group_names: label groups by value only; default is False when
            every group value is a single character or boolean, else True.
        compare_groups: False, True, "logistic" or "cox".
        outcome: frame with 'time' and 'status' columns, row-aligned with
            `data`, required for compare_groups="cox".
        labels: display overrides, {"age": "Age (years)", "sex.F": "Female"}.

    Raises:
        UnsupportedGroupCount: "logistic" without exactly two group levels.
        AmbiguousOutcome: "cox" without usable outcome data.
        ConfigurationError: unknown options or columns.
    """
    if digits is None:
        digits = (
            CONFIG.get("univariate.digits_summary", 1),
            CONFIG.get("univariate.digits_freq", 1),
            CONFIG.get("univariate.digits_pvalue", 3),
        )
    elif isinstance(digits, int):
        digits = (digits, digits, digits)
    digits = tuple(digits) + (3,) * (3 - len(digits))

    compare = normalize_compare_groups(
        CONFIG.get("univariate.compare_groups", True) if compare_groups is None else compare_groups
    )
    show_totals = CONFIG.get("univariate.show_totals", True) if show_totals is None else show_totals
    n = CONFIG.get("univariate.n", "inNames") if n is None else n
    missing_label = CONFIG.get("univariate.missing_group_label", "Missing")

    parsed = parse_table_formula(formula, data, na_action=na_action)
    frame = parsed.frame

    with logger.track_time("univariate_table"):
        # --- grouping variable
        group = None
        groups: list[str] = []
        test_groups: list[str] = []
        group_labels: list[str] = []
        n_groups: dict[str, int] = {}
        if parsed.group:
            raw = frame[parsed.group]
            group = raw.map(lambda v: missing_label if pd.isna(v) else str(v))
            if isinstance(raw.dtype, pd.CategoricalDtype):
                test_groups = [str(c) for c in raw.cat.categories]
            else:
                test_groups = [str(v) for v in sorted(raw.dropna().unique(), key=robust_sort_key)]
            groups = test_groups + ([missing_label] if raw.isna().any() else [])

            if compare == "logistic" and len(test_groups) != 2:
                raise UnsupportedGroupCount(parsed.group, len(test_groups))

            if short_group_names is None:
                is_bool = pd.api.types.is_bool_dtype(raw) or set(test_groups) <= {"True", "False"}
                short_group_names = not (all(len(g) < 2 for g in test_groups) or is_bool)
            group_labels = [
                g if g == missing_label else format_level_label(parsed.group, g, short_group_names)
                for g in groups
            ]
            n_groups = {g: int((group == g).sum()) for g in groups}
        n_groups["Total"] = int(len(frame))

        aligned_outcome = None
        if group is not None and compare == "cox":
            aligned_outcome = _align_outcome(outcome, data, frame.index)

        # --- classification
        vartype = {v: classify_variable(frame[v], parsed.forced.get(v)) for v in parsed.variables}
        by_kind = {k: [v for v in parsed.variables if vartype[v] == k] for k in VARTYPES}

        formats = {
            "numeric": parse_summary_format(summary_format, digits[0]),
            "Q": parse_summary_format(q_format or CONFIG.get("univariate.q_format"), digits[0]),
            "factor": parse_frequency_format(freq_format, digits[1], column_percent),
        }

        # --- summaries
        summary_groups: dict[str, Any] = {}
        summary_totals: dict[str, Any] = {}
        for kind in ("numeric", "Q"):
            for var, res in get_summary(frame, by_kind[kind], formats[kind], group, groups).items():
                summary_groups[var] = res.groups
                summary_totals[var] = res.totals
        xlevels: dict[str, tuple[str, ...]] = {}
        freq = get_frequency(
            frame, by_kind["factor"], formats["factor"], group, groups,
            levels={v: factor_levels(frame[v]) for v in by_kind["factor"]},
        )
        for var, res in freq.items():
            summary_groups[var] = res.groups
            summary_totals[var] = res.totals
            xlevels[var] = res.levels

        missing_groups, missing_totals = count_missing(frame, parsed.variables, group, groups)

        # --- p-values
        p_values = None
        if group is not None and compare is not False:
            p_values = {}
            for var in parsed.variables:
                kind = vartype[var]
                x = frame[var]
                if compare == "logistic":
                    p_values[var] = p_logistic(x, kind, group, test_groups)
                elif compare == "cox":
                    p_values[var] = p_cox(x, kind, aligned_outcome)
                elif kind == "numeric":
                    p_values[var] = p_continuous(x, group, test_groups)
                elif kind == "Q":
                    p_values[var] = p_quantile(x, group, test_groups)
                else:
                    p_values[var] = p_categorical(x, group, test_groups)

    table = UnivariateTable(
        variables=parsed.variables,
        vartype=vartype,
        summary_groups=summary_groups,
        summary_totals=summary_totals,
        missing_groups=missing_groups,
        missing_totals=missing_totals,
        n_groups=n_groups,
        p_values=p_values,
        group_name=parsed.group,
        groups=tuple(groups),
        group_labels=tuple(group_labels),
        xlevels=xlevels,
        formats=formats,
        compare_groups=compare,
        show_totals=bool(show_totals),
        n=n,
        labels=dict(labels or {}),
        digits_pvalue=digits[2],
    )
    logger.log_table(
        "univariate", n_rows=len(frame), n_terms=len(parsed.variables),
        groups=len(groups), compare=compare,
    )
    return table
