"""
Summary statistics and frequency engines for descriptive tables.

Statistics are requested through small templates such as
"mean(x) (sd(x))" or "count(x) (percent(x))". Every token NAME(x) is replaced
by the formatted value of the statistic NAME; everything else is kept.
Missing values are dropped per cell so a value missing in one group never
changes another group's numbers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from pubtable.exceptions import ConfigurationError

logger = get_logger(__name__)

TOKEN = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)\(x\)")


def _sd(x: np.ndarray) -> float:
    return float(np.std(x, ddof=1)) if len(x) > 1 else np.nan


def _var(x: np.ndarray) -> float:
    return float(np.var(x, ddof=1)) if len(x) > 1 else np.nan


def _se(x: np.ndarray) -> float:
    return _sd(x) / np.sqrt(len(x)) if len(x) > 1 else np.nan


def _quantiles(probs: tuple[float, float]) -> Callable[[np.ndarray], tuple[float, float]]:
    def compute(x: np.ndarray) -> tuple[float, float]:
        if len(x) == 0:
            return (np.nan, np.nan)
        q = np.quantile(x, probs)
        return (float(q[0]), float(q[1]))
    return compute


def _guard(func: Callable[[np.ndarray], float]) -> Callable[[np.ndarray], float]:
    def compute(x: np.ndarray) -> float:
        return float(func(x)) if len(x) else np.nan
    return compute


SUMMARY_STATISTICS: dict[str, Callable] = {
    "mean": _guard(np.mean),
    "sd": _sd,
    "var": _var,
    "se": _se,
    "median": _guard(np.median),
    "min": _guard(np.min),
    "max": _guard(np.max),
    "sum": lambda x: float(np.sum(x)),
    "iqr": _quantiles((0.25, 0.75)),
    "range": lambda x: (float(np.min(x)), float(np.max(x))) if len(x) else (np.nan, np.nan),
    "n": lambda x: len(x),
    "count": lambda x: len(x),
}
INTEGER_STATISTICS = {"n", "count"}
FREQUENCY_STATISTICS = ("count", "percent", "colpercent")


@dataclass(frozen=True)
class StatTemplate:
    """A parsed statistics template."""

    template: str
    statistics: tuple[str, ...]
    digits: int

    def render(self, values: Mapping[str, str]) -> str:
        return TOKEN.sub(lambda m: values[m.group(1)], self.template)

    @property
    def description(self) -> str:
        """'mean(x) (sd(x))' -> 'mean (sd)'."""
        return TOKEN.sub(lambda m: m.group(1), self.template)


def _parse(template: str, allowed: Sequence[str], digits: int) -> StatTemplate:
    names = tuple(TOKEN.findall(template))
    if not names:
        raise ConfigurationError(f"Format '{template}' names no statistic such as mean(x)")
    unknown = [n for n in names if n not in allowed]
    if unknown:
        raise ConfigurationError(
            f"Unknown statistic(s) {unknown} in format '{template}'. Valid options: {list(allowed)}"
        )
    return StatTemplate(template=template, statistics=names, digits=digits)


def parse_summary_format(template: str | None = None, digits: int | None = None) -> StatTemplate:
    template = template or CONFIG.get("univariate.summary_format")
    digits = CONFIG.get("univariate.digits_summary", 1) if digits is None else digits
    return _parse(template, list(SUMMARY_STATISTICS), digits)


def parse_frequency_format(
    template: str | None = None,
    digits: int | None = None,
    column_percent: bool | None = None,
) -> StatTemplate:
    """
    Parse a frequency template.

    With `column_percent` every percent(x) token becomes colpercent(x).
    """
    template = template or CONFIG.get("univariate.freq_format")
    digits = CONFIG.get("univariate.digits_freq", 1) if digits is None else digits
    if column_percent is None:
        column_percent = CONFIG.get("univariate.column_percent", True)
    if column_percent:
        template = re.sub(r"(?<![A-Za-z_])percent\(x\)", "colpercent(x)", template)
    return _parse(template, FREQUENCY_STATISTICS, digits)


def _fmt(value, digits: int, integer: bool = False) -> str:
    na_string = CONFIG.get("format.na_string", "NA")
    if isinstance(value, tuple):
        return ", ".join(_fmt(v, digits, integer) for v in value)
    if value is None or pd.isna(value):
        return na_string
    if integer:
        return str(int(value))
    return f"{value:.{digits}f}"


def summarize_values(values: pd.Series | np.ndarray, fmt: StatTemplate) -> str:
    """Render one cell: all statistics of `fmt` over the non-missing `values`."""
    x = pd.to_numeric(pd.Series(values), errors="coerce").dropna().to_numpy(dtype=float)
    rendered = {
        name: _fmt(SUMMARY_STATISTICS[name](x), fmt.digits, name in INTEGER_STATISTICS)
        for name in fmt.statistics
    }
    return fmt.render(rendered)


@dataclass(frozen=True)
class VariableSummary:
    groups: dict[str, str] = field(default_factory=dict)
    totals: str = ""


@dataclass(frozen=True)
class VariableFrequency:
    levels: tuple[str, ...]
    groups: pd.DataFrame  # index: levels, columns: group labels
    totals: pd.Series     # index: levels


def get_summary(
    data: pd.DataFrame,
    variables: Sequence[str],
    fmt: StatTemplate,
    group: pd.Series | None = None,
    groups: Sequence[str] = (),
) -> dict[str, VariableSummary]:
    """
    Summaries per group and pooled for numeric variables.

    `group` must be aligned with `data` and hold the group label of every row.
    """
    out = {}
    for var in variables:
        col = data[var]
        per_group = {}
        if group is not None:
            for g in groups:
                per_group[g] = summarize_values(col[group == g], fmt)
        out[var] = VariableSummary(groups=per_group, totals=summarize_values(col, fmt))
    return out


def _frequency_cell(count: int, group_total: int, level_total: int, fmt: StatTemplate) -> str:
    values = {}
    for name in fmt.statistics:
        if name == "count":
            values[name] = str(int(count))
        elif name == "colpercent":
            values[name] = _fmt(100 * count / group_total if group_total else np.nan, fmt.digits)
        else:
            values[name] = _fmt(100 * count / level_total if level_total else np.nan, fmt.digits)
    return fmt.render(values)


def robust_sort_key(x) -> tuple:
    """
    Sort key placing numeric values first, then strings, then NA.
    """
    try:
        if pd.isna(x):
            return (2, "")
        return (0, float(x))
    except (ValueError, TypeError):
        return (1, str(x))


def factor_levels(series: pd.Series) -> list[str]:
    """Display levels in order: categorical order, False/True, otherwise sorted."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(c) for c in series.cat.categories]
    non_missing = series.dropna()
    if pd.api.types.is_bool_dtype(series) or (
        len(non_missing) and all(isinstance(v, (bool, np.bool_)) for v in non_missing)
    ):
        return ["False", "True"]
    return [str(u) for u in sorted(non_missing.unique(), key=robust_sort_key)]


def get_frequency(
    data: pd.DataFrame,
    variables: Sequence[str],
    fmt: StatTemplate,
    group: pd.Series | None = None,
    groups: Sequence[str] = (),
    levels: Mapping[str, Sequence[str]] | None = None,
) -> dict[str, VariableFrequency]:
    """
    Frequencies per level, per group and pooled, for categorical variables.

    colpercent divides by the non-missing subjects of the group; percent by
    the subjects having that level in any group. The pooled column divides
    by all non-missing subjects for both.
    """
    levels = levels or {}
    out = {}
    for var in variables:
        col = data[var]
        var_levels = list(levels.get(var) or factor_levels(col))
        as_str = col.map(lambda v: v if pd.isna(v) else str(v))
        valid = as_str.notna()

        level_totals = {lev: int((as_str == lev).sum()) for lev in var_levels}
        n_valid = int(valid.sum())
        totals = pd.Series(
            {lev: _frequency_cell(level_totals[lev], n_valid, n_valid, fmt) for lev in var_levels},
            dtype=object,
        )

        cells = pd.DataFrame(index=var_levels, columns=list(groups), dtype=object)
        if group is not None:
            for g in groups:
                in_group = (group == g) & valid
                n_group = int(in_group.sum())
                for lev in var_levels:
                    count = int(((as_str == lev) & in_group).sum())
                    cells.loc[lev, g] = _frequency_cell(count, n_group, level_totals[lev], fmt)

        out[var] = VariableFrequency(levels=tuple(var_levels), groups=cells, totals=totals)
    return out


def count_missing(
    data: pd.DataFrame,
    variables: Sequence[str],
    group: pd.Series | None = None,
    groups: Sequence[str] = (),
) -> tuple[dict[str, dict[str, int]], dict[str, int]]:
    """Missing-value counts per variable, per group and pooled."""
    per_group: dict[str, dict[str, int]] = {}
    totals: dict[str, int] = {}
    for var in variables:
        missing = data[var].isna()
        totals[var] = int(missing.sum())
        if group is not None:
            per_group[var] = {g: int(missing[group == g].sum()) for g in groups}
    return per_group, totals
