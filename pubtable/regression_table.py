"""
Regression tables: one block of rows per model term.

Example:
    >>> fit = smf.logit("y ~ age + C(sex) + C(sex):age", data=df).fit(disp=0)
    >>> tab = regression_table(fit, confint_method="robust")
    >>> tab.to_frame()

Coefficients are matched to terms with three pattern kinds:

- ExactPattern   'age'        matches only 'age' (never 'age2')
- LevelPattern   'C(sex)'     matches 'C(sex)[T.male]', 'C(sex)[T.female]'
- OrderedPattern 'C(g, Poly)' matches 'C(g, Poly).Linear', '.Quadratic', '^4'

Estimates are shown on the scale of the model family: coefficients for
linear models, odds ratios for logistic, hazard ratios for Cox, rate ratios
for Poisson, or the probability index for Cox/Poisson on request.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, Mapping, Sequence

import numpy as np
import pandas as pd

from config import CONFIG, FACTOR_REFERENCES
from logger import get_logger
from pubtable.ci_methods import resolve_methods
from pubtable.exceptions import ConfigurationError, InputShapeError, NoIntercept
from pubtable.interactions import (
    ContrastEstimator,
    InteractionTerm,
    ModelContrastEstimator,
    WaldContrastEstimator,
    parse_interaction_terms,
)
from pubtable.model_terms import FittedModel, ModelFamily, ModelSnapshot, ModelTerm, display_name

logger = get_logger(__name__)

BLOCK_COLUMNS = ["Variable", "Units", "Missing", "Coefficient", "Lower", "Upper", "Pvalue"]


# --- coefficient patterns -----------------------------------------------------

class CoefficientPattern(ABC):
    """Selects the coefficients belonging to one term."""

    def __init__(self, term: str):
        self.term = term

    @property
    @abstractmethod
    def regex(self) -> re.Pattern:
        ...

    def select(self, names: Sequence[str]) -> list[str]:
        return [n for n in names if self.regex.search(n)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.regex.pattern!r})"


class ExactPattern(CoefficientPattern):
    @property
    def regex(self) -> re.Pattern:
        return re.compile(f"^{re.escape(self.term)}$")


class LevelPattern(CoefficientPattern):
    def __init__(self, term: str, levels: Sequence[str]):
        super().__init__(term)
        self.levels = tuple(levels)

    @property
    def regex(self) -> re.Pattern:
        alternation = "|".join(re.escape(lev) for lev in self.levels)
        return re.compile(rf"^{re.escape(self.term)}\[(?:T\.)?({alternation})\]$")

    def level_of(self, name: str) -> str:
        return self.regex.match(name).group(1)


class OrderedPattern(CoefficientPattern):
    @property
    def regex(self) -> re.Pattern:
        return re.compile(rf"^{re.escape(self.term)}(\.(?:Linear|Quadratic|Cubic)|\^\d+)$")

    def contrast_of(self, name: str) -> str:
        return self.regex.match(name).group(1).lstrip(".")


def pattern_for(term: str, snapshot: ModelSnapshot) -> CoefficientPattern:
    if snapshot.is_ordered(term):
        return OrderedPattern(term)
    if term in snapshot.levels:
        return LevelPattern(term, snapshot.levels[term])
    return ExactPattern(term)


# --- blocks -------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class RegressionBlock:
    """
    Rows of one term. Columns: Variable, Units, Missing, <estimate>, Lower,
    Upper, Pvalue. Missing is shown on the first row only.
    """

    term: str
    variable: str
    rows: pd.DataFrame
    missing: int
    reference_row: bool = False
    interaction: bool = False

    @property
    def estimate_column(self) -> str:
        return self.rows.columns[3]

    def __len__(self) -> int:
        return len(self.rows)


def _block_rows(
    labels: Sequence[str],
    units: Sequence[str],
    missing: int,
    estimate: Sequence[float],
    lower: Sequence[float],
    upper: Sequence[float],
    pvalue: Sequence[float],
) -> pd.DataFrame:
    n = len(estimate)
    return pd.DataFrame(
        {
            "Variable": list(labels),
            "Units": list(units),
            "Missing": [missing] + [""] * (n - 1),
            "Coefficient": np.asarray(estimate, dtype=float),
            "Lower": np.asarray(lower, dtype=float),
            "Upper": np.asarray(upper, dtype=float),
            "Pvalue": np.asarray(pvalue, dtype=float),
        },
        columns=BLOCK_COLUMNS,
    )


def first_order_block(
    term: ModelTerm,
    snapshot: ModelSnapshot,
    intervals: pd.DataFrame,
    pvalues: pd.Series,
    factor_reference: str = "extraline",
) -> RegressionBlock:
    """
    Block for a main-effect term.

    Unordered factors get a reference row (estimate 0, interval (0, 0),
    p-value 1) with `factor_reference="extraline"`, or units
    "level vs reference" with "inline". Ordered factors show one row per
    polynomial contrast.
    """
    pattern = pattern_for(term.label, snapshot)
    names = pattern.select(snapshot.names)
    if not names:
        raise InputShapeError(f"No coefficient matches term '{term.label}' ({pattern!r})")

    variable = display_name(term.label)
    missing = snapshot.missing_count(term)
    est = snapshot.coefficients[names].to_numpy(dtype=float)
    lower = intervals.loc[names, "lower"].to_numpy(dtype=float)
    upper = intervals.loc[names, "upper"].to_numpy(dtype=float)
    pval = pvalues[names].to_numpy(dtype=float)
    reference_row = False

    if isinstance(pattern, LevelPattern):
        found = [pattern.level_of(n) for n in names]
        ref = next((lev for lev in pattern.levels if lev not in found), pattern.levels[0])
        if factor_reference == "extraline":
            units = [ref] + found
            est = np.r_[0.0, est]
            lower = np.r_[0.0, lower]
            upper = np.r_[0.0, upper]
            pval = np.r_[1.0, pval]
            reference_row = True
        else:
            units = [f"{lev} vs {ref}" for lev in found]
    elif isinstance(pattern, OrderedPattern):
        units = [pattern.contrast_of(n) for n in names]
    else:
        units = [snapshot.unit(term) or ""] * len(names)

    labels = [variable] + [""] * (len(est) - 1)
    rows = _block_rows(labels, units, missing, est, lower, upper, pval)
    return RegressionBlock(term.label, variable, rows, missing, reference_row=reference_row)


def interaction_block(
    interaction: InteractionTerm,
    snapshot: ModelSnapshot,
    estimator: ContrastEstimator,
) -> RegressionBlock:
    """Block for a second-order term: one row per contrast."""
    names = snapshot.names
    est = estimator.estimate(interaction.matrix(names))
    missing = snapshot.missing_count(interaction.term)
    rows = _block_rows(
        list(est.index),
        [""] * len(est),
        missing,
        est["Coefficient"],
        est["Lower"],
        est["Upper"],
        est["Pvalue"],
    )
    variable = ":".join(display_name(f) for f in interaction.variables)
    return RegressionBlock(interaction.label, variable, rows, missing, interaction=True)


# --- family transforms --------------------------------------------------------

def _exponentiate(rows: pd.DataFrame) -> pd.DataFrame:
    rows = rows.copy()
    for col in ("Coefficient", "Lower", "Upper"):
        rows[col] = np.exp(rows[col])
    return rows


def _probability_index(rows: pd.DataFrame) -> pd.DataFrame:
    """100 / (1 + exp(x)); decreasing in x, so the limits swap."""
    rows = rows.copy()
    pi = lambda x: 100 / (1 + np.exp(x))  # noqa: E731
    rows["Coefficient"], rows["Lower"], rows["Upper"] = (
        pi(rows["Coefficient"]), pi(rows["Upper"]), pi(rows["Lower"])
    )
    return rows


FAMILY_TRANSFORMS: dict[ModelFamily, tuple[str, Callable[[pd.DataFrame], pd.DataFrame]]] = {
    ModelFamily.LINEAR: ("Coefficient", lambda rows: rows.copy()),
    ModelFamily.LOGISTIC: ("OddsRatio", _exponentiate),
    ModelFamily.COX: ("HazardRatio", _exponentiate),
    ModelFamily.POISSON: ("RateRatio", _exponentiate),
}
PROBINDEX_FAMILIES = (ModelFamily.COX, ModelFamily.POISSON)


def family_transform(family: ModelFamily, probindex: bool = False) -> tuple[str, Callable]:
    if probindex:
        if family in PROBINDEX_FAMILIES:
            return "ProbIndex", _probability_index
        logger.warning(f"probindex applies to Cox and Poisson models only; ignored for {family.value}")
    return FAMILY_TRANSFORMS[family]


def apply_family_transform(
    blocks: Sequence[RegressionBlock], family: ModelFamily, probindex: bool = False
) -> tuple[str, list[RegressionBlock]]:
    label, func = family_transform(family, probindex)
    out = []
    for block in blocks:
        rows = func(block.rows).rename(columns={"Coefficient": label})
        out.append(replace(block, rows=rows))
    return label, out


# --- table --------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class RegressionTable:
    blocks: tuple[RegressionBlock, ...]
    family: ModelFamily
    estimate_label: str
    terms1: tuple[str, ...]
    terms2: tuple[InteractionTerm, ...] = ()
    factor_names: tuple[str, ...] = ()
    ordered_names: tuple[str, ...] = ()
    confint_method: str = "default"
    pvalue_method: str = "default"
    probindex: bool = False
    alpha: float = 0.05
    units: Mapping[str, str] = field(default_factory=dict)

    @property
    def model_label(self) -> str:
        return self.family.model_label

    def __getitem__(self, term: str) -> RegressionBlock:
        for block in self.blocks:
            if block.term == term or block.variable == term:
                return block
        raise KeyError(term)

    def __iter__(self) -> Iterator[RegressionBlock]:
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    @property
    def terms(self) -> list[str]:
        return [b.term for b in self.blocks]

    def to_frame(self) -> pd.DataFrame:
        """All blocks stacked, numeric columns unformatted."""
        if not self.blocks:
            return pd.DataFrame(columns=[*BLOCK_COLUMNS[:3], self.estimate_label, *BLOCK_COLUMNS[4:]])
        return pd.concat([b.rows for b in self.blocks], ignore_index=True)

    def summary(self, **kwargs: Any) -> pd.DataFrame:
        """Formatted display frame; see publish.summarize_regression_table."""
        from pubtable.publish import summarize_regression_table

        return summarize_regression_table(self, **kwargs)


def _check_factor_reference(factor_reference: str) -> str:
    if factor_reference not in FACTOR_REFERENCES:
        raise ConfigurationError(
            f"Unknown factor_reference '{factor_reference}'. Valid options: {FACTOR_REFERENCES}"
        )
    return factor_reference


def build_regression_table(
    snapshot: ModelSnapshot,
    intervals: pd.DataFrame,
    pvalues: pd.Series,
    factor_reference: str | None = None,
    probindex: bool | None = None,
    estimator: ContrastEstimator | None = None,
    noterms: Sequence[int] = (),
    confint_method: str = "default",
    pvalue_method: str = "default",
    alpha: float | None = None,
) -> RegressionTable:
    """
    Assemble a RegressionTable from a snapshot plus intervals and p-values.

    `intervals` has columns lower/upper and `pvalues` one value per
    coefficient, both indexed by coefficient name. Interaction contrasts use
    `estimator`, or Wald contrasts from `snapshot.covariance`.

    Raises:
        InputShapeError: intervals or p-values missing for some coefficient.
        UnsupportedInteraction: interaction with an ordered factor.
    """
    factor_reference = _check_factor_reference(
        factor_reference or CONFIG.get("regression.factor_reference", "extraline")
    )
    probindex = CONFIG.get("regression.probindex", False) if probindex is None else probindex
    alpha = CONFIG.get("regression.alpha", 0.05) if alpha is None else alpha

    names = snapshot.names
    absent = [n for n in names if n not in intervals.index or n not in pvalues.index]
    if absent:
        raise InputShapeError(f"Intervals or p-values missing for coefficients {absent}")

    skip = set(noterms)
    kept = [t for i, t in enumerate(snapshot.terms) if i not in skip]
    terms1 = [t for t in kept if t.order == 1]
    terms2_all = parse_interaction_terms(snapshot)
    terms2 = [it for it in terms2_all if it.term in kept]
    higher = [t.label for t in kept if t.order > 2]
    if higher:
        logger.warning(f"Terms of order > 2 are not shown: {higher}")

    if terms2 and estimator is None:
        if snapshot.covariance is None:
            raise ConfigurationError("Interaction terms need a covariance matrix or a contrast estimator")
        estimator = WaldContrastEstimator(snapshot.coefficients, snapshot.covariance, alpha)

    with logger.track_time("regression_blocks"):
        blocks = [first_order_block(t, snapshot, intervals, pvalues, factor_reference) for t in terms1]
        blocks += [interaction_block(it, snapshot, estimator) for it in terms2]

    label, blocks = apply_family_transform(blocks, snapshot.family, probindex)
    return RegressionTable(
        blocks=tuple(blocks),
        family=snapshot.family,
        estimate_label=label,
        terms1=tuple(t.label for t in terms1),
        terms2=tuple(terms2),
        factor_names=snapshot.factor_names,
        ordered_names=snapshot.ordered_names,
        confint_method=confint_method,
        pvalue_method=pvalue_method,
        probindex=bool(probindex) and label == "ProbIndex",
        alpha=alpha,
        units=dict(snapshot.units),
    )


def regression_table(
    model: Any,
    confint_method: str | None = None,
    pvalue_method: str | None = None,
    factor_reference: str | None = None,
    units: Mapping[str, str] | None = None,
    noterms: Sequence[int] = (),
    probindex: bool | None = None,
    family: ModelFamily | str | None = None,
    alpha: float | None = None,
) -> RegressionTable:
    """
    Build a regression table from a fitted statsmodels formula result.

    Parameters:
        model: result of smf.ols / smf.glm / smf.logit / smf.poisson / smf.phreg.
        confint_method: "default", "profile", "robust" or "simultaneous".
        pvalue_method: "default", "robust" or "simultaneous"; follows
            confint_method when omitted.
        factor_reference: "extraline" or "inline".
        units: unit labels per variable, merged over data.attrs["units"].
        noterms: positions of formula terms to leave out.
        probindex: probability-index scale for Cox and Poisson models.
        family: override the detected model family.

    Raises:
        UnknownIntervalMethod, UnknownPValueMethod, NoIntercept,
        FormulaUnavailable, UnsupportedInteraction
    """
    interval_method, pvalue_strategy = resolve_methods(confint_method, pvalue_method)
    factor_reference = _check_factor_reference(
        factor_reference or CONFIG.get("regression.factor_reference", "extraline")
    )
    alpha = CONFIG.get("regression.alpha", 0.05) if alpha is None else alpha

    fitted = FittedModel(model, family)
    logger.log_operation(
        "regression_table", "started",
        family=fitted.family.value, confint=interval_method.name, pvalue=pvalue_strategy.name,
    )
    try:
        snapshot = fitted.snapshot(units)
        if fitted.family is not ModelFamily.COX and not snapshot.has_intercept:
            raise NoIntercept(snapshot.names[0] if snapshot.names else None)
        # fail on unsupported interactions before any refitting
        parse_interaction_terms(snapshot)

        with logger.track_time(f"intervals_{interval_method.name}"):
            intervals = interval_method.compute(fitted, alpha)
        pvalues = pvalue_strategy.compute(fitted)

        estimator = ModelContrastEstimator(
            fitted,
            cov=interval_method.covariance(fitted) if interval_method.robust else None,
            alpha=alpha,
        )
        table = build_regression_table(
            snapshot,
            intervals,
            pvalues,
            factor_reference=factor_reference,
            probindex=probindex,
            estimator=estimator,
            noterms=noterms,
            confint_method=interval_method.name,
            pvalue_method=pvalue_strategy.name,
            alpha=alpha,
        )
    except Exception:
        logger.log_operation("regression_table", "failed", family=fitted.family.value)
        raise

    logger.log_table(table.model_label, n_rows=sum(len(b) for b in table.blocks), n_terms=len(table.blocks))
    return table
