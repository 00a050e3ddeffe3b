"""
Pairwise interaction terms as sets of linear contrasts.

For a term A:B the table shows one effect per level combination:

- categorical A x numeric X: the slope of X within each level a of A,
  beta_X + beta_{A[a]:X}
- categorical A x categorical B: level a of A against the reference of A
  within each level b of B, beta_{A[a]} + beta_{A[a]:B[b]}
- numeric X x numeric Z: the product coefficient beta_{X:Z}

Contrasts are estimated through the fitted model's `t_test`, so point
estimates, standard errors, limits and p-values come from statsmodels.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol

import numpy as np
import pandas as pd
from scipy import stats

from logger import get_logger
from pubtable.exceptions import InputShapeError, UnsupportedInteraction
from pubtable.model_terms import FittedModel, ModelSnapshot, ModelTerm, display_name

logger = get_logger(__name__)

CONTRAST_COLUMNS = ["Coefficient", "StandardError", "Lower", "Upper", "Pvalue"]


@dataclass(frozen=True)
class Contrast:
    label: str
    weights: Mapping[str, float]


@dataclass(frozen=True)
class InteractionTerm:
    term: ModelTerm
    contrasts: tuple[Contrast, ...]

    @property
    def label(self) -> str:
        return self.term.label

    @property
    def variables(self) -> tuple[str, ...]:
        return self.term.factors

    def matrix(self, names: list[str]) -> pd.DataFrame:
        """Contrast matrix, one row per contrast, columns in coefficient order."""
        L = pd.DataFrame(0.0, index=[c.label for c in self.contrasts], columns=names)
        for c in self.contrasts:
            for name, w in c.weights.items():
                L.loc[c.label, name] = w
        return L


def reference_level(factor: str, levels: tuple[str, ...], names: set[str]) -> str:
    """The level without a treatment-coded main-effect coefficient."""
    for lev in levels:
        if f"{factor}[T.{lev}]" not in names:
            return lev
    return levels[0]


def _coefficient(names: set[str], factors: tuple[str, ...], chosen: Mapping[str, str]) -> str | None:
    """
    Name of the interaction column for the chosen levels, trying treatment
    coding ('C(a)[T.x]:b') and then full-rank coding ('C(a)[x]:b').
    """
    for template in ("{f}[T.{lev}]", "{f}[{lev}]"):
        parts = [template.format(f=f, lev=chosen[f]) if f in chosen else f for f in factors]
        candidate = ":".join(parts)
        if candidate in names:
            return candidate
    return None


def _categorical_numeric(term: ModelTerm, cat: str, num: str, snapshot: ModelSnapshot) -> list[Contrast]:
    names = set(snapshot.names)
    contrasts = []
    for lev in snapshot.levels[cat]:
        weights: dict[str, float] = {}
        if num in names:
            weights[num] = 1.0
        inter = _coefficient(names, term.factors, {cat: lev})
        if inter:
            weights[inter] = 1.0
        contrasts.append(Contrast(f"{display_name(num)}: {display_name(cat)}({lev})", weights))
    return contrasts


def _categorical_categorical(term: ModelTerm, snapshot: ModelSnapshot) -> list[Contrast]:
    a, b = term.factors
    names = set(snapshot.names)
    levels_a, levels_b = snapshot.levels[a], snapshot.levels[b]
    ref_a = reference_level(a, levels_a, names)
    contrasts = []
    for lev_b in levels_b:
        for lev_a in levels_a:
            if lev_a == ref_a:
                continue
            weights: dict[str, float] = {}
            main = f"{a}[T.{lev_a}]"
            if main in names:
                weights[main] = 1.0
            inter = _coefficient(names, term.factors, {a: lev_a, b: lev_b})
            if inter:
                weights[inter] = 1.0
            label = f"{display_name(a)}({lev_a} vs {ref_a}): {display_name(b)}({lev_b})"
            contrasts.append(Contrast(label, weights))
    return contrasts


def parse_interaction_term(term: ModelTerm, snapshot: ModelSnapshot) -> InteractionTerm:
    """
    Contrasts for one second-order term.

    Raises:
        UnsupportedInteraction: if either variable is an ordered factor.
        InputShapeError: if no coefficient of the term is found.
    """
    a, b = term.factors
    for factor in (a, b):
        if snapshot.is_ordered(factor):
            raise UnsupportedInteraction(term.label, factor)

    cat_a, cat_b = snapshot.is_factor(a), snapshot.is_factor(b)
    if cat_a and cat_b:
        contrasts = _categorical_categorical(term, snapshot)
    elif cat_a:
        contrasts = _categorical_numeric(term, a, b, snapshot)
    elif cat_b:
        contrasts = _categorical_numeric(term, b, a, snapshot)
    else:
        name = term.label if term.label in snapshot.names else f"{b}:{a}"
        contrasts = [Contrast(f"{display_name(a)}:{display_name(b)}", {name: 1.0})]

    contrasts = [c for c in contrasts if c.weights]
    unknown = {n for c in contrasts for n in c.weights if n not in snapshot.names}
    if not contrasts or unknown:
        raise InputShapeError(f"No coefficients found for interaction term '{term.label}'")
    return InteractionTerm(term=term, contrasts=tuple(contrasts))


def parse_interaction_terms(snapshot: ModelSnapshot) -> list[InteractionTerm]:
    return [parse_interaction_term(t, snapshot) for t in snapshot.interaction_terms]


class ContrastEstimator(Protocol):
    def estimate(self, L: pd.DataFrame) -> pd.DataFrame:
        """Columns Coefficient, StandardError, Lower, Upper, Pvalue; one row per contrast."""


class ModelContrastEstimator:
    """Contrasts through statsmodels `t_test`, optionally with a replacement covariance."""

    def __init__(self, fitted: FittedModel, cov: pd.DataFrame | None = None, alpha: float = 0.05):
        self.fitted = fitted
        self.cov = cov
        self.alpha = alpha

    def estimate(self, L: pd.DataFrame) -> pd.DataFrame:
        L = L.reindex(columns=self.fitted.names, fill_value=0.0)
        cov_p = None if self.cov is None else self.cov.loc[self.fitted.names, self.fitted.names].to_numpy()
        res = self.fitted.result.t_test(L.to_numpy(), cov_p=cov_p)
        ci = np.asarray(res.conf_int(alpha=self.alpha), dtype=float).reshape(-1, 2)
        return pd.DataFrame(
            {
                "Coefficient": np.ravel(res.effect),
                "StandardError": np.ravel(res.sd),
                "Lower": ci[:, 0],
                "Upper": ci[:, 1],
                "Pvalue": np.ravel(res.pvalue),
            },
            index=L.index,
        )


class WaldContrastEstimator:
    """Normal-theory contrasts from coefficients and a covariance matrix."""

    def __init__(self, coefficients: pd.Series, cov: pd.DataFrame, alpha: float = 0.05):
        self.coefficients = coefficients
        self.cov = cov
        self.alpha = alpha

    def estimate(self, L: pd.DataFrame) -> pd.DataFrame:
        names = list(self.coefficients.index)
        Lm = L.reindex(columns=names, fill_value=0.0).to_numpy()
        effect = Lm @ self.coefficients.to_numpy()
        se = np.sqrt(np.diag(Lm @ self.cov.loc[names, names].to_numpy() @ Lm.T))
        crit = stats.norm.isf(self.alpha / 2)
        return pd.DataFrame(
            {
                "Coefficient": effect,
                "StandardError": se,
                "Lower": effect - crit * se,
                "Upper": effect + crit * se,
                "Pvalue": 2 * stats.norm.sf(np.abs(effect / se)),
            },
            index=L.index,
        )
