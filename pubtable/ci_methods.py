"""
Confidence-interval and p-value strategies for regression tables.

Interval methods:
1. default      - the model's own Wald intervals (`conf_int`)
2. profile      - profile-likelihood intervals (logistic and Poisson models)
3. robust       - Wald intervals from the HC0 sandwich covariance
4. simultaneous - single-step max-|z| intervals over all coefficients

P-value methods: default, robust, simultaneous.

Names are resolved (and rejected) before anything is computed.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, ClassVar

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import optimize, stats
from statsmodels.genmod import families

from config import CONFIG
from logger import get_logger
from pubtable.exceptions import UnknownIntervalMethod, UnknownPValueMethod
from pubtable.model_terms import FittedModel, ModelFamily

logger = get_logger(__name__)


# --- simultaneous inference ---------------------------------------------------

def _correlation(cov: pd.DataFrame) -> np.ndarray:
    se = np.sqrt(np.diag(cov.to_numpy()))
    return cov.to_numpy() / np.outer(se, se)


def _prob_max_abs_within(corr: np.ndarray, c: float, seed: int | None) -> float:
    """P(max_i |Z_i| <= c) for Z ~ N(0, corr)."""
    k = corr.shape[0]
    if k == 1:
        return float(1 - 2 * stats.norm.sf(c))
    dist = stats.multivariate_normal(mean=np.zeros(k), cov=corr, allow_singular=True, seed=seed)
    return float(dist.cdf(np.full(k, c), lower_limit=np.full(k, -c)))


def max_abs_z_quantile(cov: pd.DataFrame, alpha: float = 0.05, seed: int | None = None) -> float:
    """
    Critical value c with P(max |Z| <= c) = 1 - alpha, Z standardized
    estimates with covariance `cov`.

    The root lies between the unadjusted and the Bonferroni quantile.
    """
    seed = CONFIG.get("regression.simultaneous_seed") if seed is None else seed
    corr = _correlation(cov)
    k = corr.shape[0]
    lo = stats.norm.isf(alpha / 2) - 0.1
    hi = stats.norm.isf(alpha / (2 * k)) + 0.5
    return float(optimize.brentq(lambda c: _prob_max_abs_within(corr, c, seed) - (1 - alpha), lo, hi, xtol=1e-6))


def max_abs_z_pvalues(z: pd.Series, cov: pd.DataFrame, seed: int | None = None) -> pd.Series:
    """Single-step adjusted p-values: P(max |Z| >= |z_i|)."""
    seed = CONFIG.get("regression.simultaneous_seed") if seed is None else seed
    corr = _correlation(cov)
    adjusted = [
        np.nan if not np.isfinite(zi) else 1 - _prob_max_abs_within(corr, abs(zi), seed)
        for zi in z.to_numpy(dtype=float)
    ]
    return pd.Series(np.clip(adjusted, 0.0, 1.0), index=z.index)


# --- profile likelihood -------------------------------------------------------

def _base_offset(model) -> np.ndarray:
    n = model.exog.shape[0]
    offset = np.zeros(n)
    for attr in ("offset", "exposure"):
        value = getattr(model, attr, None)
        if value is not None:
            offset = offset + np.asarray(value, dtype=float)
    return offset


def _find_bound(deficit: Callable[[float], float], center: float, step: float, max_expand: int) -> float:
    """Root of `deficit` on one side of `center`, doubling the bracket as needed."""
    if not np.isfinite(step) or step == 0:
        return np.nan
    inner, outer = center, center + step
    for _ in range(max_expand):
        if deficit(outer) > 0:
            a, b = sorted((inner, outer))
            return float(optimize.brentq(deficit, a, b, xtol=1e-8))
        inner, outer = outer, center + 2 * (outer - center)
    logger.warning(f"Profile likelihood bound not found within {max_expand} bracket doublings")
    return np.nan


def profile_conf_int(fitted: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
    """
    Profile-likelihood intervals for logistic and Poisson models.

    Each coefficient is fixed through the offset and the remaining ones are
    refitted; the bounds are where twice the log-likelihood drop reaches the
    chi-square(1) quantile.
    """
    model = fitted.model
    family = families.Binomial() if fitted.family is ModelFamily.LOGISTIC else families.Poisson()
    endog = np.asarray(model.endog, dtype=float)
    exog = np.asarray(model.exog, dtype=float)
    offset = _base_offset(model)
    weights = {}
    if isinstance(model, sm.GLM):
        weights = {"freq_weights": model.freq_weights, "var_weights": model.var_weights}

    full = sm.GLM(endog, exog, family=family, offset=offset, **weights).fit()
    llf_hat = full.llf
    beta = np.asarray(full.params)
    se = np.asarray(full.bse)
    cutoff = stats.chi2.ppf(1 - alpha, 1) / 2
    max_expand = CONFIG.get("regression.profile_max_expand", 12)

    rows = []
    for j in range(exog.shape[1]):
        x_j = exog[:, j]
        others = np.delete(exog, j, axis=1)

        def constrained_llf(b: float) -> float:
            fixed = offset + b * x_j
            if others.shape[1] == 0:
                mu = family.link.inverse(fixed)
                return float(family.loglike(endog, mu, **weights))
            return float(sm.GLM(endog, others, family=family, offset=fixed, **weights).fit().llf)

        def deficit(b: float) -> float:
            return llf_hat - constrained_llf(b) - cutoff

        rows.append((
            _find_bound(deficit, beta[j], -se[j], max_expand),
            _find_bound(deficit, beta[j], se[j], max_expand),
        ))
    return pd.DataFrame(rows, index=fitted.names, columns=["lower", "upper"])


# --- strategies ---------------------------------------------------------------

def _wald(params: pd.Series, se: pd.Series, crit: float) -> pd.DataFrame:
    return pd.DataFrame({"lower": params - crit * se, "upper": params + crit * se})


class IntervalMethod(ABC):
    name: ClassVar[str]

    @abstractmethod
    def compute(self, model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
        """Lower and upper limits indexed by coefficient name."""

    def covariance(self, model: FittedModel) -> pd.DataFrame:
        """Covariance used for linear contrasts under this method."""
        return model.cov()

    @property
    def robust(self) -> bool:
        return False


class DefaultInterval(IntervalMethod):
    name = "default"

    def compute(self, model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
        return model.conf_int(alpha)


class ProfileInterval(IntervalMethod):
    name = "profile"

    def compute(self, model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
        if model.family in (ModelFamily.LOGISTIC, ModelFamily.POISSON):
            with logger.track_time("profile_conf_int"):
                return profile_conf_int(model, alpha)
        if model.family is ModelFamily.COX:
            logger.info("Profile intervals are not available for Cox models; using Wald intervals")
        return model.conf_int(alpha)


class RobustInterval(IntervalMethod):
    name = "robust"

    def compute(self, model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
        se = pd.Series(np.sqrt(np.diag(model.robust_cov.to_numpy())), index=model.names)
        return _wald(model.params, se, stats.norm.isf(alpha / 2))

    def covariance(self, model: FittedModel) -> pd.DataFrame:
        return model.robust_cov

    @property
    def robust(self) -> bool:
        return True


class SimultaneousInterval(IntervalMethod):
    name = "simultaneous"

    def compute(self, model: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
        crit = max_abs_z_quantile(model.cov(), alpha)
        logger.debug(f"Simultaneous critical value {crit:.4f} over {len(model.names)} coefficients")
        return _wald(model.params, model.bse, crit)


class PValueMethod(ABC):
    name: ClassVar[str]

    @abstractmethod
    def compute(self, model: FittedModel) -> pd.Series:
        """P-values indexed by coefficient name."""


class DefaultPValue(PValueMethod):
    name = "default"

    def compute(self, model: FittedModel) -> pd.Series:
        return model.pvalues


class RobustPValue(PValueMethod):
    name = "robust"

    def compute(self, model: FittedModel) -> pd.Series:
        se = np.sqrt(np.diag(model.robust_cov.to_numpy()))
        z = model.params / se
        return pd.Series(2 * stats.norm.sf(np.abs(z)), index=model.names)


class SimultaneousPValue(PValueMethod):
    name = "simultaneous"

    def compute(self, model: FittedModel) -> pd.Series:
        return max_abs_z_pvalues(model.params / model.bse, model.cov())


INTERVAL_METHODS: dict[str, type[IntervalMethod]] = {
    cls.name: cls for cls in (DefaultInterval, ProfileInterval, RobustInterval, SimultaneousInterval)
}
PVALUE_METHODS: dict[str, type[PValueMethod]] = {
    cls.name: cls for cls in (DefaultPValue, RobustPValue, SimultaneousPValue)
}
# p-value method implied by an interval method
_FOLLOWS = {"default": "default", "profile": "default", "robust": "robust", "simultaneous": "simultaneous"}


def resolve_methods(
    confint_method: str | None = None, pvalue_method: str | None = None
) -> tuple[IntervalMethod, PValueMethod]:
    """
    Validate and instantiate the interval and p-value strategies.

    Robust and simultaneous intervals force the matching p-values. Without
    an explicit p-value method the interval method decides.

    Raises:
        UnknownIntervalMethod, UnknownPValueMethod
    """
    confint_method = confint_method or CONFIG.get("regression.confint_method", "default")
    if pvalue_method is None:
        pvalue_method = CONFIG.get("regression.pvalue_method")

    if confint_method not in INTERVAL_METHODS:
        raise UnknownIntervalMethod(confint_method, list(INTERVAL_METHODS))
    if pvalue_method is not None and pvalue_method not in PVALUE_METHODS:
        raise UnknownPValueMethod(pvalue_method, list(PVALUE_METHODS))

    implied = _FOLLOWS[confint_method]
    if pvalue_method is None:
        pvalue_method = implied
    elif confint_method in ("robust", "simultaneous") and pvalue_method != implied:
        logger.info(f"confint_method='{confint_method}' implies pvalue_method='{implied}' (was '{pvalue_method}')")
        pvalue_method = implied

    return INTERVAL_METHODS[confint_method](), PVALUE_METHODS[pvalue_method]()
