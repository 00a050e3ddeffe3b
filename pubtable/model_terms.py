"""
Model introspection: from a fitted statsmodels result to a ModelSnapshot.

A snapshot is everything the regression table needs to know about a model,
independent of the library that fitted it:

- the model family (linear, logistic, Poisson, Cox),
- the coefficient vector with patsy-style names
  ("age", "C(sex)[T.male]", "C(grade, Poly).Linear", "C(sex)[T.male]:age"),
- the formula terms with their order and the raw data columns they use,
- categorical levels per factor,
- missing-value counts per raw variable,
- unit labels.

`FittedModel` wraps the statsmodels result for the queries the interval and
p-value strategies make (covariances, refits, contrasts).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from statsmodels.discrete.discrete_model import DiscreteModel, Logit
from statsmodels.discrete.discrete_model import Poisson as PoissonModel
from statsmodels.duration.hazard_regression import PHReg
from statsmodels.genmod import families
from statsmodels.genmod.generalized_linear_model import GLM
from statsmodels.regression.linear_model import RegressionModel

from logger import get_logger
from pubtable.exceptions import ConfigurationError, FormulaUnavailable

logger = get_logger(__name__)

ORDER_SUFFIX = re.compile(r"(?:\.(?:Linear|Quadratic|Cubic)|\^\d+)$")
BOOLEAN_SUFFIX = "[T.True]"
INTERCEPT = "Intercept"

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")
_QUOTED = re.compile(r"Q\(\s*[\"'](.+?)[\"']\s*\)")


class ModelFamily(Enum):
    LINEAR = "linear"
    LOGISTIC = "logistic"
    POISSON = "poisson"
    COX = "cox"

    @property
    def model_label(self) -> str:
        return f"{self.value.capitalize()} regression"

    @property
    def ratio_scale(self) -> bool:
        """Whether estimates are exponentiated for display."""
        return self is not ModelFamily.LINEAR

    @classmethod
    def parse(cls, value: "ModelFamily | str") -> "ModelFamily":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown model family '{value}'. Valid options: {[f.value for f in cls]}"
            ) from None


def detect_family(model: Any) -> ModelFamily:
    """Map a statsmodels model instance to its ModelFamily."""
    if isinstance(model, PHReg):
        return ModelFamily.COX
    if isinstance(model, GLM):
        if isinstance(model.family, families.Binomial):
            return ModelFamily.LOGISTIC
        if isinstance(model.family, families.Poisson):
            return ModelFamily.POISSON
        if not isinstance(model.family, families.Gaussian):
            logger.warning(
                f"GLM family {type(model.family).__name__} is shown on the linear-predictor scale"
            )
        return ModelFamily.LINEAR
    if isinstance(model, Logit):
        return ModelFamily.LOGISTIC
    if isinstance(model, PoissonModel):
        return ModelFamily.POISSON
    if isinstance(model, RegressionModel):
        return ModelFamily.LINEAR
    raise ConfigurationError(f"Unsupported model class {type(model).__name__}")


@dataclass(frozen=True)
class ModelTerm:
    """One formula term: 'age', 'C(sex)', or the interaction 'C(sex):age'."""

    label: str
    factors: tuple[str, ...]
    variables: tuple[str, ...] = ()

    @property
    def order(self) -> int:
        return len(self.factors)

    @classmethod
    def from_label(cls, label: str, variables: Sequence[str] | None = None) -> "ModelTerm":
        factors = tuple(split_interaction(label))
        return cls(label=label, factors=factors, variables=tuple(variables or factors))


def split_interaction(label: str) -> list[str]:
    """Split 'C(a, Treatment("x")):b' on colons outside parentheses and quotes."""
    parts, depth, quote, current = [], 0, None, []
    for ch in label:
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == ":" and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts]


def _first_argument(inner: str) -> str:
    depth, quote = 0, None
    for i, ch in enumerate(inner):
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "," and depth == 0:
            return inner[:i].strip()
    return inner.strip()


def display_name(factor: str) -> str:
    """Readable variable name: 'C(sex, Treatment("m"))' -> 'sex', 'Q("body mass")' -> 'body mass'."""
    for wrapper in ("C(", "Q("):
        if factor.startswith(wrapper) and factor.endswith(")"):
            inner = _first_argument(factor[len(wrapper):-1])
            if len(inner) > 1 and inner[0] == inner[-1] and inner[0] in "\"'":
                inner = inner[1:-1]
            return display_name(inner) if wrapper == "C(" else inner
    return factor


@dataclass(frozen=True, eq=False)
class ModelSnapshot:
    """
    Library-independent description of a fitted model.

    `missing` holds NA counts per raw variable. When `data` (the raw columns)
    is available, counts for interaction terms use the union of missing rows;
    otherwise the per-variable counts are added up.
    """

    family: ModelFamily
    coefficients: pd.Series
    terms: tuple[ModelTerm, ...]
    factor_levels: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    missing: Mapping[str, int] = field(default_factory=dict)
    units: Mapping[str, str] = field(default_factory=dict)
    data: pd.DataFrame | None = None
    covariance: pd.DataFrame | None = None

    @classmethod
    def build(
        cls,
        family: ModelFamily | str,
        coefficients: Mapping[str, float] | pd.Series,
        terms: Iterable[str | ModelTerm],
        factor_levels: Mapping[str, Sequence[str]] | None = None,
        missing: Mapping[str, int] | None = None,
        units: Mapping[str, str] | None = None,
        data: pd.DataFrame | None = None,
        covariance: pd.DataFrame | None = None,
    ) -> "ModelSnapshot":
        """Convenience constructor accepting plain term labels."""
        return cls(
            family=ModelFamily.parse(family),
            coefficients=pd.Series(coefficients, dtype=float),
            terms=tuple(t if isinstance(t, ModelTerm) else ModelTerm.from_label(t) for t in terms),
            factor_levels={k: tuple(str(v) for v in lv) for k, lv in (factor_levels or {}).items()},
            missing=dict(missing or {}),
            units=dict(units or {}),
            data=data,
            covariance=covariance,
        )

    @property
    def names(self) -> list[str]:
        return list(self.coefficients.index)

    @property
    def has_intercept(self) -> bool:
        return bool(self.names) and self.names[0] == INTERCEPT

    @property
    def first_order_terms(self) -> list[ModelTerm]:
        return [t for t in self.terms if t.order == 1]

    @property
    def interaction_terms(self) -> list[ModelTerm]:
        return [t for t in self.terms if t.order == 2]

    @cached_property
    def ordered_names(self) -> tuple[str, ...]:
        """Factors coded with polynomial contrasts, found by their coefficient suffixes."""
        found: list[str] = []
        for name in self.names:
            if ":" in name:
                continue
            if ORDER_SUFFIX.search(name):
                prefix = ORDER_SUFFIX.sub("", name)
                if prefix not in found:
                    found.append(prefix)
        return tuple(found)

    @cached_property
    def levels(self) -> dict[str, tuple[str, ...]]:
        """Factor levels including two-level booleans seen only through '[T.True]' names."""
        levels = dict(self.factor_levels)
        for name in self.names:
            if name.endswith(BOOLEAN_SUFFIX) and ":" not in name:
                prefix = name[: -len(BOOLEAN_SUFFIX)]
                levels.setdefault(prefix, ("False", "True"))
        return levels

    @property
    def factor_names(self) -> tuple[str, ...]:
        return tuple(k for k in self.levels if k not in self.ordered_names)

    def is_ordered(self, factor: str) -> bool:
        return factor in self.ordered_names

    def is_factor(self, factor: str) -> bool:
        return factor in self.levels or factor in self.ordered_names

    def missing_count(self, term: ModelTerm) -> int:
        variables = list(term.variables)
        if self.data is not None and variables and all(v in self.data.columns for v in variables):
            return int(self.data[variables].isna().any(axis=1).sum())
        return int(sum(self.missing.get(v, 0) for v in variables))

    def unit(self, term: ModelTerm) -> str | None:
        for key in (term.label, *term.variables):
            if key in self.units:
                return self.units[key]
        return None


def raw_variables(code: str, columns: Iterable[str]) -> tuple[str, ...]:
    """Data columns referenced by a patsy factor code such as 'np.log(bili)' or 'C(sex)'."""
    columns = list(columns)
    colset = set(columns)
    found: list[str] = []
    if code in colset:
        found.append(code)
    for name in _QUOTED.findall(code) + _IDENTIFIER.findall(code):
        if name in colset and name not in found:
            found.append(name)
    return tuple(found)


class FittedModel:
    """
    Read-only adapter over a fitted statsmodels formula result.

    Coefficient names come from `model.exog_names`; every vector is returned
    as a pandas object indexed by those names, whatever the model class
    returns natively.
    """

    def __init__(self, result: Any, family: ModelFamily | str | None = None):
        self.result = result
        self.model = result.model
        self.names = list(self.model.exog_names)
        self.family = ModelFamily.parse(family) if family is not None else detect_family(self.model)

    @property
    def params(self) -> pd.Series:
        return pd.Series(np.asarray(self.result.params, dtype=float), index=self.names)

    def cov(self) -> pd.DataFrame:
        return pd.DataFrame(np.asarray(self.result.cov_params(), dtype=float), index=self.names, columns=self.names)

    @property
    def bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.cov().to_numpy())), index=self.names)

    @property
    def pvalues(self) -> pd.Series:
        return pd.Series(np.asarray(self.result.pvalues, dtype=float), index=self.names)

    @property
    def use_t(self) -> bool:
        return bool(getattr(self.result, "use_t", False))

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        ci = np.asarray(self.result.conf_int(alpha=alpha), dtype=float)
        return pd.DataFrame(ci, index=self.names, columns=["lower", "upper"])

    def refit_robust(self) -> Any:
        """Refit with a sandwich covariance: HC0, or per-subject robust for PHReg."""
        if isinstance(self.model, PHReg):
            return self.model.fit(groups=np.arange(self.model.exog.shape[0]))
        kwargs: dict[str, Any] = {"cov_type": "HC0"}
        if isinstance(self.model, DiscreteModel):
            kwargs["disp"] = 0
        return self.model.fit(**kwargs)

    @cached_property
    def robust_cov(self) -> pd.DataFrame:
        with logger.track_time("robust_refit"):
            robust = self.refit_robust()
        return pd.DataFrame(np.asarray(robust.cov_params(), dtype=float), index=self.names, columns=self.names)

    @property
    def design_info(self) -> Any:
        design_info = getattr(self.model.data, "design_info", None)
        if design_info is None:
            raise FormulaUnavailable(type(self.model).__name__)
        return design_info

    @property
    def frame(self) -> pd.DataFrame | None:
        frame = getattr(self.model.data, "frame", None)
        return frame if isinstance(frame, pd.DataFrame) else None

    def snapshot(self, units: Mapping[str, str] | None = None) -> ModelSnapshot:
        """
        Introspect the patsy design: terms, raw variables, levels, missing counts.

        Units from `data.attrs["units"]` are merged with (and overridden by) `units`.
        """
        design_info = self.design_info
        frame = self.frame
        columns = list(frame.columns) if frame is not None else []

        factor_levels: dict[str, tuple[str, ...]] = {}
        for factor, info in design_info.factor_infos.items():
            if info.type == "categorical":
                factor_levels[factor.name()] = tuple(str(c) for c in info.categories)

        terms: list[ModelTerm] = []
        for term in design_info.terms:
            if not term.factors:
                continue
            factor_names = tuple(f.name() for f in term.factors)
            variables: list[str] = []
            for f in term.factors:
                for v in raw_variables(f.name(), columns):
                    if v not in variables:
                        variables.append(v)
            terms.append(ModelTerm(label=term.name(), factors=factor_names, variables=tuple(variables)))

        used = [v for t in terms for v in t.variables]
        used = list(dict.fromkeys(used))
        raw = frame[used] if frame is not None and used else None
        missing = {v: int(raw[v].isna().sum()) for v in used} if raw is not None else {}

        merged_units: dict[str, str] = {}
        if frame is not None:
            merged_units.update(frame.attrs.get("units", {}) or {})
        merged_units.update(units or {})

        return ModelSnapshot(
            family=self.family,
            coefficients=self.params,
            terms=tuple(terms),
            factor_levels=factor_levels,
            missing=missing,
            units=merged_units,
            data=raw,
            covariance=self.cov(),
        )
