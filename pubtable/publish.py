"""
Publishing: formatted display frames for regression and univariate tables,
optionally printed to standard output.

Every publish_* function returns the structured result for further use;
printing is a side effect controlled by `print_table`.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, TextIO

import pandas as pd
import statsmodels.formula.api as smf

from config import CONFIG, SHOW_MISSING
from logger import get_logger
from pubtable.exceptions import ConfigurationError
from pubtable.formatting import SIGNIF_LEGEND, format_ci, format_number, format_p_value
from pubtable.regression_table import RegressionTable, regression_table
from pubtable.univariate_table import UnivariateTable

logger = get_logger(__name__)

REGRESSION_OPTIONS = (
    "confint_method", "pvalue_method", "factor_reference", "units",
    "noterms", "probindex", "family", "alpha",
)


def _split_digits(digits: int | Sequence[int] | None, pvalue_digits: int | None) -> tuple[int, int]:
    if isinstance(digits, (list, tuple)):
        est_digits = digits[0]
        if pvalue_digits is None and len(digits) > 1:
            pvalue_digits = digits[1]
    else:
        est_digits = digits
    est_digits = CONFIG.get("format.digits", 2) if est_digits is None else est_digits
    pvalue_digits = CONFIG.get("format.pvalue_digits", 4) if pvalue_digits is None else pvalue_digits
    return est_digits, pvalue_digits


def summarize_regression_table(
    table: RegressionTable,
    digits: int | Sequence[int] | None = None,
    pvalue_digits: int | None = None,
    eps: float | None = None,
    pvalue_stars: bool | None = None,
    ci_format: str | None = None,
    ci_handler: str | None = None,
    ci_degenerated: str | None = None,
    show_missing: str | None = None,
    reference_label: str | None = None,
    trim: bool = True,
) -> pd.DataFrame:
    """
    Display frame: Variable, Units, [Missing], <estimate>, CI.95, p-value.

    Reference rows show `reference_label` for the estimate, the degenerate
    sentinel (blank when it is "asis") for the interval, and no p-value.
    """
    est_digits, pvalue_digits = _split_digits(digits, pvalue_digits)
    show_missing = show_missing or CONFIG.get("format.show_missing", "ifany")
    if show_missing not in SHOW_MISSING:
        raise ConfigurationError(f"show_missing must be one of {SHOW_MISSING}, got '{show_missing}'")
    reference_label = CONFIG.get("format.reference_label", "Ref") if reference_label is None else reference_label
    ci_degenerated = CONFIG.get("format.ci_degenerated", "asis") if ci_degenerated is None else ci_degenerated
    reference_ci = "" if ci_degenerated == "asis" else ci_degenerated

    label = table.estimate_label
    ci_col = f"CI.{round(100 * (1 - table.alpha)):g}"
    frames = []
    for block in table.blocks:
        rows = block.rows
        est = format_number(rows[label], digits=est_digits, handler=ci_handler)
        ci = format_ci(
            rows["Lower"], rows["Upper"], format=ci_format, digits=est_digits,
            handler=ci_handler, degenerated=ci_degenerated, trim=trim,
        )
        pvals = [format_p_value(p, digits=pvalue_digits, eps=eps, stars=pvalue_stars) for p in rows["Pvalue"]]
        if block.reference_row:
            est[0], ci[0], pvals[0] = reference_label, reference_ci, ""
        frames.append(pd.DataFrame({
            "Variable": rows["Variable"].to_numpy(),
            "Units": rows["Units"].to_numpy(),
            "Missing": [str(m) for m in rows["Missing"]],
            label: est,
            ci_col: ci,
            "p-value": pvals,
        }))

    out = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame(
        columns=["Variable", "Units", "Missing", label, ci_col, "p-value"]
    )
    any_missing = any(b.missing > 0 for b in table.blocks)
    if show_missing == "never" or (show_missing == "ifany" and not any_missing):
        out = out.drop(columns=["Missing"])
    return out


def _print_frame(frame: pd.DataFrame, stream: TextIO | None, title: str | None = None,
                 legend: bool = False) -> None:
    stream = stream or sys.stdout
    if title:
        print(title, file=stream)
    print(frame.to_string(index=False), file=stream)
    if legend:
        print(SIGNIF_LEGEND, file=stream)


def _stars_on(pvalue_stars: bool | None) -> bool:
    return bool(CONFIG.get("format.pvalue_stars", False) if pvalue_stars is None else pvalue_stars)


def publish_regression(
    model: Any,
    print_table: bool = True,
    stream: TextIO | None = None,
    **kwargs: Any,
) -> RegressionTable:
    """
    Build, optionally print, and return the regression table of `model`.

    Keyword arguments go to regression_table (confint_method, pvalue_method,
    factor_reference, units, noterms, probindex, family, alpha) or to
    summarize_regression_table (digits, eps, pvalue_stars, ci_format, ...).
    """
    reg_kwargs = {k: kwargs.pop(k) for k in list(kwargs) if k in REGRESSION_OPTIONS}
    table = regression_table(model, **reg_kwargs)
    if print_table:
        display = summarize_regression_table(table, **kwargs)
        _print_frame(display, stream, legend=_stars_on(kwargs.get("pvalue_stars")))
    return table


def publish_univariate(
    table: UnivariateTable,
    print_table: bool = True,
    stream: TextIO | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """Display frame of a univariate table, printed when `print_table`."""
    display = table.summary(**kwargs)
    if print_table:
        _print_frame(display, stream)
    return display


# --- cause-specific Cox -------------------------------------------------------

@dataclass(frozen=True, eq=False)
class CauseSpecificCox:
    """One fitted Cox model per competing cause, keyed by cause label."""

    models: Mapping[str, Any]
    time: str = "time"
    status: str = "status"

    @property
    def causes(self) -> list[str]:
        return list(self.models)


def fit_cause_specific_cox(
    formula: str | Mapping[Any, str],
    data: pd.DataFrame,
    time: str,
    status: str,
    causes: Sequence[Any] | None = None,
    censoring: Any = 0,
    ties: str = "breslow",
) -> CauseSpecificCox:
    """
    Fit a statsmodels PHReg for each cause with events of other causes censored.

    Parameters:
        formula: right-hand side ("age + C(sex)" or "~ age + C(sex)"), or a
            mapping cause -> right-hand side.
        time, status: column names; `status` holds the censoring code or a cause.
        causes: causes to model; default every status value except `censoring`.
    """
    if time not in data.columns or status not in data.columns:
        raise ConfigurationError(f"Columns '{time}' and '{status}' must be in data")
    if causes is None:
        observed = data[status].dropna().unique()
        causes = sorted((c for c in observed if c != censoring), key=str)
    if not causes:
        raise ConfigurationError(f"No events other than censoring code {censoring!r} in '{status}'")

    models: dict[str, Any] = {}
    for cause in causes:
        rhs = formula[cause] if isinstance(formula, Mapping) else formula
        rhs = rhs.split("~", 1)[1] if "~" in rhs else rhs
        event = (data[status] == cause).astype(float)
        with logger.track_time(f"phreg_cause_{cause}"):
            models[str(cause)] = smf.phreg(f"{time} ~ {rhs.strip()}", data=data, status=event, ties=ties).fit()
        logger.debug(f"Cause {cause}: {int(event.sum())} events")
    return CauseSpecificCox(models=models, time=time, status=status)


def publish_cause_specific(
    csc: CauseSpecificCox,
    cause: Any = None,
    prefix: str = "cause.",
    print_table: bool = True,
    stream: TextIO | None = None,
    **kwargs: Any,
) -> pd.DataFrame | dict[str, pd.DataFrame]:
    """
    Hazard-ratio tables of a cause-specific Cox model.

    With `cause` the display frame of that cause is returned. Otherwise a
    dict cause -> display frame whose columns are prefixed with
    "<prefix><cause>." is returned, one per modeled cause.
    """
    reg_kwargs = {k: kwargs.pop(k) for k in list(kwargs) if k in REGRESSION_OPTIONS}
    reg_kwargs.setdefault("family", "cox")
    stars = _stars_on(kwargs.get("pvalue_stars"))

    if cause is not None:
        key = str(cause)
        if key not in csc.models:
            raise ConfigurationError(f"Unknown cause '{cause}'. Valid options: {csc.causes}")
        display = summarize_regression_table(regression_table(csc.models[key], **reg_kwargs), **kwargs)
        if print_table:
            _print_frame(display, stream, title=f"Cause: {key}", legend=stars)
        return display

    out: dict[str, pd.DataFrame] = {}
    for key, model in csc.models.items():
        display = summarize_regression_table(regression_table(model, **reg_kwargs), **kwargs)
        out[key] = display.rename(columns=lambda c, k=key: f"{prefix}{k}.{c}")
        if print_table:
            _print_frame(display, stream, title=f"Cause: {key}")
    if print_table and stars:
        print(SIGNIF_LEGEND, file=stream or sys.stdout)
    return out
