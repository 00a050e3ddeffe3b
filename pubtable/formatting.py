"""
Number, interval and p-value formatting for publication tables.
Driven by central configuration from config.py
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np
import pandas as pd

from config import CONFIG, CI_HANDLERS
from pubtable.exceptions import ConfigurationError, LengthMismatch

SIGNIF_CUTPOINTS = (0.001, 0.01, 0.05, 0.1)
SIGNIF_SYMBOLS = ("***", "**", "*", ".")
SIGNIF_LEGEND = "Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1"


def _as_float_array(values: Any) -> np.ndarray:
    if np.isscalar(values) or values is None:
        values = [values]
    return np.asarray(pd.to_numeric(pd.Series(list(values), dtype=object), errors="coerce"), dtype=float)


def _significant_decimals(value: float, digits: int) -> int:
    """Decimals needed to show `value` with `digits` significant digits."""
    if value == 0 or not np.isfinite(value):
        return max(digits - 1, 0)
    magnitude = math.floor(math.log10(abs(value)))
    return max(digits - 1 - magnitude, 0)


def format_number(
    values: Any,
    digits: int | None = None,
    handler: str | None = None,
    nsmall: int | None = None,
    na_string: str | None = None,
) -> list[str]:
    """
    Format numbers with one of three handlers.

    - "sprintf": fixed `digits` decimals.
    - "format": `digits` significant digits with at least `nsmall` decimals,
      one common number of decimals for the whole vector.
    - "prettyNum": as "format" with a thousands separator.
    """
    digits = CONFIG.get("format.digits", 2) if digits is None else digits
    handler = handler or CONFIG.get("format.ci_handler", "sprintf")
    na_string = CONFIG.get("format.na_string", "NA") if na_string is None else na_string
    if handler not in CI_HANDLERS:
        raise ConfigurationError(f"Unknown number handler '{handler}'. Valid options: {CI_HANDLERS}")

    arr = _as_float_array(values)
    finite = arr[np.isfinite(arr)]

    if handler == "sprintf":
        decimals = digits
        spec = f".{decimals}f"
    else:
        nsmall = digits if nsmall is None else nsmall
        decimals = max((_significant_decimals(v, digits) for v in finite), default=0)
        decimals = max(decimals, nsmall)
        spec = f",.{decimals}f" if handler == "prettyNum" else f".{decimals}f"

    out = []
    for v in arr:
        if np.isnan(v):
            out.append(na_string)
        elif np.isinf(v):
            out.append("Inf" if v > 0 else "-Inf")
        else:
            out.append(format(v, spec))
    return out


def _split_template(template: str) -> tuple[str, str, str, bool]:
    """
    Locate the first 'l' and the first 'u' of a CI template.

    Returns the three literal pieces around the placeholders and whether the
    lower placeholder comes first.
    """
    pos_l = template.find("l")
    pos_u = template.find("u")
    if pos_l < 0 or pos_u < 0:
        raise ConfigurationError(
            f"CI format '{template}' needs an 'l' and a 'u' placeholder"
        )
    first, second = sorted((pos_l, pos_u))
    return template[:first], template[first + 1:second], template[second + 1:], pos_l < pos_u


def _pad(strings: list[str]) -> list[str]:
    width = max((len(s) for s in strings), default=0)
    return [s.rjust(width) for s in strings]


def format_ci(
    lower: Any,
    upper: Any,
    format: str | None = None,
    digits: int | None = None,
    nsmall: int | None = None,
    handler: str | None = None,
    degenerated: str | bool | None = None,
    trim: bool = True,
    x: Any = None,
    sep: str | None = None,
) -> list[str]:
    """
    Render confidence limits into strings such as "[1.02;1.37]".

    The first 'l' in `format` is replaced by the lower limit and the first 'u'
    by the upper limit. When `degenerated` is a string other than "asis", pairs
    with lower == upper render as that string instead. When `x` is given, the
    formatted estimate is prefixed and separated by `sep`.

    Raises:
        LengthMismatch: if `lower` and `upper` differ in length.

    Example:
        >>> format_ci([0.1, 1], [0.5, 1], degenerated="--")
        ['[0.10;0.50]', '--']
    """
    template = format or CONFIG.get("format.ci_format", "[l;u]")
    degenerated = CONFIG.get("format.ci_degenerated", "asis") if degenerated is None else degenerated
    sep = CONFIG.get("format.ci_sep", " ") if sep is None else sep

    lo = _as_float_array(lower)
    up = _as_float_array(upper)
    if len(lo) != len(up):
        raise LengthMismatch(len(lo), len(up))

    head, middle, tail, lower_first = _split_template(template)
    lo_str = format_number(lo, digits=digits, handler=handler, nsmall=nsmall)
    up_str = format_number(up, digits=digits, handler=handler, nsmall=nsmall)
    if not trim:
        lo_str, up_str = _pad(lo_str), _pad(up_str)

    out = []
    for i, (l_s, u_s) in enumerate(zip(lo_str, up_str)):
        if isinstance(degenerated, str) and degenerated != "asis" and lo[i] == up[i]:
            out.append(degenerated)
            continue
        first, second = (l_s, u_s) if lower_first else (u_s, l_s)
        out.append(f"{head}{first}{middle}{second}{tail}")

    if x is not None:
        x_str = format_number(x, digits=digits, handler=handler, nsmall=nsmall)
        if len(x_str) != len(out):
            raise LengthMismatch(len(x_str), len(out))
        out = [f"{e}{sep}{ci}" for e, ci in zip(x_str, out)]

    return out


def significance_stars(p: float) -> str:
    """Significance code of a p-value: '***', '**', '*', '.' or ''."""
    if p is None or pd.isna(p):
        return ""
    for cut, symbol in zip(SIGNIF_CUTPOINTS, SIGNIF_SYMBOLS):
        if p < cut:
            return symbol
    return ""


def format_p_value(
    p: float,
    digits: int | None = None,
    eps: float | None = None,
    stars: bool | None = None,
    na_string: str | None = None,
) -> str:
    """
    Format a p-value using settings from CONFIG.

    Values below `eps` render as "<eps" (e.g. "<0.0001"); others with `digits`
    decimals. With `stars` the significance code is returned instead of the
    number.
    """
    digits = CONFIG.get("format.pvalue_digits", 4) if digits is None else digits
    eps = CONFIG.get("format.pvalue_eps", 0.0001) if eps is None else eps
    stars = CONFIG.get("format.pvalue_stars", False) if stars is None else stars
    na_string = CONFIG.get("format.na_string", "NA") if na_string is None else na_string

    if p is None or pd.isna(p) or not np.isfinite(p):
        return na_string
    if stars:
        return significance_stars(p)
    if p < eps:
        return "<" + np.format_float_positional(eps, trim="-")
    return f"{p:.{digits}f}"


def format_level_label(variable: str, level: str, short: bool) -> str:
    """Group column label: 'level' when short, otherwise 'variable = level'."""
    return str(level) if short else f"{variable} = {level}"
