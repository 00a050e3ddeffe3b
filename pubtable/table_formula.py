"""
Parser for descriptive-table formulas.

    "treatment ~ age + Q(bmi) + F(stage) + sex"

The left side names the optional grouping column. Right-side terms are column
names, optionally wrapped in a special that forces their treatment:

- F(), factor(), Factor(), strata(), Strata(): categorical
- S(), Cont(): continuous
- Q(), nonpar(): continuous, shown with the quantile format

A lone "." stands for every column not otherwise mentioned. Column names
that are not identifiers can be written in backticks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import pandas as pd

from logger import get_logger
from pubtable.exceptions import ConfigurationError

logger = get_logger(__name__)

SPECIALS = {
    "F": "factor",
    "factor": "factor",
    "Factor": "factor",
    "strata": "factor",
    "Strata": "factor",
    "S": "numeric",
    "Cont": "numeric",
    "Q": "Q",
    "nonpar": "Q",
}
NA_ACTIONS = ("pass", "omit")

_SPECIAL_CALL = re.compile(r"^([A-Za-z_][A-Za-z0-9_.]*)\((.*)\)$", re.S)


@dataclass(frozen=True)
class TableFormula:
    group: str | None
    variables: tuple[str, ...]
    forced: dict[str, str]  # variable -> 'factor' | 'numeric' | 'Q'
    frame: pd.DataFrame


def _split_top_level(text: str, sep: str = "+") -> list[str]:
    parts, depth, current, in_tick = [], 0, [], False
    for ch in text:
        if ch == "`":
            in_tick = not in_tick
        elif not in_tick and ch == "(":
            depth += 1
        elif not in_tick and ch == ")":
            depth -= 1
        if ch == sep and depth == 0 and not in_tick:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _column_name(token: str) -> str:
    token = token.strip()
    if len(token) > 1 and token.startswith("`") and token.endswith("`"):
        return token[1:-1]
    return token


def _parse_term(term: str) -> tuple[str, str | None]:
    """Return (column, forced kind) for one right-hand term."""
    match = _SPECIAL_CALL.match(term)
    if match and match.group(1) in SPECIALS:
        # extra arguments such as S(age, format=...) are ignored
        argument = _split_top_level(match.group(2), sep=",")[0]
        return _column_name(argument), SPECIALS[match.group(1)]
    return _column_name(term), None


def parse_table_formula(formula: str, data: pd.DataFrame, na_action: str = "pass") -> TableFormula:
    """
    Parse a table formula against `data`.

    `na_action` decides what happens to rows with missing values in the
    mentioned columns: "pass" keeps them (the tables count them as missing),
    "omit" drops them. It only affects the frame returned with this parse.

    Raises:
        ConfigurationError: on an empty right side, unknown columns, or an
        unknown `na_action`.
    """
    if na_action not in NA_ACTIONS:
        raise ConfigurationError(f"Unknown na_action '{na_action}'. Valid options: {list(NA_ACTIONS)}")

    lhs, tilde, rhs = formula.partition("~")
    if not tilde:
        lhs, rhs = "", formula
    group = _column_name(lhs) or None

    variables: list[str] = []
    forced: dict[str, str] = {}
    expand_dot = False
    for term in _split_top_level(rhs):
        if term == ".":
            expand_dot = True
            continue
        column, kind = _parse_term(term)
        if column not in variables:
            variables.append(column)
        if kind:
            forced[column] = kind

    if expand_dot:
        variables += [c for c in data.columns if c != group and c not in variables]

    if not variables:
        raise ConfigurationError(f"Formula '{formula}' has no variables on the right side")

    unknown = [c for c in ([group] if group else []) + variables if c not in data.columns]
    if unknown:
        raise ConfigurationError(f"Columns not found in data: {unknown}")

    used = ([group] if group else []) + variables
    frame = data.loc[:, used]
    if na_action == "omit":
        before = len(frame)
        frame = frame.dropna()
        logger.debug(f"na_action='omit' dropped {before - len(frame)} of {before} rows")

    return TableFormula(group=group, variables=tuple(variables), forced=forced, frame=frame)
