"""
Error taxonomy for table construction.

Every error aborts the table being built; nothing is recovered silently.
All classes also derive from ValueError so callers catching the usual
input errors keep working.
"""

from __future__ import annotations


class PubTableError(Exception):
    """Base class for errors raised while building a table."""


class ConfigurationError(PubTableError, ValueError):
    """Invalid option, unknown method name, or a model the builder cannot read."""


class InputShapeError(PubTableError, ValueError):
    """Parallel inputs disagree in shape or describe an unsupported structure."""


class DataError(PubTableError, ValueError):
    """Data required by the requested computation is absent."""


class UnknownIntervalMethod(ConfigurationError):
    def __init__(self, method: str, valid: list[str] | tuple[str, ...]):
        self.method = method
        super().__init__(f"Unknown confidence interval method '{method}'. Valid options: {list(valid)}")


class UnknownPValueMethod(ConfigurationError):
    def __init__(self, method: str, valid: list[str] | tuple[str, ...]):
        self.method = method
        super().__init__(f"Unknown p-value method '{method}'. Valid options: {list(valid)}")


class UnsupportedGroupCount(ConfigurationError):
    def __init__(self, group: str, n_groups: int, method: str = "logistic"):
        self.group = group
        self.n_groups = n_groups
        super().__init__(
            f"Group comparison '{method}' needs exactly 2 levels of '{group}', found {n_groups}"
        )


class NoIntercept(ConfigurationError):
    def __init__(self, first_coefficient: str | None = None):
        self.first_coefficient = first_coefficient
        super().__init__(
            "Model needs an intercept as its first coefficient"
            + (f" (first coefficient is '{first_coefficient}')" if first_coefficient else "")
        )


class FormulaUnavailable(ConfigurationError):
    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(
            f"Cannot recover a formula or term structure from {model_name}; "
            "fit the model with the formula interface (e.g. smf.ols, smf.glm, smf.phreg)"
        )


class LengthMismatch(InputShapeError):
    def __init__(self, n_lower: int, n_upper: int):
        self.n_lower = n_lower
        self.n_upper = n_upper
        super().__init__(f"lower and upper differ in length: {n_lower} != {n_upper}")


class UnsupportedInteraction(InputShapeError):
    def __init__(self, term: str, variable: str):
        self.term = term
        self.variable = variable
        super().__init__(
            f"Interaction '{term}' involves ordered factor '{variable}'; "
            "interactions with ordered factors are not supported"
        )


class AmbiguousOutcome(DataError):
    def __init__(self, method: str = "cox", detail: str = ""):
        self.method = method
        super().__init__(
            f"Group comparison '{method}' needs an outcome with 'time' and 'status' columns"
            + (f": {detail}" if detail else "")
        )
