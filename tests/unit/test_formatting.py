"""
🧪 Unit Tests for Formatting Utilities
File: tests/unit/test_formatting.py

Tests the functions in pubtable/formatting.py:
- format_number: sprintf / format / prettyNum handlers
- format_ci: confidence-interval strings from templates
- format_p_value: p-value strings, eps cut-off and stars
- significance_stars

Run with: pytest tests/unit/test_formatting.py -v
"""

import numpy as np
import pytest

from pubtable.exceptions import ConfigurationError, LengthMismatch
from pubtable.formatting import (
    format_ci,
    format_level_label,
    format_number,
    format_p_value,
    significance_stars,
)

# Mark all tests as unit tests
pytestmark = pytest.mark.unit


# ============================================================================
# Tests for format_number
# ============================================================================


class TestFormatNumber:
    """Tests for the three number handlers."""

    def test_sprintf_fixed_decimals(self):
        assert format_number([1.234, 0.5, 10], digits=2, handler="sprintf") == ["1.23", "0.50", "10.00"]

    def test_infinite_and_missing(self):
        assert format_number([np.inf, -np.inf, np.nan], digits=2, handler="sprintf", na_string="NA") == [
            "Inf", "-Inf", "NA",
        ]

    def test_format_uses_common_decimals(self):
        """
        Given values of different magnitude
        When formatted with significant digits
        Then all share the decimals needed by the smallest
        """
        assert format_number([0.0123, 1.5], digits=2, handler="format") == ["0.012", "1.500"]

    def test_prettynum_thousands_separator(self):
        assert format_number([1234.5], digits=2, handler="prettyNum") == ["1,234.50"]

    def test_unknown_handler_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown number handler"):
            format_number([1.0], handler="roman")


# ============================================================================
# Tests for format_ci
# ============================================================================


class TestFormatCI:
    """Tests for interval rendering."""

    def test_default_template(self):
        assert format_ci([0.1, 1.0], [0.5, 1.0], format="[l;u]", digits=2, handler="sprintf",
                         degenerated="asis") == ["[0.10;0.50]", "[1.00;1.00]"]

    def test_degenerated_sentinel(self):
        """
        Given a pair with equal limits
        When a sentinel is requested
        Then only that pair is replaced
        """
        out = format_ci([0.1, 1.0], [0.5, 1.0], format="[l;u]", digits=2, handler="sprintf", degenerated="--")
        assert out == ["[0.10;0.50]", "--"]

    def test_upper_first_template(self):
        assert format_ci([0.1], [0.5], format="(u, l)", digits=2, handler="sprintf") == ["(0.50, 0.10)"]

    def test_only_first_placeholder_replaced(self):
        # the 'l' of "lower" and the 'u' of "upper" are the placeholders
        assert format_ci([1], [2], format="lower: l, upper: u", digits=1, handler="sprintf") == [
            "1.0ower: l, 2.0pper: u"
        ]

    def test_missing_limit_uses_na_string(self):
        assert format_ci([np.nan], [1.0], format="[l;u]", digits=2, handler="sprintf") == ["[NA;1.00]"]

    def test_estimate_prefix(self):
        out = format_ci([1.0], [2.0], format="[l;u]", digits=2, handler="sprintf", x=[1.5], sep=" ")
        assert out == ["1.50 [1.00;2.00]"]

    def test_untrimmed_output_is_padded(self):
        out = format_ci([1, 10], [2, 20], format="[l;u]", digits=2, handler="sprintf", trim=False)
        assert out == ["[ 1.00; 2.00]", "[10.00;20.00]"]

    def test_length_mismatch(self):
        with pytest.raises(LengthMismatch) as exc:
            format_ci([1, 2], [3])
        assert exc.value.n_lower == 2
        assert exc.value.n_upper == 1

    def test_template_without_placeholders(self):
        with pytest.raises(ConfigurationError):
            format_ci([1], [2], format="[a;b]")

    def test_repeated_formatting_is_identical(self):
        """
        Given the same limits and the same options
        When formatted twice
        Then both results are equal
        """
        lower = [0.5, 1.0, np.nan, 1234.5]
        upper = [2.25, 1.0, 3.0, 5678.9]
        kwargs = dict(format="(l, u)", digits=3, handler="prettyNum", degenerated="--", trim=False)
        first = format_ci(lower, upper, **kwargs)
        second = format_ci(list(lower), list(upper), **kwargs)
        assert first == second
        assert format_ci(lower, upper) == format_ci(lower, upper)


# ============================================================================
# Tests for p-values
# ============================================================================


class TestFormatPValue:
    """Tests for P-value formatting function."""

    @pytest.mark.parametrize(
        "p,expected",
        [
            (0.00001, "<0.0001"),
            (0.0312, "0.0312"),
            (0.5, "0.5000"),
            (1.0, "1.0000"),
        ],
    )
    def test_fixed_decimals_and_eps(self, p, expected):
        assert format_p_value(p, digits=4, eps=0.0001, stars=False) == expected

    def test_digits_override(self):
        assert format_p_value(0.0312, digits=2, eps=0.001, stars=False) == "0.03"

    def test_missing_p_value(self):
        assert format_p_value(np.nan, na_string="NA") == "NA"
        assert format_p_value(None, na_string="--") == "--"

    @pytest.mark.parametrize(
        "p,expected",
        [(0.0005, "***"), (0.005, "**"), (0.03, "*"), (0.07, "."), (0.5, "")],
    )
    def test_stars(self, p, expected):
        assert significance_stars(p) == expected
        assert format_p_value(p, stars=True) == expected


def test_format_level_label():
    assert format_level_label("sex", "male", short=True) == "male"
    assert format_level_label("sex", "male", short=False) == "sex = male"
