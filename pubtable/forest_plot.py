"""
📈 Forest plots of regression tables.

One row per table row: label column, estimate with interval, p-value
column, and the marker/interval panel with a reference line at 1 for
ratio scales (odds, hazard, rate ratios), 0 for linear coefficients
and 50 for the probability index.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from logger import get_logger
from pubtable.formatting import format_p_value, significance_stars
from pubtable.regression_table import RegressionTable

logger = get_logger(__name__)

COLORS = {
    "primary": "#1E3A5F",
    "text": "#374151",
    "text_secondary": "#6B7280",
    "border": "#E5E7EB",
    "danger": "#E74856",
}


def reference_value(table: RegressionTable) -> float:
    """Value of no effect on the table's estimate scale."""
    if table.probindex:
        return 50.0
    return 1.0 if table.family.ratio_scale else 0.0


def _row_labels(frame: pd.DataFrame) -> list[str]:
    """'sex: male' style labels; continuation rows inherit the variable."""
    labels, current = [], ""
    for variable, units in zip(frame["Variable"], frame["Units"]):
        if variable:
            current = variable
        labels.append(f"{current}: {units}" if units else current)
    return labels


class ForestPlot:
    """
    Interactive forest plot of a RegressionTable.

    Rows without a finite estimate are left out. With `show_reference_rows`
    the synthetic reference rows of factors are drawn as plain markers.
    """

    def __init__(self, table: RegressionTable, show_reference_rows: bool = False):
        frame = table.to_frame()
        if frame.empty:
            raise ValueError("Regression table has no rows to plot")

        self.table = table
        self.estimate_col = table.estimate_label
        frame = frame.assign(Label=_row_labels(frame))

        if not show_reference_rows:
            keep = np.ones(len(frame), dtype=bool)
            start = 0
            for block in table.blocks:
                if block.reference_row:
                    keep[start] = False
                start += len(block)
            frame = frame[keep].copy()

        numeric_cols = [self.estimate_col, "Lower", "Upper"]
        for col in numeric_cols:
            frame[col] = pd.to_numeric(frame[col], errors="coerce")
        frame = frame.dropna(subset=[self.estimate_col])
        if frame.empty:
            raise ValueError("No finite estimates to plot")

        # first table row on top
        self.data = frame.iloc[::-1].reset_index(drop=True)
        self.ref_line = reference_value(table)
        logger.info(
            f"ForestPlot initialized: {len(self.data)} rows, "
            f"estimate range [{self.data[self.estimate_col].min():.3f}, {self.data[self.estimate_col].max():.3f}]"
        )

    def _ci_significant(self) -> np.ndarray:
        lower = self.data["Lower"].to_numpy(dtype=float)
        upper = self.data["Upper"].to_numpy(dtype=float)
        return (lower > self.ref_line) | (upper < self.ref_line)

    def get_summary_stats(self) -> dict[str, int | float]:
        p = self.data["Pvalue"].to_numpy(dtype=float)
        n_sig = int(np.nansum(p < 0.05))
        return {
            "n_variables": len(self.data),
            "median_est": float(self.data[self.estimate_col].median()),
            "min_est": float(self.data[self.estimate_col].min()),
            "max_est": float(self.data[self.estimate_col].max()),
            "n_significant": n_sig,
            "pct_significant": 100 * n_sig / len(self.data),
            "n_ci_significant": int(self._ci_significant().sum()),
        }

    def _use_log_scale(self) -> bool:
        if not self.table.family.ratio_scale or self.table.probindex:
            return False
        est = self.data[self.estimate_col]
        finite = est[np.isfinite(est)]
        return bool(not finite.empty and finite.min() > 0 and finite.max() / finite.min() > 5)

    def create(
        self,
        title: str | None = None,
        x_label: str | None = None,
        show_ref_line: bool = True,
        show_sig_stars: bool = True,
        digits: int = 2,
        height: int | None = None,
        color: str | None = None,
    ) -> go.Figure:
        """Build the plotly figure."""
        data = self.data
        color = color or COLORS["primary"]
        title = title or self.table.model_label
        ci_level = round(100 * (1 - self.table.alpha))
        x_label = x_label or f"{self.estimate_col} ({ci_level:g}% CI)"

        def _num(x: float) -> str:
            return f"{x:.{digits}f}" if np.isfinite(x) else "Inf"

        display_est = [
            f"{_num(e)} ({_num(lo)}; {_num(hi)})"
            for e, lo, hi in zip(data[self.estimate_col], data["Lower"], data["Upper"])
        ]
        display_p = [format_p_value(p) if pd.notna(p) else "" for p in data["Pvalue"]]
        p_colors = [COLORS["danger"] if pd.notna(p) and p < 0.05 else COLORS["text"] for p in data["Pvalue"]]
        labels = list(data["Label"])
        if show_sig_stars:
            labels = [f"{lab} {significance_stars(p)}".rstrip() for lab, p in zip(labels, data["Pvalue"])]

        fig = make_subplots(
            rows=1, cols=4,
            shared_yaxes=True,
            horizontal_spacing=0.02,
            column_widths=[0.25, 0.20, 0.10, 0.45],
            specs=[[{"type": "scatter"} for _ in range(4)]],
        )
        y_pos = list(range(len(data)))

        for col, text, position, font_color in (
            (1, labels, "middle right", COLORS["text"]),
            (2, display_est, "middle center", COLORS["text"]),
            (3, display_p, "middle center", p_colors),
        ):
            fig.add_trace(go.Scatter(
                x=[0] * len(y_pos), y=y_pos, text=text,
                mode="text", textposition=position,
                textfont=dict(size=13, color=font_color),
                hoverinfo="none", showlegend=False,
            ), row=1, col=col)

        lower = data["Lower"].to_numpy(dtype=float)
        upper = data["Upper"].to_numpy(dtype=float)
        est = data[self.estimate_col].to_numpy(dtype=float)
        fig.add_trace(go.Scatter(
            x=est, y=y_pos,
            error_x=dict(
                type="data", symmetric=False,
                array=np.nan_to_num(upper - est), arrayminus=np.nan_to_num(est - lower),
                color="rgba(107, 114, 128, 0.5)", thickness=1.5, width=3,
            ),
            mode="markers",
            marker=dict(size=10, color=color, symbol="square", line=dict(width=1, color="white")),
            text=labels,
            customdata=np.stack((lower, upper), axis=-1),
            hovertemplate=(
                "<b>%{text}</b><br>Estimate: %{x:.3f}<br>"
                f"{ci_level:g}% CI: " "%{customdata[0]:.3f} - %{customdata[1]:.3f}<extra></extra>"
            ),
            showlegend=False,
        ), row=1, col=4)

        if show_ref_line:
            fig.add_vline(
                x=self.ref_line, line_dash="dash", line_color="rgba(220, 38, 38, 0.4)",
                line_width=1.5, annotation_text=f"Ref={self.ref_line:g}",
                annotation_position="top", row=1, col=4,
            )

        summary = self.get_summary_stats()
        summary_text = (
            f"N={summary['n_variables']}, Median={summary['median_est']:.2f}"
            f" | Significant: {summary['pct_significant']:.0f}%"
        )
        fig.update_layout(
            title=dict(
                text=f"<b>{title}</b><br><span style='font-size: 13px; color: {COLORS['text_secondary']};'>{summary_text}</span>",
                x=0.01, xanchor="left", font=dict(size=18),
            ),
            height=height or max(400, len(data) * 35 + 150),
            template="plotly_white", margin=dict(l=10, r=20, t=120, b=40),
        )
        for c in range(1, 4):
            fig.update_xaxes(visible=False, row=1, col=c)
            fig.update_yaxes(visible=False, row=1, col=c)
        fig.update_yaxes(visible=False, range=[-0.5, len(data) - 0.5], row=1, col=4)
        fig.update_xaxes(
            title_text=x_label, type="log" if self._use_log_scale() else "linear",
            row=1, col=4, gridcolor="#f3f4f6", zerolinecolor=COLORS["border"],
        )

        headers = ["Variable", f"Estimate ({ci_level:g}% CI)", "p-value", ""]
        for i, h in enumerate(headers, 1):
            if not h:
                continue
            fig.add_annotation(
                x=1.0 if i == 1 else 0.5, y=1.0,
                xref="x domain" if i == 1 else f"x{i} domain", yref="paper",
                text=f"<b>{h}</b>", showarrow=False, yanchor="bottom",
                font=dict(size=13, color=COLORS["text_secondary"]),
            )
        return fig


def create_forest_plot(table: RegressionTable, show_reference_rows: bool = False, **kwargs: Any) -> go.Figure:
    """Forest plot of a regression table; keyword arguments go to ForestPlot.create."""
    return ForestPlot(table, show_reference_rows=show_reference_rows).create(**kwargs)
