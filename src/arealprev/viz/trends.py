"""Plot prevalence over time and agreement between two models.

:func:`plot_prevalence_trend` draws the weekly prevalence averaged over
areal units, with the inter-quartile range across units shaded, and
optionally overlays one or more fitted prevalence columns.
:func:`plot_prediction_agreement` scatters two models' predictions against
each other with the identity line for reference.

Both write a PNG when ``out`` is given and return its path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import matplotlib.pyplot as plt  # type: ignore[import]
import numpy as np  # type: ignore[import]
import pandas as pd  # type: ignore[import]
from pandas.api.types import is_datetime64_any_dtype  # type: ignore[import]

from arealprev.utils_time import week_label

logger = logging.getLogger(__name__)


def weekly_profile(table: pd.DataFrame, value_col: str, *, date_col: str = "date") -> pd.DataFrame:
    """Mean, lower and upper quartile of ``value_col`` across units for each date."""
    g = table.groupby(date_col, sort=True)[value_col]
    return pd.DataFrame({
        "mean": g.mean(),
        "q25": g.quantile(0.25),
        "q75": g.quantile(0.75),
    }).reset_index()


def plot_prevalence_trend(
    table: pd.DataFrame,
    out: Optional[Union[str, Path]] = None,
    *,
    value_col: str = "prevalence",
    fitted_cols: Sequence[str] = (),
    date_col: str = "date",
    title: str = "Weekly prevalence across areal units",
    dpi: int = 300,
) -> Optional[Path]:
    if value_col not in table.columns:
        raise ValueError(f"Column '{value_col}' not in table")
    prof = weekly_profile(table, value_col, date_col=date_col)

    fig, ax = plt.subplots(figsize=(9, 4))
    ax.fill_between(prof[date_col], prof["q25"], prof["q75"], alpha=0.25, label="IQR across units")
    ax.plot(prof[date_col], prof["mean"], marker="o", markersize=3, label=f"observed {value_col}")
    for col in fitted_cols:
        fp = weekly_profile(table, col, date_col=date_col)
        ax.plot(fp[date_col], fp["mean"], linestyle="--", label=col)
    ax.set_xlabel(date_col.replace("_", " ").capitalize())
    ax.set_ylabel(value_col.replace("_", " ").capitalize())
    if not prof.empty and is_datetime64_any_dtype(prof[date_col]):
        title = f"{title} ({week_label(prof[date_col].iloc[0])} to {week_label(prof[date_col].iloc[-1])})"
    ax.set_title(title)
    ax.grid(True, linewidth=0.3, linestyle=":")
    ax.legend(loc="best")
    fig.autofmt_xdate()
    return _finish(fig, out, dpi)


def plot_prediction_agreement(
    merged: pd.DataFrame,
    col_a: str,
    col_b: str,
    out: Optional[Union[str, Path]] = None,
    *,
    dpi: int = 300,
) -> Optional[Path]:
    both = merged[[col_a, col_b]].dropna()
    fig, ax = plt.subplots(figsize=(5, 5))
    ax.scatter(both[col_a], both[col_b], s=6, alpha=0.5)
    if not both.empty:
        lo = float(np.nanmin(both.to_numpy()))
        hi = float(np.nanmax(both.to_numpy()))
        ax.plot([lo, hi], [lo, hi], color="black", linewidth=0.8, linestyle="--")
    ax.set_xlabel(col_a)
    ax.set_ylabel(col_b)
    ax.set_title(f"{col_a} vs {col_b}")
    ax.grid(True, linewidth=0.3, linestyle=":")
    return _finish(fig, out, dpi)


def _finish(fig: plt.Figure, out: Optional[Union[str, Path]], dpi: int) -> Optional[Path]:
    if out is None:
        return None
    out = Path(out)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info("figure saved to %s", out)
    return out
