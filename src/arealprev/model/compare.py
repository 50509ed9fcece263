"""Compare predictions from two models on the same unit-week grid."""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from ..build.align import DataIntegrityError

logger = logging.getLogger(__name__)


def merge_predictions(
    left: pd.DataFrame,
    right: pd.DataFrame,
    *,
    on: Sequence[str] = ("unit", "date"),
    suffixes: Tuple[str, str] = ("_a", "_b"),
) -> pd.DataFrame:
    """Inner-join two prediction tables on their composite key.

    Keys present in only one table are dropped, so disjoint unit sets give
    an empty frame.  Duplicate keys in either table raise
    :class:`DataIntegrityError` instead of silently multiplying rows.
    """
    keys = list(on)
    for label, df in (("left", left), ("right", right)):
        missing = [k for k in keys if k not in df.columns]
        if missing:
            raise DataIntegrityError(f"{label} prediction table lacks key columns {missing}")
        if df.duplicated(subset=keys).any():
            raise DataIntegrityError(f"{label} prediction table has duplicate {keys} keys")

    merged = left.merge(right, on=keys, how="inner", suffixes=suffixes, validate="one_to_one")
    logger.info("merged predictions: %d × %d → %d rows", len(left), len(right), len(merged))
    return merged.reset_index(drop=True)


def unit_means(
    merged: pd.DataFrame,
    value_cols: Sequence[str],
    *,
    unit_col: str = "unit",
) -> pd.DataFrame:
    """Per-unit mean of each value column across time, one row per unit."""
    return (
        merged.groupby(unit_col, sort=True)[list(value_cols)]
              .mean()
              .reset_index()
    )


def agreement_metrics(merged: pd.DataFrame, col_a: str, col_b: str) -> dict:
    """Mean absolute difference, RMSE, Pearson correlation and R² between two prediction columns.

    Rows where either value is missing are ignored.  Metrics that are
    undefined for the remaining rows come back as NaN.
    """
    both = merged[[col_a, col_b]].dropna()
    out = {"n": int(len(both))}
    if both.empty:
        out.update(mae=float("nan"), rmse=float("nan"), pearson_r=float("nan"), r2=float("nan"))
        return out

    a = both[col_a].astype(float).to_numpy()
    b = both[col_b].astype(float).to_numpy()
    out["mae"] = float(mean_absolute_error(a, b))
    out["rmse"] = float(np.sqrt(mean_squared_error(a, b)))
    if len(both) < 2 or np.std(a) == 0 or np.std(b) == 0:
        out["pearson_r"] = float("nan")
        out["r2"] = float("nan")
    else:
        out["pearson_r"] = float(np.corrcoef(a, b)[0, 1])
        out["r2"] = float(r2_score(a, b))
    return out
