# src/arealprev/build/align.py
"""Align sparse weekly case observations onto the full unit × week grid.

The external sampler expects one row per (unit, week) with all units for
the first week, then all units for the second week, and so on.  This
module builds that table from three inputs:

* observations: sparse ``unit, date, cases[, population]`` records;
* roster: one row per areal unit with its population;
* covariates: optional time-invariant per-unit covariates.

Population gaps are filled from the roster through an indexed lookup and
prevalence / log-prevalence are derived where they are defined.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.api.types import is_datetime64_any_dtype, is_numeric_dtype

from ..utils_time import time_steps

logger = logging.getLogger(__name__)


class DataIntegrityError(ValueError):
    """A join key in one table is missing from a required lookup table."""


def _require_columns(df: pd.DataFrame, cols: Iterable[str], what: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise DataIntegrityError(f"{what} is missing required columns {missing}. Columns found: {list(df.columns)}")


def _check_unique(df: pd.DataFrame, keys: List[str], what: str) -> None:
    dup = df.duplicated(subset=keys, keep=False)
    if dup.any():
        examples = df.loc[dup, keys].drop_duplicates().head(5).to_dict("records")
        raise DataIntegrityError(f"{what} has duplicate keys on {keys}, e.g. {examples}")


def _period_keys(values: pd.Series, parse_dates: Optional[bool], what: str) -> pd.Series:
    """Return period keys, parsed to datetimes unless they are already sortable."""
    if parse_dates is None:
        parse_dates = not (is_numeric_dtype(values) or is_datetime64_any_dtype(values))
    if not parse_dates:
        return values
    try:
        return pd.to_datetime(values)
    except (TypeError, ValueError) as e:
        raise DataIntegrityError(
            f"Could not parse {what} as dates; pass parse_dates=False for period labels such as '2021-W01'"
        ) from e


def align_dataset(
    observations: pd.DataFrame,
    roster: pd.DataFrame,
    covariates: Optional[pd.DataFrame] = None,
    dates: Optional[Sequence] = None,
    *,
    parse_dates: Optional[bool] = None,
    unit_col: str = "unit",
    date_col: str = "date",
    cases_col: str = "cases",
    population_col: str = "population",
) -> pd.DataFrame:
    """Build the aligned unit × week table.

    Parameters
    ----------
    observations : DataFrame
        Sparse observations with ``unit_col``, ``date_col`` and ``cases_col``.
        ``population_col`` is optional; where present it wins over the roster.
    roster : DataFrame
        Every areal unit exactly once with its population.  Its row order
        fixes the unit order within each week.
    covariates : DataFrame, optional
        Time-invariant covariates keyed by ``unit_col``.
    dates : sequence, optional
        The full set of periods.  Defaults to the distinct dates present in
        ``observations``; pass it when some weeks have no observations at all.
    parse_dates : bool, optional
        Whether to parse period keys with :func:`pandas.to_datetime`.  By
        default integer and datetime keys are used as they are and anything
        else is parsed; ``False`` keeps string labels as they are.

    Returns
    -------
    DataFrame
        ``n_units * n_weeks`` rows ordered week-major, unit-minor, with a
        ``time_step`` column (1..T), the joined observation and covariate
        columns, a fully populated population column and ``prevalence`` /
        ``log_prevalence``.

    Raises
    ------
    DataIntegrityError
        If an observation has no unit or refers to a unit missing from the
        roster, a roster unit has no population, period keys cannot be
        parsed, or any input has duplicate keys.
    """
    _require_columns(observations, [unit_col, date_col, cases_col], "observations")
    _require_columns(roster, [unit_col, population_col], "roster")
    _check_unique(roster, [unit_col], "roster")

    n_null = int(observations[unit_col].isna().sum())
    if n_null:
        raise DataIntegrityError(f"{n_null} observations have no unit and cannot be matched to the population roster")

    unknown = sorted(set(observations[unit_col]) - set(roster[unit_col]))
    if unknown:
        raise DataIntegrityError(f"Units present in observations but absent from the population roster: {unknown}")

    pop_lookup = roster.set_index(unit_col)[population_col]
    if pop_lookup.isna().any():
        raise DataIntegrityError(
            f"Roster has no population for units: {sorted(pop_lookup[pop_lookup.isna()].index.astype(str))}"
        )

    obs = observations.copy()
    obs[date_col] = _period_keys(obs[date_col], parse_dates, f"observation column '{date_col}'")
    _check_unique(obs, [unit_col, date_col], "observations")
    if population_col not in obs.columns:
        obs[population_col] = np.nan

    # dense grid: week-major, unit-minor, units in roster order
    if dates is None:
        periods = obs[date_col]
    else:
        periods = _period_keys(pd.Series(list(dates), name=date_col), parse_dates, "the given periods")
        outside = sorted(set(obs[date_col].dropna()) - set(periods))
        if outside:
            raise DataIntegrityError(f"Observation dates outside the given periods: {[str(d) for d in outside]}")
    weeks = time_steps(periods.rename(date_col))
    units = roster[[unit_col]].reset_index(drop=True)
    grid = weeks.merge(units, how="cross")

    grid = grid.merge(obs, on=[unit_col, date_col], how="left")

    if covariates is not None:
        _require_columns(covariates, [unit_col], "covariates")
        _check_unique(covariates, [unit_col], "covariates")
        clash = [c for c in covariates.columns if c != unit_col and c in grid.columns]
        if clash:
            raise DataIntegrityError(f"Covariate columns collide with observation columns: {clash}")
        grid = grid.merge(covariates, on=unit_col, how="left")

    grid[population_col] = grid[population_col].fillna(grid[unit_col].map(pop_lookup))

    cases = grid[cases_col].astype("float64")
    pop = grid[population_col].astype("float64")
    ok = cases.notna() & pop.notna() & (pop > 0)
    prevalence = pd.Series(np.nan, index=grid.index, dtype="float64")
    prevalence[ok] = cases[ok] / pop[ok]
    grid["prevalence"] = prevalence

    positive = prevalence > 0
    log_prev = pd.Series(np.nan, index=grid.index, dtype="float64")
    log_prev[positive] = np.log(prevalence[positive])
    grid["log_prevalence"] = log_prev

    lead = ["time_step", date_col, unit_col]
    grid = grid[lead + [c for c in grid.columns if c not in lead]].reset_index(drop=True)

    logger.info(
        "aligned %d units × %d weeks → %d rows (%d with cases)",
        len(units), len(weeks), len(grid), int(grid[cases_col].notna().sum()),
    )
    return grid


def aligned_summary(
    table: pd.DataFrame,
    *,
    unit_col: str = "unit",
    cases_col: str = "cases",
    covariate_cols: Optional[Iterable[str]] = None,
) -> Dict[str, int]:
    """Counts describing an aligned table, for logs and CLI output."""
    out = {
        "n_units": int(table[unit_col].nunique()),
        "n_time_steps": int(table["time_step"].nunique()),
        "rows": int(len(table)),
        "rows_with_cases": int(table[cases_col].notna().sum()),
        "rows_with_prevalence": int(table["prevalence"].notna().sum()),
    }
    if covariate_cols:
        cols = list(covariate_cols)
        out["rows_missing_covariates"] = int(table[cols].isna().any(axis=1).sum())
    return out
