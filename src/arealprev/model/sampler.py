"""Call contract for the external spatio-temporal MCMC sampler.

The sampler itself is not part of this package.  Any callable with the
signature::

    sampler(*, formula, data, family, W, burnin, n_sample, thin, ar_order) -> Mapping

can be plugged in, for example a thin wrapper around an R bridge or a
PyMC model.  The returned mapping must provide

* ``samples``: parameter group -> array of retained posterior draws;
* ``fit``: goodness-of-fit scalars, at least two of them (e.g. DIC, WAIC);
* ``summary``: per-fixed-effect table, quantile columns ``2.5%``, ``50%``
  and ``97.5%`` among others;
* ``fitted`` (optional): posterior mean fitted counts, one per table row.

This module validates everything going into and coming out of that call,
and provides helpers for comparing model variants.
"""

from __future__ import annotations

import importlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import joblib
import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

QUANTILE_COLS = ("2.5%", "50%", "97.5%")
FAMILIES = ("poisson", "binomial", "gaussian")

Sampler = Callable[..., Mapping[str, Any]]


class SamplerContractError(RuntimeError):
    """The external sampler returned something that breaks the result contract."""


class SamplerControl(BaseModel):
    """Burn-in, chain length, thinning and autoregressive order."""

    model_config = ConfigDict(frozen=True)

    burnin: int = Field(ge=0)
    n_sample: int = Field(gt=0)
    thin: int = Field(default=1, ge=1)
    ar_order: int = Field(default=1, ge=1, le=2)

    @model_validator(mode="after")
    def _check_chain(self) -> "SamplerControl":
        if self.n_sample <= self.burnin:
            raise ValueError(f"n_sample ({self.n_sample}) must exceed burnin ({self.burnin})")
        return self

    @property
    def n_kept(self) -> int:
        """Number of retained draws after burn-in and thinning."""
        return (self.n_sample - self.burnin) // self.thin


@dataclass
class SamplerResult:
    samples: Dict[str, np.ndarray]
    fit: Dict[str, float]
    summary: pd.DataFrame
    fitted: Optional[np.ndarray] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], n_rows: Optional[int] = None) -> "SamplerResult":
        """Validate a raw sampler return value."""
        if not isinstance(raw, Mapping):
            raise SamplerContractError(f"Sampler must return a mapping, got {type(raw).__name__}")
        missing = [k for k in ("samples", "fit", "summary") if k not in raw]
        if missing:
            raise SamplerContractError(f"Sampler result is missing {missing}")

        samples = {str(k): np.asarray(v) for k, v in dict(raw["samples"]).items()}
        if not samples:
            raise SamplerContractError("Sampler returned no posterior samples")

        fit: Dict[str, float] = {}
        for k, v in dict(raw["fit"]).items():
            try:
                fit[str(k)] = float(v)
            except (TypeError, ValueError) as e:
                raise SamplerContractError(f"Fit statistic {k!r} is not a scalar: {v!r}") from e
        if len(fit) < 2:
            raise SamplerContractError(f"Expected at least two fit statistics, got {sorted(fit)}")

        summary = pd.DataFrame(raw["summary"])
        absent = [c for c in QUANTILE_COLS if c not in summary.columns]
        if absent:
            raise SamplerContractError(f"Summary table lacks quantile columns {absent}")

        fitted = raw.get("fitted")
        if fitted is not None:
            fitted = np.asarray(fitted, dtype=float).ravel()
            if n_rows is not None and len(fitted) != n_rows:
                raise SamplerContractError(f"Got {len(fitted)} fitted values for {n_rows} table rows")

        meta = {k: v for k, v in raw.items() if k not in {"samples", "fit", "summary", "fitted"}}
        return cls(samples=samples, fit=fit, summary=summary, fitted=fitted, meta=meta)


_OFFSET = re.compile(r"^offset\(\s*(?:log\(\s*(\w+)\s*\)|(\w+))\s*\)$")


def parse_formula(formula: str) -> Dict[str, Any]:
    """Split ``"y ~ offset(log(pop)) + x1 + x2"`` into its variable names.

    Returns a dict with ``response``, ``offset`` (or None) and ``covariates``.
    Only plain additive terms are recognised.
    """
    if formula.count("~") != 1:
        raise ValueError(f"Formula must contain exactly one '~': {formula!r}")
    lhs, rhs = (s.strip() for s in formula.split("~"))
    if not re.fullmatch(r"\w+", lhs):
        raise ValueError(f"Response must be a single column name, got {lhs!r}")

    offset: Optional[str] = None
    covariates: List[str] = []
    for term in (t.strip() for t in rhs.split("+")):
        if not term or term == "1":
            continue
        m = _OFFSET.match(term)
        if m:
            offset = m.group(1) or m.group(2)
        elif re.fullmatch(r"\w+", term):
            covariates.append(term)
        else:
            raise ValueError(f"Unsupported formula term {term!r}")
    return {"response": lhs, "offset": offset, "covariates": covariates}


def check_weight_matrix(W: np.ndarray) -> np.ndarray:
    W = np.asarray(W)
    if W.ndim != 2 or W.shape[0] != W.shape[1]:
        raise ValueError(f"Weight matrix must be square, got shape {W.shape}")
    if not np.isin(W, (0, 1)).all():
        raise ValueError("Weight matrix must be binary (0/1)")
    if not np.array_equal(W, W.T):
        raise ValueError("Weight matrix must be symmetric")
    if np.any(np.diag(W) != 0):
        raise ValueError("Weight matrix must have a zero diagonal")
    return W


def check_table_layout(
    table: pd.DataFrame,
    n_units: int,
    *,
    unit_col: str = "unit",
    units: Optional[Sequence[str]] = None,
) -> int:
    """Verify ``table`` is week-major with the same unit order in every week.

    When ``units`` (the row labels of the weight matrix) is given, the unit
    order within each week must match it.  Returns the number of time steps.
    """
    if units is not None and len(units) != n_units:
        raise ValueError(f"{len(units)} unit labels for a weight matrix with {n_units} rows")
    if "time_step" not in table.columns:
        raise ValueError("Table has no 'time_step' column; build it with align_dataset")
    if n_units == 0 or len(table) % n_units:
        raise ValueError(f"Table has {len(table)} rows, not a multiple of {n_units} units")
    n_steps = len(table) // n_units

    steps = table["time_step"].to_numpy().reshape(n_steps, n_units)
    if not (steps == steps[:, :1]).all() or not (np.diff(steps[:, 0]) > 0).all():
        raise ValueError("Table rows must be ordered by time step first, then unit")
    units_arr = table[unit_col].to_numpy().reshape(n_steps, n_units)
    if not (units_arr == units_arr[:1, :]).all():
        raise ValueError("Unit order must be identical within every time step")
    if units is not None and units_arr[0].tolist() != list(units):
        raise ValueError("Unit order in the table does not match the weight matrix rows")
    return n_steps


def fit_model(
    formula: str,
    table: pd.DataFrame,
    W: np.ndarray,
    control: SamplerControl,
    *,
    family: str = "poisson",
    sampler: Sampler,
    unit_col: str = "unit",
    units: Optional[Sequence[str]] = None,
) -> SamplerResult:
    """Validate inputs, run the external sampler and validate its output.

    ``units`` labels the rows of ``W``; when given, the table's unit order
    is checked against it.
    """
    if family not in FAMILIES:
        raise ValueError(f"family must be one of {FAMILIES}, got {family!r}")
    W = check_weight_matrix(W)
    n_steps = check_table_layout(table, W.shape[0], unit_col=unit_col, units=units)

    terms = parse_formula(formula)
    needed = [terms["response"], *terms["covariates"]] + ([terms["offset"]] if terms["offset"] else [])
    missing = [c for c in needed if c not in table.columns]
    if missing:
        raise ValueError(f"Formula refers to columns not in the table: {missing}")
    if control.n_kept < 1:
        raise ValueError("Sampler settings retain no posterior draws")

    logger.info(
        "sampling %s (%s, AR(%d)) on %d units × %d steps: burnin=%d n_sample=%d thin=%d",
        formula, family, control.ar_order, W.shape[0], n_steps,
        control.burnin, control.n_sample, control.thin,
    )
    raw = sampler(
        formula=formula,
        data=table,
        family=family,
        W=W,
        burnin=control.burnin,
        n_sample=control.n_sample,
        thin=control.thin,
        ar_order=control.ar_order,
    )
    result = SamplerResult.from_mapping(raw, n_rows=len(table))
    result.meta.setdefault("formula", formula)
    result.meta.setdefault("family", family)
    result.meta.setdefault("control", control.model_dump())
    logger.info("sampler finished: %s", {k: round(v, 2) for k, v in result.fit.items()})
    return result


def load_sampler(entry_point: str) -> Sampler:
    """Resolve ``"package.module:function"`` to the sampler callable."""
    module_name, sep, attr = entry_point.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Sampler entry point must look like 'module:function', got {entry_point!r}")
    module = importlib.import_module(module_name)
    fn = getattr(module, attr, None)
    if not callable(fn):
        raise ValueError(f"{entry_point!r} does not name a callable")
    return fn


def compare_fits(results: Mapping[str, SamplerResult]) -> pd.DataFrame:
    """One row per model variant, one column per fit statistic."""
    rows = {label: res.fit for label, res in results.items()}
    return pd.DataFrame.from_dict(rows, orient="index").rename_axis("model")


def relative_risks(
    summary: pd.DataFrame,
    table: pd.DataFrame,
    covariates: Sequence[str],
    *,
    unit_col: str = "unit",
) -> pd.DataFrame:
    """Relative risk of a one standard deviation increase in each covariate.

    The standard deviation is taken over units (first row per unit) since
    covariates are time invariant.
    """
    absent = [c for c in covariates if c not in summary.index]
    if absent:
        raise ValueError(f"Summary has no rows for covariates {absent}")
    per_unit = table.drop_duplicates(subset=unit_col) if unit_col in table.columns else table
    sd = per_unit[list(covariates)].std()
    q = summary.loc[list(covariates), list(QUANTILE_COLS)].astype(float)
    rr = np.exp(q.mul(sd, axis=0))
    rr.insert(0, "sd", sd)
    return rr


def prediction_table(
    table: pd.DataFrame,
    result: SamplerResult,
    *,
    unit_col: str = "unit",
    date_col: str = "date",
    population_col: str = "population",
    name: str = "fitted",
) -> pd.DataFrame:
    """Pair fitted counts with their (unit, date) key; adds fitted prevalence."""
    if result.fitted is None:
        raise ValueError("Sampler result carries no fitted values")
    if len(result.fitted) != len(table):
        raise ValueError(f"{len(result.fitted)} fitted values for {len(table)} rows")
    out = table[[unit_col, date_col]].copy()
    out[name] = result.fitted
    pop = table[population_col].astype(float)
    out[f"{name}_prevalence"] = np.where(pop > 0, result.fitted / pop.where(pop > 0), np.nan)
    return out.reset_index(drop=True)


def save_result(result: SamplerResult, out: str | Path) -> Path:
    out = Path(out)
    out.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(result, out)
    logger.info("sampler result → %s", out)
    return out


def load_result(path: str | Path) -> SamplerResult:
    result = joblib.load(path)
    if not isinstance(result, SamplerResult):
        raise SamplerContractError(f"{path} does not hold a SamplerResult")
    return result
