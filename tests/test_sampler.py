"""Sampler call contract: input validation, result validation and helpers."""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from pydantic import ValidationError

from arealprev.build.align import align_dataset
from arealprev.model.sampler import (
    SamplerContractError,
    SamplerControl,
    SamplerResult,
    check_table_layout,
    compare_fits,
    fit_model,
    load_result,
    load_sampler,
    parse_formula,
    prediction_table,
    relative_risks,
    save_result,
)

W3 = np.array([
    [0, 1, 0],
    [1, 0, 1],
    [0, 1, 0],
])


def _summary(params=("(Intercept)", "deprivation")):
    return pd.DataFrame(
        {"2.5%": [-0.5, 0.1], "50%": [0.0, 0.4], "97.5%": [0.5, 0.7], "n.effective": [900, 870]},
        index=list(params),
    )


def stub_sampler(*, formula, data, family, W, burnin, n_sample, thin, ar_order):
    kept = (n_sample - burnin) // thin
    return {
        "samples": {"beta": np.zeros((kept, 2)), "rho": np.full((kept, ar_order), 0.5)},
        "fit": {"DIC": 1234.5, "WAIC": 1240.1, "p.d": 55.0},
        "summary": _summary(),
        "fitted": data["population"].to_numpy() * 0.01,
        "calls": {"family": family, "n_rows": len(data)},
    }


@pytest.fixture()
def aligned(weekly_panel):
    obs, roster, covariates = weekly_panel
    return align_dataset(obs, roster, covariates)


@pytest.fixture()
def control():
    return SamplerControl(burnin=10, n_sample=110, thin=10, ar_order=2)


def test_control_validation():
    assert SamplerControl(burnin=0, n_sample=5).n_kept == 5
    with pytest.raises(ValidationError):
        SamplerControl(burnin=100, n_sample=100)
    with pytest.raises(ValidationError):
        SamplerControl(burnin=1, n_sample=10, thin=0)
    with pytest.raises(ValidationError):
        SamplerControl(burnin=1, n_sample=10, ar_order=3)


def test_parse_formula():
    terms = parse_formula("cases ~ offset(log(population)) + deprivation + pct_over_65")
    assert terms == {"response": "cases", "offset": "population", "covariates": ["deprivation", "pct_over_65"]}
    assert parse_formula("y ~ 1")["covariates"] == []
    with pytest.raises(ValueError):
        parse_formula("cases ~ x * z")
    with pytest.raises(ValueError):
        parse_formula("cases + x")


def test_fit_model_round_trip(aligned, control):
    res = fit_model(
        "cases ~ offset(log(population)) + deprivation",
        aligned, W3, control, sampler=stub_sampler,
    )
    assert res.fit["DIC"] == 1234.5
    assert res.samples["beta"].shape == (10, 2)
    assert res.samples["rho"].shape == (10, 2)
    assert res.meta["calls"] == {"family": "poisson", "n_rows": 12}
    assert res.meta["control"]["ar_order"] == 2
    assert len(res.fitted) == len(aligned)


def test_fit_rejects_misordered_table(aligned, control):
    shuffled = aligned.sort_values(["unit", "time_step"]).reset_index(drop=True)
    with pytest.raises(ValueError, match="ordered"):
        fit_model("cases ~ deprivation", shuffled, W3, control, sampler=stub_sampler)


def test_fit_checks_unit_order_against_matrix_rows(aligned, control):
    res = fit_model("cases ~ deprivation", aligned, W3, control, sampler=stub_sampler, units=["S01", "S02", "S03"])
    assert res.fit["DIC"] == 1234.5
    with pytest.raises(ValueError, match="weight matrix rows"):
        fit_model("cases ~ deprivation", aligned, W3, control, sampler=stub_sampler, units=["S03", "S01", "S02"])
    with pytest.raises(ValueError, match="unit labels"):
        check_table_layout(aligned, 3, units=["S01", "S02"])


def test_fit_rejects_row_count_mismatch(aligned, control):
    W2 = np.array([[0, 1], [1, 0]])
    with pytest.raises(ValueError, match="multiple"):
        fit_model("cases ~ deprivation", aligned.iloc[:-1], W2, control, sampler=stub_sampler)


@pytest.mark.parametrize("W", [
    np.array([[0, 1, 0], [0, 0, 1], [0, 1, 0]]),
    np.array([[1, 1, 0], [1, 0, 1], [0, 1, 0]]),
    np.array([[0, 2, 0], [2, 0, 1], [0, 1, 0]]),
    np.zeros((3, 2)),
])
def test_fit_rejects_bad_weight_matrix(aligned, control, W):
    with pytest.raises(ValueError):
        fit_model("cases ~ deprivation", aligned, W, control, sampler=stub_sampler)


def test_fit_rejects_unknown_formula_column(aligned, control):
    with pytest.raises(ValueError, match="no2"):
        fit_model("cases ~ no2", aligned, W3, control, sampler=stub_sampler)


def test_fit_rejects_unknown_family(aligned, control):
    with pytest.raises(ValueError, match="family"):
        fit_model("cases ~ deprivation", aligned, W3, control, family="negbin", sampler=stub_sampler)


@pytest.mark.parametrize("raw", [
    [1, 2, 3],
    {"samples": {"beta": [1]}, "fit": {"DIC": 1.0}, "summary": _summary()},
    {"samples": {}, "fit": {"DIC": 1.0, "WAIC": 2.0}, "summary": _summary()},
    {"samples": {"beta": [1]}, "fit": {"DIC": 1.0, "WAIC": 2.0}, "summary": pd.DataFrame({"mean": [1.0]})},
    {"samples": {"beta": [1]}, "fit": {"DIC": "n/a", "WAIC": 2.0}, "summary": _summary()},
])
def test_malformed_sampler_output(aligned, control, raw):
    with pytest.raises(SamplerContractError):
        fit_model("cases ~ deprivation", aligned, W3, control, sampler=lambda **kw: raw)


def test_fitted_length_checked(aligned, control):
    def short(**kw):
        out = stub_sampler(**kw)
        out["fitted"] = out["fitted"][:-1]
        return out

    with pytest.raises(SamplerContractError, match="fitted"):
        fit_model("cases ~ deprivation", aligned, W3, control, sampler=short)


def test_load_sampler():
    fn = load_sampler("arealprev.model.sampler:parse_formula")
    assert fn is parse_formula
    with pytest.raises(ValueError):
        load_sampler("no_colon_here")
    with pytest.raises(ValueError):
        load_sampler("arealprev.model.sampler:QUANTILE_COLS")


def test_compare_fits():
    a = SamplerResult(samples={"b": np.zeros(1)}, fit={"DIC": 10.0, "WAIC": 11.0}, summary=_summary())
    b = SamplerResult(samples={"b": np.zeros(1)}, fit={"DIC": 9.0, "WAIC": 12.0}, summary=_summary())
    table = compare_fits({"AR(1)": a, "AR(2)": b})
    assert table.index.tolist() == ["AR(1)", "AR(2)"]
    assert table.loc["AR(2)", "DIC"] == 9.0


def test_relative_risks(aligned):
    rr = relative_risks(_summary(), aligned, ["deprivation"])
    sd = pd.Series([0.2, 0.5, 0.9]).std()
    assert rr.loc["deprivation", "sd"] == pytest.approx(sd)
    assert rr.loc["deprivation", "50%"] == pytest.approx(np.exp(0.4 * sd))
    with pytest.raises(ValueError):
        relative_risks(_summary(), aligned, ["pct_over_65"])


def test_relative_risks_custom_unit_column(aligned):
    renamed = aligned.rename(columns={"unit": "iz"})
    rr = relative_risks(_summary(), renamed, ["deprivation"], unit_col="iz")
    assert rr.loc["deprivation", "sd"] == pytest.approx(pd.Series([0.2, 0.5, 0.9]).std())


def test_prediction_table(aligned, control):
    res = fit_model("cases ~ deprivation", aligned, W3, control, sampler=stub_sampler)
    pred = prediction_table(aligned, res)
    assert list(pred.columns) == ["unit", "date", "fitted", "fitted_prevalence"]
    assert len(pred) == len(aligned)
    np.testing.assert_allclose(pred["fitted_prevalence"], 0.01)


def test_save_and_load_result(tmp_path, aligned, control):
    res = fit_model("cases ~ deprivation", aligned, W3, control, sampler=stub_sampler)
    path = save_result(res, tmp_path / "fits" / "ar2.joblib")
    back = load_result(path)
    assert back.fit == res.fit
    np.testing.assert_array_equal(back.fitted, res.fitted)


def test_load_result_rejects_other_payloads(tmp_path):
    import joblib

    joblib.dump({"model": None}, tmp_path / "x.joblib")
    with pytest.raises(SamplerContractError):
        load_result(tmp_path / "x.joblib")
