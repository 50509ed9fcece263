import matplotlib

matplotlib.use("Agg")

from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box


@pytest.fixture()
def roster():
    return pd.DataFrame({"unit": ["A", "B"], "population": [100, 200]})


@pytest.fixture()
def observations():
    return pd.DataFrame({
        "unit": ["A"],
        "date": ["2021-01-04"],
        "cases": [10],
        "population": [100],
    })


@pytest.fixture()
def two_weeks():
    return ["2021-01-04", "2021-01-11"]


@pytest.fixture()
def weekly_panel():
    """Three units over four weeks with gaps, zeros and a covariate table."""
    roster = pd.DataFrame({"unit": ["S01", "S02", "S03"], "population": [1000, 500, 2000]})
    obs = pd.DataFrame({
        "unit": ["S01", "S02", "S03", "S01", "S03", "S02", "S01"],
        "date": ["2021-03-01", "2021-03-01", "2021-03-01", "2021-03-08", "2021-03-15", "2021-03-22", "2021-03-22"],
        "cases": [5, 0, 12, 7, 3, 1, None],
    })
    covariates = pd.DataFrame({
        "unit": ["S01", "S02", "S03"],
        "deprivation": [0.2, 0.5, 0.9],
        "pct_over_65": [14.0, 22.5, 9.1],
    })
    return obs, roster, covariates


@pytest.fixture()
def strip_polygons():
    """Three squares in a row plus a detached fourth one.

    P1-P2 and P2-P3 share an edge, P1-P3 do not touch and P4 is an island.
    """
    size = 0.01
    x0, y0 = 103.80, 1.30
    geoms = [
        box(x0, y0, x0 + size, y0 + size),
        box(x0 + size, y0, x0 + 2 * size, y0 + size),
        box(x0 + 2 * size, y0, x0 + 3 * size, y0 + size),
        box(x0 + 10 * size, y0, x0 + 11 * size, y0 + size),
    ]
    return gpd.GeoDataFrame({"unit": ["P1", "P2", "P3", "P4"]}, geometry=geoms, crs="EPSG:4326")


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    d = tmp_path / "config"
    d.mkdir()
    (d / "config.default.yaml").write_text(
        "data:\n  raw_dir: data/raw\n  dataset: demo\n"
        "sampler:\n  burnin: 10\n  n_sample: 110\n  thin: 10\n"
        "viz:\n  palette: viridis\n",
        encoding="utf-8",
    )
    return d
