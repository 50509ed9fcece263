from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Polygon

from arealprev.logging_setup import setup_logging
from arealprev.paths import ROOT, resolve
from arealprev.utils_geo import normalise_polygons, polygons_in_unit_order, to_2d
from arealprev.utils_time import date_to_iso_week, time_steps, week_label


def test_time_steps_sorted_and_distinct():
    dates = pd.Series(pd.to_datetime(["2021-01-11", "2021-01-04", "2021-01-11", None]), name="date")
    steps = time_steps(dates)
    assert steps["date"].dt.strftime("%Y-%m-%d").tolist() == ["2021-01-04", "2021-01-11"]
    assert steps["time_step"].tolist() == [1, 2]


def test_iso_week_helpers():
    assert date_to_iso_week(dt.date(2021, 1, 4)) == (2021, 1)
    assert week_label("2021-02-15") == "2021-W07"
    # 1 January 2021 still belongs to the last ISO week of 2020
    assert week_label(dt.date(2021, 1, 1)) == "2020-W53"


def test_to_2d_drops_z():
    poly = Polygon([(0, 0, 5), (1, 0, 5), (1, 1, 5)])
    assert poly.has_z
    assert not to_2d(poly).has_z
    flat = Polygon([(0, 0), (1, 0), (1, 1)])
    assert to_2d(flat) is flat


def test_normalise_keeps_projected_crs_meaning(strip_polygons):
    projected = strip_polygons.to_crs("EPSG:3414")
    back = normalise_polygons(projected)
    assert back.crs == "EPSG:4326"
    assert back.total_bounds == pytest.approx(strip_polygons.total_bounds, abs=1e-6)


def test_normalise_assumes_crs_when_missing(strip_polygons):
    bare = gpd.GeoDataFrame({"unit": strip_polygons["unit"]}, geometry=list(strip_polygons.geometry))
    assert bare.crs is None
    assert normalise_polygons(bare).crs == "EPSG:4326"


def test_polygons_in_unit_order(strip_polygons):
    ordered = polygons_in_unit_order(strip_polygons, ["P4", "P1"])
    assert ordered["unit"].tolist() == ["P4", "P1"]
    dup = pd.concat([strip_polygons, strip_polygons.iloc[:1]], ignore_index=True)
    with pytest.raises(ValueError, match="Duplicate"):
        polygons_in_unit_order(dup)
    with pytest.raises(ValueError, match="column"):
        polygons_in_unit_order(strip_polygons, unit_col="code")


def test_resolve():
    assert resolve("data/raw") == ROOT / "data" / "raw"
    assert resolve("/tmp/x") == Path("/tmp/x")


def test_setup_logging_quietens_plotting_libraries():
    setup_logging(logging.DEBUG)
    assert logging.getLogger("matplotlib").level == logging.WARNING
