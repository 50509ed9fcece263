"""Geospatial utility functions"""

from typing import Optional, Sequence

import geopandas as gpd  # type: ignore[import]
from shapely import wkb  # type: ignore[import]
from shapely.geometry.base import BaseGeometry  # type: ignore[import]


def to_2d(geom: BaseGeometry) -> BaseGeometry:
    """Drop any Z coordinate by round-tripping through 2D WKB."""
    if geom is None or not geom.has_z:
        return geom
    return wkb.loads(wkb.dumps(geom, output_dimension=2))


def normalise_polygons(gdf: gpd.GeoDataFrame, crs: str = "EPSG:4326") -> gpd.GeoDataFrame:
    """Return a copy with 2D geometries in ``crs`` (assumed when missing)."""
    source_crs = gdf.crs
    gdf = gdf.copy()
    gdf["geometry"] = gpd.GeoSeries(gdf.geometry.apply(to_2d), index=gdf.index, crs=source_crs)
    gdf = gdf.set_geometry("geometry")
    if gdf.crs is None:
        gdf = gdf.set_crs(crs)
    elif gdf.crs != crs:
        gdf = gdf.to_crs(crs)
    return gdf


def polygons_in_unit_order(
    gdf: gpd.GeoDataFrame,
    units: Optional[Sequence[str]] = None,
    unit_col: str = "unit",
) -> gpd.GeoDataFrame:
    """Reorder polygons so row i belongs to ``units[i]``.

    Without ``units`` the frame is returned with a fresh index in its current
    order.  Raises ``ValueError`` if a unit has no polygon, or a unit has more
    than one.
    """
    if unit_col not in gdf.columns:
        raise ValueError(f"Polygon layer has no '{unit_col}' column. Columns found: {list(gdf.columns)}")
    if gdf[unit_col].duplicated().any():
        dupes = sorted(gdf.loc[gdf[unit_col].duplicated(), unit_col].astype(str).unique())
        raise ValueError(f"Duplicate polygons for units: {dupes}")
    if units is None:
        return gdf.reset_index(drop=True)

    indexed = gdf.set_index(unit_col, drop=False)
    missing = [u for u in units if u not in indexed.index]
    if missing:
        raise ValueError(f"No polygon for units: {missing}")
    return indexed.loc[list(units)].reset_index(drop=True)
