"""Build the binary neighbourhood matrix from areal-unit polygons."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import geopandas as gpd  # type: ignore[import]
import numpy as np

from ..utils_geo import normalise_polygons, polygons_in_unit_order

logger = logging.getLogger(__name__)

_PREDICATES = ("intersects", "touches")


def build_adjacency(
    polygons: gpd.GeoDataFrame,
    units: Optional[Sequence[str]] = None,
    *,
    unit_col: str = "unit",
    predicate: str = "intersects",
) -> np.ndarray:
    """Return a symmetric n×n 0/1 matrix; entry (i, j) is 1 iff units i and j share a border.

    Rows follow ``units`` (normally the roster order used by the aligned
    table) or the polygon order when ``units`` is omitted.  ``intersects``
    counts a single shared vertex as a border (queen contiguity) and
    tolerates the slight overlaps common in digitised boundaries;
    ``touches`` requires the interiors to be disjoint.  The diagonal is
    always zero.
    """
    if predicate not in _PREDICATES:
        raise ValueError(f"predicate must be one of {_PREDICATES}, got {predicate!r}")

    gdf = polygons_in_unit_order(normalise_polygons(polygons), units, unit_col=unit_col)
    n = len(gdf)
    shapes = gdf[["geometry"]]

    pairs = gpd.sjoin(shapes, shapes, how="inner", predicate=predicate)
    left = pairs.index.to_numpy()
    right = pairs["index_right"].to_numpy()
    keep = left != right

    W = np.zeros((n, n), dtype=int)
    W[left[keep], right[keep]] = 1
    # spatial predicates are symmetric in theory, not always in floating point
    W = np.maximum(W, W.T)

    logger.info("adjacency: %d units, %d neighbour pairs", n, int(W.sum() // 2))
    return W


def island_units(W: np.ndarray, units: Sequence[str]) -> List[str]:
    """Units with no neighbours at all."""
    if W.shape[0] != len(units):
        raise ValueError(f"Matrix has {W.shape[0]} rows but {len(units)} units were given")
    return [u for u, deg in zip(units, W.sum(axis=1)) if deg == 0]
