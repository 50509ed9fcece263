"""Choropleth maps of per-unit values."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import geopandas as gpd  # type: ignore[import]
import matplotlib.pyplot as plt  # type: ignore[import]
import numpy as np  # type: ignore[import]
import pandas as pd  # type: ignore[import]
from matplotlib.colors import Normalize  # type: ignore[import]
from mpl_toolkits.axes_grid1.anchored_artists import AnchoredSizeBar  # type: ignore[import]

from arealprev.utils_geo import normalise_polygons

logger = logging.getLogger(__name__)


# --- helpers -----------------------------------------------------------------

def _nice_length(span: float) -> float:
    """Round ``span / 5`` down to 1, 2 or 5 times a power of ten."""
    target = span / 5.0
    if target <= 0:
        return 0.0
    exp = np.floor(np.log10(target))
    base = target / 10 ** exp
    step = 5 if base >= 5 else 2 if base >= 2 else 1
    return float(step * 10 ** exp)


def _add_scale_bar(ax: plt.Axes, gdf: gpd.GeoDataFrame) -> None:
    # gdf is in a projected CRS in metres
    minx, _, maxx, _ = gdf.total_bounds
    length = _nice_length(maxx - minx)
    if length <= 0:
        return
    label = f"{length / 1000:g} km" if length >= 1000 else f"{length:g} m"
    bar = AnchoredSizeBar(
        ax.transData, length, label, loc="lower left",
        pad=0.5, frameon=False, size_vertical=(maxx - minx) / 200,
    )
    ax.add_artist(bar)


def _plot_frame(gdf: gpd.GeoDataFrame, scale_bar: bool) -> gpd.GeoDataFrame:
    gdf = normalise_polygons(gdf)
    if scale_bar:
        gdf = gdf.to_crs(gdf.estimate_utm_crs())
    return gdf


def _values(values: Union[Sequence[float], pd.Series, np.ndarray], n: int) -> np.ndarray:
    vals = np.asarray(values, dtype=float)
    if vals.ndim != 1 or len(vals) != n:
        raise ValueError(f"Got {vals.size} values for {n} polygons; they must align one-to-one")
    return vals


def _save(fig: plt.Figure, out: Optional[Union[str, Path]], dpi: int) -> Optional[Path]:
    if out is None:
        return None
    out = Path(out)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info("map saved to %s", out)
    return out


# --- main --------------------------------------------------------------------

def render_map(
    polygons: gpd.GeoDataFrame,
    values: Union[Sequence[float], pd.Series, np.ndarray],
    *,
    palette: str = "YlOrRd",
    legend_title: str = "",
    scale_bar: bool = True,
    fill_opacity: float = 0.7,
    outline_color: str = "white",
    title: Optional[str] = None,
    out: Optional[Union[str, Path]] = None,
    dpi: int = 300,
    ax: Optional[plt.Axes] = None,
    norm: Optional[Normalize] = None,
) -> Optional[Path]:
    """Draw a choropleth of ``values`` over ``polygons``.

    ``values[i]`` colours ``polygons.iloc[i]``; missing values are drawn in
    light grey.  When ``out`` is given the figure is written there and
    closed, otherwise it is left open on ``ax`` (or a new axes).
    """
    if not 0.0 <= fill_opacity <= 1.0:
        raise ValueError(f"fill_opacity must be within [0, 1], got {fill_opacity}")
    vals = _values(values, len(polygons))

    gdf = _plot_frame(polygons[["geometry"]], scale_bar)
    gdf["value"] = vals

    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 8))
    else:
        fig = ax.figure

    gdf.plot(
        column="value",
        cmap=palette,
        norm=norm,
        alpha=fill_opacity,
        linewidth=0.5,
        edgecolor=outline_color,
        legend=True,
        legend_kwds={"label": legend_title, "shrink": 0.6},
        missing_kwds={"color": "lightgrey", "label": "No data"},
        ax=ax,
    )
    if scale_bar:
        _add_scale_bar(ax, gdf)
    ax.set_axis_off()
    if title:
        ax.set_title(title, fontsize=12)

    return _save(fig, out, dpi)


def render_comparison_maps(
    polygons: gpd.GeoDataFrame,
    means: pd.DataFrame,
    columns: Sequence[str],
    *,
    unit_col: str = "unit",
    titles: Optional[Sequence[str]] = None,
    out: Optional[Union[str, Path]] = None,
    **render_kwargs,
) -> Optional[Path]:
    """Side-by-side maps of several per-unit columns on one colour scale.

    ``means`` is keyed by ``unit_col`` (as produced by
    :func:`arealprev.model.compare.unit_means`); polygons without a row are
    shown as missing.
    """
    if unit_col not in polygons.columns:
        raise ValueError(f"Polygons have no '{unit_col}' column")
    lookup = means.set_index(unit_col)
    absent = [c for c in columns if c not in lookup.columns]
    if absent:
        raise ValueError(f"Columns {absent} not in the per-unit table")

    aligned = lookup.reindex(polygons[unit_col])
    finite = aligned[list(columns)].to_numpy(dtype=float)
    finite = finite[np.isfinite(finite)]
    norm = Normalize(vmin=finite.min(), vmax=finite.max()) if finite.size else None

    fig, axes = plt.subplots(1, len(columns), figsize=(7 * len(columns), 7), squeeze=False)
    for i, (col, ax) in enumerate(zip(columns, axes[0])):
        render_map(
            polygons,
            aligned[col].to_numpy(),
            ax=ax,
            norm=norm,
            title=titles[i] if titles else col,
            **render_kwargs,
        )
    if out is None:
        return None
    dpi = render_kwargs.get("dpi", 300)
    return _save(fig, out, dpi)
