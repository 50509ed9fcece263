"""The command-line interface for this project"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import geopandas as gpd  # type: ignore[import]
import numpy as np
import pandas as pd
import typer

from arealprev.build.adjacency import build_adjacency, island_units
from arealprev.build.align import align_dataset, aligned_summary
from arealprev.config import load_config
from arealprev.ingest.datastore import dataset_path, load_dataset
from arealprev.logging_setup import setup_logging
from arealprev.model.compare import agreement_metrics, merge_predictions, unit_means
from arealprev.model.sampler import (
    SamplerControl,
    fit_model,
    load_sampler,
    prediction_table,
    save_result,
)
from arealprev.viz.maps import render_comparison_maps, render_map
from arealprev.viz.trends import plot_prevalence_trend


app = typer.Typer(add_completion=False, help="Areal prevalence command-line interface")


def _read_table(path: str) -> pd.DataFrame:
    p = Path(path)
    if p.suffix.lower() == ".parquet":
        return pd.read_parquet(p)
    return pd.read_csv(p)


# BUILD COMMANDS

@app.command("align")
def align_cmd(
    dataset: Optional[str] = typer.Option(None, help="Dataset name under the raw data directory (default: data.dataset)"),
    observations: Optional[str] = typer.Option(None, help="Observations file within the dataset"),
    roster: Optional[str] = typer.Option(None, help="Population roster file within the dataset"),
    covariates: Optional[str] = typer.Option(
        None,
        help="Per-unit covariates file within the dataset (default: data.covariates_file, skipped if absent)",
    ),
    no_covariates: bool = typer.Option(False, "--no-covariates", help="Align without any covariates"),
    root: Optional[str] = typer.Option(None, help="Override the raw data directory"),
    out: str = typer.Option(
        "data/processed/aligned.parquet",
        help="Path to write the aligned unit-week table",
    ),
) -> None:
    """Align sparse weekly observations onto the full unit × week grid.

    Missing populations are filled from the roster and prevalence /
    log-prevalence are derived.  Rows are ordered week-major, unit-minor,
    which is the order the sampler expects.
    """
    setup_logging()
    cfg = load_config()
    name = dataset or cfg.data["dataset"]
    obs = load_dataset(name, observations or cfg.data["observations_file"], root)
    ros = load_dataset(name, roster or cfg.data["roster_file"], root)
    cov = None
    if not no_covariates:
        if covariates:
            cov = load_dataset(name, covariates, root)
        elif cfg.data.get("covariates_file"):
            if dataset_path(name, cfg.data["covariates_file"], root).exists():
                cov = load_dataset(name, cfg.data["covariates_file"], root)
            else:
                typer.secho(
                    f"No {cfg.data['covariates_file']} in dataset {name}; aligning without covariates",
                    fg=typer.colors.YELLOW,
                )

    cols = cfg.column_names()
    table = align_dataset(obs, ros, cov, **cols)

    Path(out).parent.mkdir(parents=True, exist_ok=True)
    table.to_parquet(out, index=False)
    covariate_cols = [c for c in cov.columns if c != cols["unit_col"]] if cov is not None else None
    summary = aligned_summary(
        table, unit_col=cols["unit_col"], cases_col=cols["cases_col"], covariate_cols=covariate_cols,
    )
    typer.echo(f"Wrote {out} {summary}")


@app.command("adjacency")
def adjacency_cmd(
    boundaries: str = typer.Option(..., help="Polygon file (GeoJSON, GeoPackage or shapefile)"),
    aligned: Optional[str] = typer.Option(
        None,
        help="Aligned table; when given, matrix rows follow its unit order",
    ),
    out: str = typer.Option("data/processed/adjacency.npy", help="Path to write the 0/1 matrix"),
) -> None:
    """Build the binary neighbourhood matrix from unit polygons."""
    setup_logging()
    cfg = load_config()
    unit_col = cfg.align.get("unit_col", "unit")
    polygons = gpd.read_file(boundaries)
    units = None
    if aligned:
        units = pd.unique(_read_table(aligned)[unit_col]).tolist()

    W = build_adjacency(polygons, units, unit_col=unit_col, predicate=cfg.adjacency.get("predicate", "intersects"))
    islands = island_units(W, units or polygons[unit_col].tolist())
    if islands:
        typer.secho(f"Units without neighbours: {islands}", fg=typer.colors.YELLOW)

    Path(out).parent.mkdir(parents=True, exist_ok=True)
    np.save(out, W)
    typer.echo(f"Wrote {out} ({W.shape[0]}×{W.shape[1]}, {int(W.sum() // 2)} neighbour pairs)")


# MODELLING COMMANDS

@app.command("fit")
def fit_cmd(
    aligned: str = typer.Option("data/processed/aligned.parquet", help="Aligned table from `align`"),
    adjacency: str = typer.Option("data/processed/adjacency.npy", help="Matrix from `adjacency`"),
    formula: Optional[str] = typer.Option(None, help="Model formula (default: sampler.formula)"),
    sampler: Optional[str] = typer.Option(None, help="Sampler entry point 'module:function' (default: sampler.entry_point)"),
    burnin: Optional[int] = typer.Option(None, help="Burn-in draws"),
    n_sample: Optional[int] = typer.Option(None, help="Total draws including burn-in"),
    thin: Optional[int] = typer.Option(None, help="Thinning interval"),
    ar_order: Optional[int] = typer.Option(None, help="Temporal autoregressive order (1 or 2)"),
    out: str = typer.Option("data/processed/fit.joblib", help="Path to save the sampler result"),
    predictions: Optional[str] = typer.Option(None, help="Optional Parquet path for the fitted-value table"),
) -> None:
    """Run the configured external sampler on the aligned table."""
    setup_logging()
    cfg = load_config()
    sc = cfg.sampler
    entry = sampler or sc.get("entry_point")
    if not entry:
        raise typer.BadParameter("No sampler configured; pass --sampler or set sampler.entry_point")

    control = SamplerControl(
        burnin=burnin if burnin is not None else sc.get("burnin", 20000),
        n_sample=n_sample if n_sample is not None else sc.get("n_sample", 120000),
        thin=thin if thin is not None else sc.get("thin", 100),
        ar_order=ar_order if ar_order is not None else sc.get("ar_order", 1),
    )
    table = _read_table(aligned)
    W = np.load(adjacency)
    cols = cfg.column_names()

    result = fit_model(
        formula or sc["formula"],
        table,
        W,
        control,
        family=sc.get("family", "poisson"),
        sampler=load_sampler(entry),
        unit_col=cols["unit_col"],
    )
    save_result(result, out)
    if predictions and result.fitted is not None:
        pred = prediction_table(
            table, result,
            unit_col=cols["unit_col"], date_col=cols["date_col"], population_col=cols["population_col"],
        )
        Path(predictions).parent.mkdir(parents=True, exist_ok=True)
        pred.to_parquet(predictions, index=False)
    typer.echo(f"Saved {out}: {json.dumps(result.fit)}")


@app.command("compare")
def compare_cmd(
    left: str = typer.Option(..., help="First prediction table (CSV or Parquet)"),
    right: str = typer.Option(..., help="Second prediction table (CSV or Parquet)"),
    value_col: str = typer.Option("fitted", help="Prediction column present in both tables"),
    out: str = typer.Option("data/processed/unit_means.parquet", help="Path to write per-unit means"),
    metrics_out: Optional[str] = typer.Option(None, help="Optional JSON path for agreement metrics"),
) -> None:
    """Join two prediction tables on (unit, date) and average each unit over time."""
    setup_logging()
    cfg = load_config()
    cols = cfg.column_names()
    a, b = _read_table(left), _read_table(right)
    for df in (a, b):
        df[cols["date_col"]] = pd.to_datetime(df[cols["date_col"]])

    merged = merge_predictions(a, b, on=(cols["unit_col"], cols["date_col"]))
    value_cols = [f"{value_col}_a", f"{value_col}_b"]
    means = unit_means(merged, value_cols, unit_col=cols["unit_col"])

    Path(out).parent.mkdir(parents=True, exist_ok=True)
    means.to_parquet(out, index=False)
    metrics = agreement_metrics(merged, *value_cols)
    if metrics_out:
        Path(metrics_out).parent.mkdir(parents=True, exist_ok=True)
        with open(metrics_out, "w") as fh:
            json.dump(metrics, fh, indent=2)
    typer.echo(f"Wrote {out} ({len(means)} units); agreement: {metrics}")


# VISUALIZATION COMMANDS

@app.command("map-means")
def map_means_cmd(
    boundaries: str = typer.Option(..., help="Polygon file with a unit column"),
    means: str = typer.Option("data/processed/unit_means.parquet", help="Per-unit table from `compare`"),
    column: list[str] = typer.Option(..., help="Column(s) to map; repeat for side-by-side panels"),
    out: str = typer.Option("docs/figures/unit_means.png", help="Path to write the map"),
    legend_title: Optional[str] = typer.Option(None, help="Legend title (default: viz.legend_title)"),
) -> None:
    """Render per-unit values as one or more choropleth panels."""
    setup_logging()
    cfg = load_config()
    viz = cfg.viz
    unit_col = cfg.align.get("unit_col", "unit")
    polygons = gpd.read_file(boundaries)
    table = _read_table(means)
    style = dict(
        palette=viz.get("palette", "YlOrRd"),
        legend_title=legend_title or viz.get("legend_title", ""),
        scale_bar=bool(viz.get("scale_bar", True)),
        fill_opacity=float(viz.get("fill_opacity", 0.7)),
        outline_color=viz.get("outline_color", "white"),
        dpi=int(viz.get("dpi", 300)),
    )
    if len(column) == 1:
        values = table.set_index(unit_col)[column[0]].reindex(polygons[unit_col]).to_numpy()
        path = render_map(polygons, values, title=column[0], out=out, **style)
    else:
        path = render_comparison_maps(polygons, table, column, unit_col=unit_col, out=out, **style)
    typer.echo(f"Map saved to {path}")


@app.command("plot-trend")
def plot_trend_cmd(
    aligned: str = typer.Option("data/processed/aligned.parquet", help="Aligned table from `align`"),
    out: str = typer.Option("docs/figures/prevalence_trend.png", help="Path to write the figure"),
) -> None:
    """Plot weekly prevalence averaged across units."""
    setup_logging()
    cfg = load_config()
    table = _read_table(aligned)
    path = plot_prevalence_trend(table, out, date_col=cfg.align.get("date_col", "date"), dpi=int(cfg.viz.get("dpi", 300)))
    typer.echo(f"Figure saved to {path}")


def main() -> None:
    """Entry point for the ``arealprev`` console script."""
    app()


if __name__ == "__main__":
    main()
