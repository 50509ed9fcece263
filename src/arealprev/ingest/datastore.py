"""Load packaged datasets from the local data store.

Datasets live under ``<root>/<dataset name>/<filename>``, where ``root``
defaults to the configured raw data directory.  The loader picks a reader
from the file suffix:

======================  ===========================
suffix                  returns
======================  ===========================
``.csv``                :class:`pandas.DataFrame`
``.parquet``            :class:`pandas.DataFrame`
``.geojson .gpkg .shp`` :class:`geopandas.GeoDataFrame`
``.npy``                :class:`numpy.ndarray`
======================  ===========================

Retrieval from remote stores is not handled here; files are expected to
be in place and already validated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import geopandas as gpd  # type: ignore[import]
import numpy as np
import pandas as pd

from ..config import load_config
from ..paths import resolve

logger = logging.getLogger(__name__)

_GEO_SUFFIXES = {".geojson", ".gpkg", ".shp", ".json"}

Loaded = Union[pd.DataFrame, gpd.GeoDataFrame, np.ndarray]


def _read_csv_with_fallback(path: Path) -> pd.DataFrame:
    encodings = ["utf-8-sig", "cp1252", "latin1"]
    last_err: Optional[Exception] = None
    for enc in encodings:
        try:
            return pd.read_csv(path, encoding=enc)
        except UnicodeDecodeError as e:
            last_err = e
    raise last_err if last_err else RuntimeError(f"Could not read {path} with fallback encodings")


def dataset_path(name: str, filename: str, root: Optional[Union[str, Path]] = None) -> Path:
    """Return ``<root>/<name>/<filename>``; ``root`` defaults to ``data.raw_dir``."""
    if root is None:
        root = load_config().data.get("raw_dir", "data/raw")
    return resolve(root) / name / filename


def load_dataset(name: str, filename: str, root: Optional[Union[str, Path]] = None) -> Loaded:
    """Load ``filename`` of dataset ``name`` into memory.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the suffix has no registered reader.
    """
    path = dataset_path(name, filename, root)
    if not path.exists():
        raise FileNotFoundError(f"Dataset file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        out: Loaded = _read_csv_with_fallback(path)
    elif suffix == ".parquet":
        out = pd.read_parquet(path)
    elif suffix in _GEO_SUFFIXES:
        out = gpd.read_file(path)
    elif suffix == ".npy":
        out = np.load(path, allow_pickle=False)
    else:
        raise ValueError(f"No reader for '{suffix}' files ({path.name})")

    logger.info("loaded %s/%s (%s)", name, filename, getattr(out, "shape", None))
    return out
