"""streamlines common filesystem paths for the project"""

from pathlib import Path
from typing import Union

ROOT = Path(__file__).resolve().parents[2]


def config_dir() -> Path:
    """Return the path to the configuration directory."""
    return ROOT / "config"


def resolve(path: Union[str, Path]) -> Path:
    """Resolve a config-relative path (e.g. ``data/raw``) against the repository root.

    Absolute paths are returned unchanged.
    """
    p = Path(path)
    return p if p.is_absolute() else ROOT / p
