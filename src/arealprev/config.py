"""Configuration loading utilities"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .paths import config_dir


class Config(BaseModel):
    """Pydantic model for the project configuration."""

    model_config = ConfigDict(extra="allow")

    project: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)
    align: Dict[str, Any] = Field(default_factory=dict)
    sampler: Dict[str, Any] = Field(default_factory=dict)
    adjacency: Dict[str, Any] = Field(default_factory=dict)
    viz: Dict[str, Any] = Field(default_factory=dict)

    def column_names(self) -> Dict[str, str]:
        """Keyword arguments naming the key columns of the aligned table."""
        return {
            "unit_col": self.align.get("unit_col", "unit"),
            "date_col": self.align.get("date_col", "date"),
            "cases_col": self.align.get("cases_col", "cases"),
            "population_col": self.align.get("population_col", "population"),
        }


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def merge_dicts(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``updates`` into ``base`` (in place) and return it."""
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = merge_dicts(base[key], value)
        else:
            base[key] = value
    return base


def load_config(cfg_dir: Optional[Path] = None) -> Config:
    """Load and merge the default and local configuration files."""
    cfg_dir = Path(cfg_dir) if cfg_dir is not None else config_dir()
    default_path = cfg_dir / "config.default.yaml"
    local_path = cfg_dir / "config.local.yaml"

    if not default_path.exists():
        raise FileNotFoundError(f"Missing default config: {default_path}")

    default_cfg = _load_yaml(default_path)
    local_cfg: Dict[str, Any] = _load_yaml(local_path) if local_path.exists() else {}

    merged = merge_dicts(dict(default_cfg), local_cfg)
    return Config.model_validate(merged)
