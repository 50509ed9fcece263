"""package for the areal prevalence analysis.

This package prepares weekly case counts over fixed areal units for a
spatio-temporal Bayesian model, wraps the external sampler, adjacency
builder and renderer behind validated call contracts, and compares
model outputs.  See subpackages for specific functionality.
"""

__all__ = [
    "paths",
    "config",
    "utils_geo",
    "utils_time",
    "ingest",
    "build",
    "model",
    "viz",
]
