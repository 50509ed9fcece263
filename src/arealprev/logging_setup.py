"""Simple logging configuration.

Use func:`setup_logging` at the start of your scripts to configure a
consistent logging format across the project. Library modules only create
their own ``logging.getLogger(__name__)`` loggers and never configure
handlers themselves.
"""

import logging

# third-party loggers that flood INFO/DEBUG output while rendering or reading files
_NOISY = ("matplotlib", "PIL", "pyogrio", "fiona")


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the root logger."""
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    logging.basicConfig(level=level, format=fmt)
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
