# strategy_search/errors.py
"""Exception types shared across the search stack.

Only configuration problems are fatal. Data shortfalls are handled where they
occur (symbol exclusion in the data layer, the empty result in the engine) and
per-genome evaluation problems travel as records, not exceptions.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Malformed run configuration or parameter table; raised before any generation runs."""


class DataInsufficiencyError(RuntimeError):
    """The loaded universe is too small to run a search on."""


__all__ = ["ConfigurationError", "DataInsufficiencyError"]
