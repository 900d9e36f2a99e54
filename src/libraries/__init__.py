"""Runtime package for the IMI fixer."""

from . import pipeline, reconcile, tva

__all__ = [
    "__version__",
    "pipeline",
    "reconcile",
    "tva",
]

__version__ = "1.0.0"
