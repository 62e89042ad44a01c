"""Data quality profiling: metric specs, profiling queries and quality metrics."""

__version__ = "0.1.0"

__all__ = ["__version__"]