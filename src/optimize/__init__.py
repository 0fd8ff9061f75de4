"""Command line client and API bindings for the optimization service."""

__version__ = "0.4.0"

__all__ = [
    "__version__",
    "cli",
]
