"""Service model, dependency ordering and container option helpers for application projects."""

__version__ = "0.1.0"