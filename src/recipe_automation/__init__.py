"""Scheduler and execution tracker for automated recipe pipeline runs."""

__version__ = "0.1.0"

__all__ = ["__version__"]
