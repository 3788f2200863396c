"""Bank provider normalization and reconciliation layer."""

__version__ = "1.0.0"
