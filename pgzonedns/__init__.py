"""Authoritative DNS responses built from zone records stored in a PostgreSQL table."""

__version__ = "0.1.0"
__all__ = ["__version__"]