"""Hierarchical budget ledger service (region → organization → farmer)."""

__version__ = "1.0.0"
