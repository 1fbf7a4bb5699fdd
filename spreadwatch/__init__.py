"""Cross-venue price aggregation: venue adapters, symbol reconciliation, and spreads."""

__version__ = "0.1.0"
