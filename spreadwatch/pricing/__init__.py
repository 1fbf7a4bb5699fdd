"""Symbol reconciliation, spread math, and the consumer-side aggregate store."""

from .aggregate import AggregateEntry, AggregateStore, EntryState, HistoryPoint
from .spread import SpreadInfo, calculate_spread, spread_for, spread_severity
from .symbols import SymbolRule, SymbolTable, reconcile

__all__ = [
    "AggregateEntry",
    "AggregateStore",
    "EntryState",
    "HistoryPoint",
    "SpreadInfo",
    "calculate_spread",
    "spread_for",
    "spread_severity",
    "SymbolRule",
    "SymbolTable",
    "reconcile",
]
