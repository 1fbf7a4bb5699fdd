"""Lightweight metrics sink for adapter and server instrumentation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass
class MetricsSink:
    """Collects counters and gauges for reporting."""

    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)
    log_events: bool = False
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("metrics"))
    _lock: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def incr(self, name: str, value: int = 1) -> None:
        """Increment a counter."""

        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + value

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""

        with self._lock:
            self.gauges[name] = float(value)

    def observe(self, name: str, values: Mapping[str, Any]) -> None:
        """Record an event, incrementing a counter and updating gauges.

        Matches the ``metrics_callback(name, values)`` hook of the adapters.
        """

        with self._lock:
            counter_name = f"{name}_total"
            self.counters[counter_name] = self.counters.get(counter_name, 0) + 1
            for key, value in values.items():
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    self.gauges[f"{name}_{key}"] = float(value)
        if self.log_events:
            self.log_event(name, dict(values))

    def export(self) -> Dict[str, float | int]:
        """Return a merged view of all current metrics."""

        with self._lock:
            snapshot = {**self.counters, **self.gauges}
        return snapshot

    def log_event(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        """Emit a structured metric event."""

        extras = {"event": event, **(payload or {})}
        self.logger.debug(event, extra=extras)

    def render_text(self) -> str:
        """Counters then gauges, one ``name value`` line each."""

        with self._lock:
            lines = [f"{name} {int(value)}" for name, value in sorted(self.counters.items())]
            lines.extend(f"{name} {float(value)}" for name, value in sorted(self.gauges.items()))
        return "\n".join(lines) + "\n"


__all__ = ["MetricsSink"]
