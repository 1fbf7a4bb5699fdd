"""Reconnection backoff shared by the push adapter and the feed client."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass
class BackoffConfig:
    """Configuration for reconnection backoff."""

    initial: float = 1.0
    maximum: float = 10.0
    factor: float = 2.0
    jitter: float = 0.0

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "BackoffConfig":
        raw = raw or {}
        return cls(
            initial=float(raw.get("initial", cls.initial)),
            maximum=float(raw.get("maximum", cls.maximum)),
            factor=float(raw.get("factor", cls.factor)),
            jitter=float(raw.get("jitter", cls.jitter)),
        )


class Backoff:
    """Exponential delay that doubles per failure and resets on success."""

    def __init__(self, config: Optional[BackoffConfig] = None) -> None:
        self.config = config or BackoffConfig()
        self.failures = 0
        self._delay = self.config.initial

    def next_delay(self) -> float:
        """Return the delay before the next attempt and grow the base delay."""

        delay = min(self._delay, self.config.maximum)
        self.failures += 1
        self._delay = min(self._delay * self.config.factor, self.config.maximum)
        if self.config.jitter:
            delay += random.uniform(0, self.config.jitter)
        return delay

    def reset(self) -> None:
        self.failures = 0
        self._delay = self.config.initial


__all__ = ["BackoffConfig", "Backoff"]
