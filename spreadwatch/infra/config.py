"""Config loading utilities for the feed server and the consumer client."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from spreadwatch.errors import ConfigurationError
from spreadwatch.infra.backoff import BackoffConfig
from spreadwatch.pricing.symbols import RECONCILE_MODES, SymbolRule

DEFAULT_CONFIG_PATH = "config/settings.yaml"
VENUE_KINDS = ("push", "polling")
VENUE_APIS = ("reya", "vertex", "hyperliquid")


@dataclass
class VenueConfig:
    name: str
    kind: str
    api: str
    rest_url: Optional[str] = None
    websocket_url: Optional[str] = None
    indexer_url: Optional[str] = None
    poll_interval_ms: int = 500
    connect_timeout_seconds: float = 10.0
    enabled: bool = True
    normalization: SymbolRule = field(default_factory=SymbolRule)


@dataclass
class ReconciliationConfig:
    mode: str = "union-with-fallback"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001


@dataclass
class StoreConfig:
    history_limit: int = 100


@dataclass
class ClientConfig:
    url: str = "http://localhost:3001"
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


@dataclass
class AppConfig:
    venues: List[VenueConfig]
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    @property
    def enabled_venues(self) -> List[VenueConfig]:
        return [venue for venue in self.venues if venue.enabled]


def default_venues() -> List[VenueConfig]:
    return [
        VenueConfig(
            name="reya",
            kind="push",
            api="reya",
            normalization=SymbolRule(strip_suffix="-rUSD"),
        ),
        VenueConfig(
            name="vertex",
            kind="polling",
            api="vertex",
            normalization=SymbolRule(strip_suffix="-PERP"),
        ),
        VenueConfig(
            name="hyperliquid",
            kind="polling",
            api="hyperliquid",
            enabled=False,
        ),
    ]


def _venue_from_mapping(raw: Mapping[str, Any]) -> VenueConfig:
    try:
        name = str(raw["name"])
    except KeyError as exc:
        raise ConfigurationError("every venue needs a name") from exc

    kind = raw.get("kind", "polling")
    if kind not in VENUE_KINDS:
        raise ConfigurationError(f"{name}: unknown venue kind {kind!r}")
    api = raw.get("api", name)
    if api not in VENUE_APIS:
        raise ConfigurationError(f"{name}: unknown venue api {api!r}")

    try:
        poll_interval_ms = int(raw.get("poll_interval_ms", 500))
        connect_timeout = float(raw.get("connect_timeout_seconds", 10.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name}: {exc}") from exc
    if poll_interval_ms <= 0:
        raise ConfigurationError(f"{name}: poll_interval_ms must be positive")

    return VenueConfig(
        name=name,
        kind=kind,
        api=api,
        rest_url=raw.get("rest_url"),
        websocket_url=raw.get("websocket_url"),
        indexer_url=raw.get("indexer_url"),
        poll_interval_ms=poll_interval_ms,
        connect_timeout_seconds=connect_timeout,
        enabled=bool(raw.get("enabled", True)),
        normalization=SymbolRule.from_mapping(raw.get("normalization")),
    )


def config_from_mapping(raw: Optional[Mapping[str, Any]]) -> AppConfig:
    """Build an :class:`AppConfig` from parsed YAML, filling in defaults."""

    raw = raw or {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("config root must be a mapping")

    venues_raw = raw.get("venues")
    venues = [_venue_from_mapping(v) for v in venues_raw] if venues_raw else default_venues()
    names = [venue.name for venue in venues]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"duplicate venue names in {names}")

    reconciliation = raw.get("reconciliation", {}) or {}
    mode = reconciliation.get("mode", "union-with-fallback")
    if mode not in RECONCILE_MODES:
        raise ConfigurationError(f"unknown reconciliation mode: {mode!r}")

    server = raw.get("server", {}) or {}
    store = raw.get("store", {}) or {}
    client = raw.get("client", {}) or {}
    backoff = raw.get("backoff", {}) or {}

    history_limit = int(store.get("history_limit", 100))
    if history_limit < 1:
        raise ConfigurationError("store.history_limit must be positive")

    try:
        backoff_config = BackoffConfig.from_mapping(backoff)
        client_backoff = BackoffConfig.from_mapping(client.get("backoff") or backoff)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid backoff settings: {exc}") from exc

    return AppConfig(
        venues=venues,
        reconciliation=ReconciliationConfig(mode=mode),
        server=ServerConfig(
            host=server.get("host", "0.0.0.0"),
            port=int(server.get("port", 3001)),
        ),
        store=StoreConfig(history_limit=history_limit),
        client=ClientConfig(
            url=client.get("url", "http://localhost:3001"),
            backoff=client_backoff,
        ),
        backoff=backoff_config,
    )


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """Load configuration from YAML, using built-in defaults when the file is missing."""

    resolved = Path(path or env_or_default("CONFIG_PATH", DEFAULT_CONFIG_PATH)).expanduser()
    if not resolved.exists():
        logging.getLogger(__name__).warning("Config file %s not found, using defaults", resolved)
        return config_from_mapping({})
    with resolved.open("r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"{resolved}: {exc}") from exc
    return config_from_mapping(raw)


def env_or_default(key: str, default: str) -> str:
    return os.getenv(key, default)


__all__ = [
    "load_config",
    "config_from_mapping",
    "default_venues",
    "env_or_default",
    "AppConfig",
    "VenueConfig",
    "ReconciliationConfig",
    "ServerConfig",
    "StoreConfig",
    "ClientConfig",
    "DEFAULT_CONFIG_PATH",
]
