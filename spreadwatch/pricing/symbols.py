"""Reconcile venue-native symbols into a shared canonical universe.

Every venue names the same asset differently (``ETH-rUSD``, ``ETH-PERP``,
``ETH``). Each venue gets its own :class:`SymbolRule`, a deterministic string
transform to the canonical form; rules are configured independently rather
than inferred from one another. :func:`reconcile` runs once at startup and
yields an immutable :class:`SymbolTable`; callers that need a fresher
universe must call it again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

from spreadwatch.errors import ConfigurationError

ReconcileMode = Literal["intersection", "union-with-fallback"]
RECONCILE_MODES = ("intersection", "union-with-fallback")


@dataclass(frozen=True)
class SymbolRule:
    """Normalization of one venue's symbols to canonical form.

    Explicit ``aliases`` win over the generic transform, which strips the
    prefix, then the suffix, then applies the case policy.
    """

    strip_prefix: str = ""
    strip_suffix: str = ""
    case: Literal["upper", "preserve"] = "upper"
    aliases: Mapping[str, str] = field(default_factory=dict)

    def normalize(self, symbol: str) -> str:
        if symbol in self.aliases:
            return self.aliases[symbol]
        canonical = symbol
        if self.strip_prefix and canonical.startswith(self.strip_prefix):
            canonical = canonical[len(self.strip_prefix):]
        if self.strip_suffix and canonical.endswith(self.strip_suffix):
            canonical = canonical[: -len(self.strip_suffix)]
        if self.case == "upper":
            canonical = canonical.upper()
        return canonical

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "SymbolRule":
        raw = raw or {}
        case = raw.get("case", "upper")
        if case not in ("upper", "preserve"):
            raise ConfigurationError(f"unknown symbol case policy: {case!r}")
        return cls(
            strip_prefix=str(raw.get("strip_prefix", "")),
            strip_suffix=str(raw.get("strip_suffix", "")),
            case=case,
            aliases=dict(raw.get("aliases") or {}),
        )


class SymbolTable:
    """Canonical symbol -> {venue -> venue-native symbol}, fixed once built."""

    def __init__(self, entries: Mapping[str, Mapping[str, str]]) -> None:
        self._entries = MappingProxyType(
            {canonical: MappingProxyType(dict(venues)) for canonical, venues in sorted(entries.items())}
        )

    @property
    def symbols(self) -> List[str]:
        return list(self._entries)

    def venues_for(self, canonical: str) -> Mapping[str, str]:
        return self._entries.get(canonical, MappingProxyType({}))

    def native(self, canonical: str, venue: str) -> Optional[str]:
        return self.venues_for(canonical).get(venue)

    def venues(self) -> List[str]:
        seen: Dict[str, None] = {}
        for venues in self._entries.values():
            seen.update(dict.fromkeys(venues))
        return list(seen)

    def __contains__(self, canonical: object) -> bool:
        return canonical in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"SymbolTable({len(self)} symbols)"


def normalize_universe(venue: str, symbols: Iterable[str], rule: SymbolRule) -> Dict[str, str]:
    """Map canonical -> native for one venue, rejecting collisions."""

    mapping: Dict[str, str] = {}
    for native in symbols:
        canonical = rule.normalize(native)
        if not canonical:
            continue
        existing = mapping.get(canonical)
        if existing is not None and existing != native:
            raise ConfigurationError(
                f"{venue}: symbols {existing!r} and {native!r} both normalize to {canonical!r}"
            )
        mapping[canonical] = native
    return mapping


def reconcile(
    universes: Mapping[str, Optional[Iterable[str]]],
    rules: Mapping[str, SymbolRule],
    mode: ReconcileMode = "intersection",
) -> SymbolTable:
    """Compute the canonical symbol table from each venue's symbol universe.

    Args:
        universes: Venue name -> native symbols. ``None`` marks a venue that is
            not live (e.g. its metadata fetch failed at startup).
        rules: Venue name -> normalization rule; venues without one use the
            default rule (upper-casing only).
        mode: ``intersection`` keeps symbols listed on at least two venues.
            ``union-with-fallback`` does the same while two or more venues are
            live, and keeps every symbol of the only live venue otherwise.

    Raises:
        ConfigurationError: on an unknown mode, or when two native symbols of
            one venue normalize to the same canonical symbol.
    """

    if mode not in RECONCILE_MODES:
        raise ConfigurationError(f"unknown reconciliation mode: {mode!r}")

    per_venue: Dict[str, Dict[str, str]] = {}
    for venue, symbols in universes.items():
        if symbols is None:
            continue
        per_venue[venue] = normalize_universe(venue, symbols, rules.get(venue) or SymbolRule())

    min_venues = 2
    if mode == "union-with-fallback" and len(per_venue) == 1:
        min_venues = 1

    entries: Dict[str, Dict[str, str]] = {}
    for venue, mapping in per_venue.items():
        for canonical, native in mapping.items():
            entries.setdefault(canonical, {})[venue] = native

    return SymbolTable({canonical: venues for canonical, venues in entries.items() if len(venues) >= min_venues})


__all__ = [
    "SymbolRule",
    "SymbolTable",
    "ReconcileMode",
    "RECONCILE_MODES",
    "normalize_universe",
    "reconcile",
]
