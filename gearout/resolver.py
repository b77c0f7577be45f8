"""
Resolve a noisy scanned / typed code to exactly one equipment record.

Three tiers are tried in order and the first hit wins:

1. exact      - id, article number, serial number (then instance QR codes)
2. partial    - article number, serial number, name; substring either way
3. similarity - article number, serial number; Levenshtein ratio >= threshold

Inside a tier, the first input variant and then the first record in catalog
order wins. The similarity tier stops at the first record over the threshold,
not the best-scoring one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .matching import is_similar
from .models import CatalogSnapshot, EquipmentInstance, EquipmentRecord
from .normalize import normalize, variants

logger = logging.getLogger(__name__)


class MatchMethod(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    SIMILARITY = "similarity"


FIELD_LABELS = {
    "id": "ID",
    "article_number": "Article Number",
    "serial_number": "Serial Number",
    "name": "Name",
    "qr_code": "QR Code",
}

EXACT_FIELDS = ("id", "article_number", "serial_number")
PARTIAL_FIELDS = ("article_number", "serial_number", "name")
SIMILARITY_FIELDS = ("article_number", "serial_number")


@dataclass(frozen=True)
class Match:
    record: EquipmentRecord
    method: MatchMethod
    field: str
    variant: str
    instance: Optional[EquipmentInstance] = None
    found = True

    def describe(self) -> str:
        return f"{self.method.value.capitalize()}/{FIELD_LABELS.get(self.field, self.field)}"


@dataclass(frozen=True)
class NoMatch:
    raw: str
    variants: Tuple[str, ...]
    found = False

    def describe(self) -> str:
        return f"No equipment matches {self.raw!r} (tried: {', '.join(self.variants) or '-'})"


Resolution = Union[Match, NoMatch]
Catalog = Union[CatalogSnapshot, Sequence[EquipmentRecord]]


def ordered_variants(raw: str) -> List[str]:
    """Canonical form first, the rest sorted so resolution is repeatable."""
    canonical = normalize(raw)
    rest = sorted(v for v in variants(raw) if v != canonical)
    return [v for v in [canonical] + rest if v]


def _field_table(records: Sequence[EquipmentRecord]) -> List[Dict[str, str]]:
    table = []
    for rec in records:
        table.append({
            "id": normalize(rec.id),
            "article_number": normalize(rec.article_number or ""),
            "serial_number": normalize(rec.serial_number or ""),
            "name": normalize(rec.name or ""),
        })
    return table


def _exact(vs, records, table, instances, by_id) -> Optional[Match]:
    for v in vs:
        for rec, fields in zip(records, table):
            for name in EXACT_FIELDS:
                if fields[name] and fields[name] == v:
                    return Match(rec, MatchMethod.EXACT, name, v)
        for inst in instances:
            parent = by_id.get(inst.equipment_id)
            if parent is not None and normalize(inst.qr_code) == v:
                return Match(parent, MatchMethod.EXACT, "qr_code", v, inst)
    return None


def _partial(vs, records, table) -> Optional[Match]:
    for v in vs:
        for rec, fields in zip(records, table):
            for name in PARTIAL_FIELDS:
                value = fields[name]
                if value and (v in value or value in v):
                    return Match(rec, MatchMethod.PARTIAL, name, v)
    return None


def _similar(vs, records, table, threshold, min_length) -> Optional[Match]:
    for v in vs:
        if len(v) < min_length:
            continue
        for rec, fields in zip(records, table):
            for name in SIMILARITY_FIELDS:
                if fields[name] and is_similar(v, fields[name], threshold, min_length):
                    return Match(rec, MatchMethod.SIMILARITY, name, v)
    return None


def resolve(
    raw_code: str,
    catalog: Catalog,
    instances: Optional[Iterable[EquipmentInstance]] = None,
    threshold: float = 0.70,
    min_length: int = 4,
) -> Resolution:
    records = list(catalog)
    if instances is None:
        instances = catalog.instances if isinstance(catalog, CatalogSnapshot) else ()
    instances = list(instances)

    vs = ordered_variants(raw_code)
    if not vs:
        logger.debug("Empty code after normalization: %r", raw_code)
        return NoMatch(str(raw_code or ""), ())

    table = _field_table(records)
    by_id = {rec.id: rec for rec in records}

    hit = (
        _exact(vs, records, table, instances, by_id)
        or _partial(vs, records, table)
        or _similar(vs, records, table, threshold, min_length)
    )
    if hit is None:
        logger.debug("No match for %r (variants: %s)", raw_code, vs)
        return NoMatch(str(raw_code), tuple(vs))

    logger.debug("Resolved %r -> %s via %s", raw_code, hit.record.id, hit.describe())
    return hit
