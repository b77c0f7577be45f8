"""Return, loss and recovery of checked-out equipment."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .catalog import persist_changes, refresh_records
from .errors import ConflictError, InvalidTransition, ValidationError
from .gateway import SqlGateway
from .ledger import (
    CHECKOUT_TRANSITIONS,
    AvailabilityChange,
    CheckoutTrigger,
    EquipmentTrigger,
    apply_change,
    apply_loss,
    next_status,
    plan_return,
    plan_status,
    record_locks,
    transition_checkout,
)
from .models import OUTSTANDING_STATUSES, CatalogSnapshot, CheckoutRecord, EquipmentRecord

logger = logging.getLogger(__name__)


def _check(checkouts: Iterable[CheckoutRecord], trigger: CheckoutTrigger) -> None:
    for c in checkouts:
        if (c.status, trigger) not in CHECKOUT_TRANSITIONS:
            raise InvalidTransition(f"Checkout {c.id} is already {c.status.value}")


def _records_for(catalog: CatalogSnapshot, checkouts: Iterable[CheckoutRecord]) -> Dict[str, EquipmentRecord]:
    out = {}
    for c in checkouts:
        rec = catalog.get(c.equipment_id)
        if rec is None:
            raise ValidationError(f"Equipment {c.equipment_id} is not in the catalog")
        out[rec.id] = rec
    return out


def return_checkouts(gateway: SqlGateway, catalog: CatalogSnapshot, checkouts: List[CheckoutRecord],
                     notes: Optional[str] = None, now: Optional[datetime] = None,
                     locks=record_locks) -> List[AvailabilityChange]:
    """Give back one or more units; each record's count goes up by its returned units."""
    if not checkouts:
        raise ValidationError("Select at least one checkout to return")
    _check(checkouts, CheckoutTrigger.RETURN)
    now = now or datetime.now()
    records = _records_for(catalog, checkouts)
    units = Counter(c.equipment_id for c in checkouts)

    def write():
        changes = [plan_return(records[eid], qty) for eid, qty in units.items()]
        with gateway.transaction() as tx:
            for c in checkouts:
                tx.mark_returned(c.id, notes=_merged_notes(c, notes), return_date=now)
            persist_changes(tx, changes)
        return changes

    with locks.hold(records.keys()):
        try:
            changes = write()
        except ConflictError:
            logger.warning("Stock changed during return, refetching and retrying once")
            refresh_records(gateway, records.values())
            changes = write()
        for ch in changes:
            apply_change(records[ch.equipment_id], ch)
        for c in checkouts:
            transition_checkout(c, CheckoutTrigger.RETURN, now, notes)

    logger.info("Returned %d unit(s) across %d record(s)", len(checkouts), len(records))
    return changes


def mark_lost(gateway: SqlGateway, checkouts: List[CheckoutRecord], notes: Optional[str] = None) -> None:
    """Lost units stay outstanding: the cached count does not change."""
    if not checkouts:
        raise ValidationError("Select at least one checkout")
    _check(checkouts, CheckoutTrigger.LOSE)
    with gateway.transaction() as tx:
        for c in checkouts:
            tx.mark_lost(c.id, notes=_merged_notes(c, notes))
    for c in checkouts:
        apply_loss(c, notes)
    logger.info("Marked %d checkout(s) lost", len(checkouts))


def recover(gateway: SqlGateway, catalog: CatalogSnapshot, checkout: CheckoutRecord,
            policy: str = "restock", notes: Optional[str] = None, now: Optional[datetime] = None,
            open_checkouts: Optional[Iterable[CheckoutRecord]] = None,
            locks=record_locks) -> AvailabilityChange:
    """
    A lost unit turned up again: the checkout becomes returned.

    ``restock`` puts the unit straight back into available stock.
    ``maintenance`` keeps it out of stock and sends the record to maintenance
    for inspection (records that cannot enter maintenance are restocked).
    """
    if policy not in ("restock", "maintenance"):
        raise ValidationError(f"Unknown recovery policy {policy!r}")
    _check([checkout], CheckoutTrigger.RECOVER)
    now = now or datetime.now()
    record = _records_for(catalog, [checkout])[checkout.equipment_id]

    with locks.hold([record.id]):
        if policy == "maintenance" and next_status(record.status, EquipmentTrigger.MAINTENANCE_START):
            if open_checkouts is None:
                open_checkouts = gateway.load_checkouts(OUTSTANDING_STATUSES)
            remaining = [c for c in open_checkouts if c.id != checkout.id]
            change = plan_status(record, EquipmentTrigger.MAINTENANCE_START, remaining)
        else:
            change = plan_return(record, 1)

        with gateway.transaction() as tx:
            tx.mark_recovered(checkout.id, notes=_merged_notes(checkout, notes), return_date=now)
            persist_changes(tx, [change])
        apply_change(record, change)
        transition_checkout(checkout, CheckoutTrigger.RECOVER, now, notes)

    logger.info("Recovered checkout %s (%s): %s now %d available", checkout.id, policy,
                record.id, record.available_quantity)
    return change


def _merged_notes(checkout: CheckoutRecord, notes: Optional[str]) -> Optional[str]:
    if not notes:
        return None
    return f"{checkout.notes}\n{notes}" if checkout.notes else notes
