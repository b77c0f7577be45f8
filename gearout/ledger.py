"""
Availability ledger.

``available_quantity()`` is the source of truth: total stock minus
outstanding holds (active, overdue and lost checkouts), minus one unit while
the record is in maintenance, and zero for retired stock. The
``available_quantity`` attribute on a record is only a cache of that value.

Status changes go through explicit transition tables so forbidden moves
(``retired -> available``, ``returned -> active`` ...) cannot happen.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional

from .errors import ConflictError, InvalidTransition, Unavailable, ValidationError
from .models import (
    OUTSTANDING_STATUSES,
    CheckoutRecord,
    CheckoutStatus,
    EquipmentRecord,
    EquipmentStatus,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------
class EquipmentTrigger(str, Enum):
    STOCK_EXHAUSTED = "stock-exhausted"
    STOCK_RESTORED = "stock-restored"
    MAINTENANCE_START = "maintenance-start"
    MAINTENANCE_END = "maintenance-end"
    RETIRE = "retire"
    DECLARE_LOST = "declare-lost"
    FOUND = "found"


class CheckoutTrigger(str, Enum):
    DUE_PASSED = "due-passed"
    RETURN = "return"
    LOSE = "lose"
    RECOVER = "recover"


_ES = EquipmentStatus
_ET = EquipmentTrigger

EQUIPMENT_TRANSITIONS = {
    (_ES.AVAILABLE, _ET.STOCK_EXHAUSTED): _ES.CHECKED_OUT,
    (_ES.CHECKED_OUT, _ET.STOCK_RESTORED): _ES.AVAILABLE,
    (_ES.AVAILABLE, _ET.MAINTENANCE_START): _ES.MAINTENANCE,
    (_ES.CHECKED_OUT, _ET.MAINTENANCE_START): _ES.MAINTENANCE,
    (_ES.MAINTENANCE, _ET.MAINTENANCE_END): _ES.AVAILABLE,
    (_ES.AVAILABLE, _ET.RETIRE): _ES.RETIRED,
    (_ES.CHECKED_OUT, _ET.RETIRE): _ES.RETIRED,
    (_ES.MAINTENANCE, _ET.RETIRE): _ES.RETIRED,
    (_ES.LOST, _ET.RETIRE): _ES.RETIRED,
    (_ES.AVAILABLE, _ET.DECLARE_LOST): _ES.LOST,
    (_ES.CHECKED_OUT, _ET.DECLARE_LOST): _ES.LOST,
    (_ES.MAINTENANCE, _ET.DECLARE_LOST): _ES.LOST,
    (_ES.LOST, _ET.FOUND): _ES.AVAILABLE,
}

_CS = CheckoutStatus
_CT = CheckoutTrigger

CHECKOUT_TRANSITIONS = {
    (_CS.ACTIVE, _CT.DUE_PASSED): _CS.OVERDUE,
    (_CS.ACTIVE, _CT.RETURN): _CS.RETURNED,
    (_CS.OVERDUE, _CT.RETURN): _CS.RETURNED,
    (_CS.ACTIVE, _CT.LOSE): _CS.LOST,
    (_CS.OVERDUE, _CT.LOSE): _CS.LOST,
    (_CS.LOST, _CT.RECOVER): _CS.RETURNED,
}


def next_status(status: EquipmentStatus, trigger: EquipmentTrigger) -> Optional[EquipmentStatus]:
    return EQUIPMENT_TRANSITIONS.get((EquipmentStatus(status), trigger))


def require_transition(status: EquipmentStatus, trigger: EquipmentTrigger) -> EquipmentStatus:
    new = next_status(status, trigger)
    if new is None:
        raise InvalidTransition(f"Equipment cannot go from '{EquipmentStatus(status).value}' via '{trigger.value}'")
    return new


def transition_checkout(checkout: CheckoutRecord, trigger: CheckoutTrigger,
                        now: Optional[datetime] = None, notes: Optional[str] = None) -> CheckoutRecord:
    new = CHECKOUT_TRANSITIONS.get((checkout.status, trigger))
    if new is None:
        raise InvalidTransition(
            f"Checkout {checkout.id} cannot go from '{checkout.status.value}' via '{trigger.value}'"
        )
    checkout.status = new
    if new == CheckoutStatus.RETURNED:
        checkout.return_date = now or datetime.now()
    if notes:
        checkout.notes = f"{checkout.notes}\n{notes}" if checkout.notes else notes
    return checkout


def settle_status(status: EquipmentStatus, available: int) -> EquipmentStatus:
    """Implicit promotion/demotion after the cached count changed."""
    trigger = EquipmentTrigger.STOCK_EXHAUSTED if available <= 0 else EquipmentTrigger.STOCK_RESTORED
    return next_status(status, trigger) or EquipmentStatus(status)


# ---------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------
def outstanding_holds(record: EquipmentRecord, checkouts: Iterable[CheckoutRecord]) -> int:
    return sum(1 for c in checkouts if c.equipment_id == record.id and c.status in OUTSTANDING_STATUSES)


def available_quantity(record: EquipmentRecord, open_checkouts: Iterable[CheckoutRecord]) -> int:
    if record.status == EquipmentStatus.RETIRED:
        return 0
    in_maintenance = 1 if record.status == EquipmentStatus.MAINTENANCE else 0
    return max(0, record.total_quantity - outstanding_holds(record, open_checkouts) - in_maintenance)


BLOCKING_STATUSES = {
    EquipmentStatus.MAINTENANCE: "maintenance",
    EquipmentStatus.RETIRED: "retired",
    EquipmentStatus.LOST: "lost",
}


def availability_problem(record: EquipmentRecord, requested: int, already_in_cart: int = 0) -> Optional[str]:
    """Reason the request cannot be served, or None."""
    reason = BLOCKING_STATUSES.get(record.status)
    if reason:
        return reason
    if record.available_quantity - already_in_cart < requested:
        return "quantity-exhausted"
    return None


def can_checkout(record: EquipmentRecord, requested: int, already_in_cart: int = 0) -> bool:
    return availability_problem(record, requested, already_in_cart) is None


def ensure_available(record: EquipmentRecord, requested: int, already_in_cart: int = 0) -> None:
    if requested < 1:
        raise ValidationError(f"Quantity must be at least 1 (got {requested})")
    reason = availability_problem(record, requested, already_in_cart)
    if reason is None:
        return
    if reason == "quantity-exhausted":
        left = max(0, record.available_quantity - already_in_cart)
        msg = f"{record.name}: only {left} left, {requested} requested"
    else:
        msg = f"{record.name} is not available ({reason})"
    raise Unavailable(msg, reason=reason, payload={"equipment_id": record.id})


# ---------------------------------------------------------------------
# Cached counter changes
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class AvailabilityChange:
    """One conditional update: expected cached quantity -> new quantity and status."""
    equipment_id: str
    expected_quantity: int
    new_quantity: int
    old_status: EquipmentStatus
    new_status: EquipmentStatus

    @property
    def delta(self) -> int:
        return self.new_quantity - self.expected_quantity


def plan_checkout(record: EquipmentRecord, qty: int) -> AvailabilityChange:
    new_qty = record.available_quantity - qty
    if new_qty < 0:
        raise Unavailable(
            f"{record.name}: only {record.available_quantity} left, {qty} requested",
            reason="quantity-exhausted", payload={"equipment_id": record.id},
        )
    new_status = record.status
    if new_qty == 0:
        new_status = next_status(record.status, EquipmentTrigger.STOCK_EXHAUSTED) or record.status
    return AvailabilityChange(record.id, record.available_quantity, new_qty, record.status, new_status)


def plan_return(record: EquipmentRecord, qty: int) -> AvailabilityChange:
    if record.status == EquipmentStatus.RETIRED:
        return AvailabilityChange(record.id, record.available_quantity, 0, record.status, record.status)
    # the unit held back for maintenance never comes back through a return
    ceiling = record.total_quantity - (1 if record.status == EquipmentStatus.MAINTENANCE else 0)
    new_qty = max(0, min(ceiling, record.available_quantity + qty))
    new_status = record.status
    if new_qty > 0:
        new_status = next_status(record.status, EquipmentTrigger.STOCK_RESTORED) or record.status
    return AvailabilityChange(record.id, record.available_quantity, new_qty, record.status, new_status)


def plan_status(record: EquipmentRecord, trigger: EquipmentTrigger,
                open_checkouts: Iterable[CheckoutRecord]) -> AvailabilityChange:
    """Explicit admin action (maintenance, retire, lost, found) with the recomputed count."""
    new_status = require_transition(record.status, trigger)
    draft = EquipmentRecord(
        id=record.id, name=record.name, serial_number=record.serial_number,
        total_quantity=record.total_quantity, status=new_status,
    )
    new_qty = available_quantity(draft, open_checkouts)
    if new_status == EquipmentStatus.AVAILABLE:
        new_status = settle_status(new_status, new_qty)
    return AvailabilityChange(record.id, record.available_quantity, new_qty, record.status, new_status)


def plan_resize(record: EquipmentRecord, new_total: int,
                open_checkouts: Iterable[CheckoutRecord]) -> AvailabilityChange:
    """Stock shrinks or grows (a unit retired on its own); count recomputed for the new total."""
    draft = EquipmentRecord(
        id=record.id, name=record.name, serial_number=record.serial_number,
        total_quantity=new_total, status=record.status,
    )
    new_qty = available_quantity(draft, open_checkouts)
    return AvailabilityChange(record.id, record.available_quantity, new_qty, record.status,
                              settle_status(record.status, new_qty))


def apply_change(record: EquipmentRecord, change: AvailabilityChange) -> EquipmentRecord:
    if change.equipment_id != record.id:
        raise ValidationError(f"Change for {change.equipment_id} applied to {record.id}")
    record.available_quantity = change.new_quantity
    record.status = change.new_status
    return record


def apply_checkout(record: EquipmentRecord, qty: int) -> AvailabilityChange:
    change = plan_checkout(record, qty)
    apply_change(record, change)
    return change


def apply_return(record: EquipmentRecord, qty: int) -> AvailabilityChange:
    change = plan_return(record, qty)
    apply_change(record, change)
    return change


def apply_loss(checkout: CheckoutRecord, notes: Optional[str] = None) -> CheckoutRecord:
    # the hold stays outstanding, so the cached count does not move
    return transition_checkout(checkout, CheckoutTrigger.LOSE, notes=notes)


# ---------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------
def refresh_overdue(checkouts: Iterable[CheckoutRecord], now: Optional[datetime] = None) -> List[CheckoutRecord]:
    now = now or datetime.now()
    changed = []
    for c in checkouts:
        if c.status == CheckoutStatus.ACTIVE and c.due_date < now.date():
            transition_checkout(c, CheckoutTrigger.DUE_PASSED, now)
            changed.append(c)
    if changed:
        logger.info("%d checkout(s) became overdue", len(changed))
    return changed


def reconcile(records: Iterable[EquipmentRecord], checkouts: Iterable[CheckoutRecord]) -> List[AvailabilityChange]:
    """Recompute every cached count from the checkout set; returns only the drifted records."""
    open_checkouts = [c for c in checkouts if c.status in OUTSTANDING_STATUSES]
    changes = []
    for rec in records:
        true_qty = available_quantity(rec, open_checkouts)
        new_status = settle_status(rec.status, true_qty)
        if true_qty != rec.available_quantity or new_status != rec.status:
            logger.warning("Availability drift on %s: cached %s, computed %s",
                           rec.id, rec.available_quantity, true_qty)
            changes.append(AvailabilityChange(rec.id, rec.available_quantity, true_qty, rec.status, new_status))
    return changes


# ---------------------------------------------------------------------
# Per-record update locks
# ---------------------------------------------------------------------
class RecordLocks:
    """In-process locks so check-then-act on one record is a single unit."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, equipment_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(equipment_id, threading.Lock())

    @contextmanager
    def hold(self, equipment_ids: Iterable[str], timeout: Optional[float] = None) -> Iterator[None]:
        timeout = self.timeout if timeout is None else timeout
        acquired: List[threading.Lock] = []
        try:
            # sorted order avoids lock-order deadlocks between sessions
            for eid in sorted(set(equipment_ids)):
                lock = self._lock_for(eid)
                if not lock.acquire(timeout=timeout):
                    raise ConflictError(f"Equipment {eid} is being updated elsewhere, please retry")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


record_locks = RecordLocks()
