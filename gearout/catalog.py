# gearout/catalog.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from .errors import ConflictError, InvalidTransition, ValidationError
from .gateway import SqlGateway, new_id
from .ledger import (
    AvailabilityChange,
    EquipmentTrigger,
    apply_change,
    plan_resize,
    plan_status,
    reconcile,
    record_locks,
    refresh_overdue,
    require_transition,
)
from .models import (
    OUTSTANDING_STATUSES,
    CheckoutRecord,
    CheckoutStatus,
    EquipmentInstance,
    EquipmentRecord,
    EquipmentStatus,
    QrType,
)

logger = logging.getLogger(__name__)


# ---- Stock provisioning ---------------------------------------------------------
def provision_instances(record: EquipmentRecord, count: Optional[int] = None,
                        start: int = 1) -> List[EquipmentInstance]:
    """One instance (own QR code) per physical unit of an individual-QR record."""
    if record.qr_type != QrType.INDIVIDUAL:
        return []
    count = record.total_quantity if count is None else count
    base = record.serial_number or record.id
    return [
        EquipmentInstance(
            id=new_id(), equipment_id=record.id, instance_number=n,
            qr_code=f"{base}-{n:03d}",
        )
        for n in range(start, start + count)
    ]


def register_equipment(gateway: SqlGateway, record: EquipmentRecord) -> List[EquipmentInstance]:
    instances = provision_instances(record)
    gateway.add_equipment(record, instances)
    return instances


# ---- Keeping in-memory records in step with storage -----------------------------
def refresh_records(gateway: SqlGateway, records: Iterable[EquipmentRecord]) -> None:
    """Copy the stored count/status onto the given in-memory records."""
    records = list(records)
    fresh = gateway.fetch_equipment(r.id for r in records)
    for rec in records:
        row = fresh.get(rec.id)
        if row is None:
            raise ValidationError(f"Equipment {rec.id} no longer exists")
        rec.available_quantity = row.available_quantity
        rec.status = row.status
        rec.total_quantity = row.total_quantity


def persist_changes(tx, changes: Iterable[AvailabilityChange]) -> None:
    for ch in changes:
        tx.update_equipment_availability(
            ch.equipment_id, ch.new_quantity, ch.new_status, expected_qty=ch.expected_quantity,
        )


# ---- Admin actions ----------------------------------------------------------------
_ES = EquipmentStatus

# parent status change -> (new instance status, instance statuses it applies to)
INSTANCE_CASCADE = {
    EquipmentTrigger.RETIRE: (_ES.RETIRED, (_ES.AVAILABLE, _ES.CHECKED_OUT, _ES.MAINTENANCE, _ES.LOST)),
    EquipmentTrigger.DECLARE_LOST: (_ES.LOST, (_ES.AVAILABLE, _ES.CHECKED_OUT, _ES.MAINTENANCE)),
    EquipmentTrigger.FOUND: (_ES.AVAILABLE, (_ES.LOST,)),
}


def set_equipment_status(gateway: SqlGateway, record: EquipmentRecord, trigger: EquipmentTrigger,
                         open_checkouts: Optional[Iterable[CheckoutRecord]] = None,
                         locks=record_locks,
                         instances: Iterable[EquipmentInstance] = ()) -> AvailabilityChange:
    """
    Maintenance start/end, retire, declare lost, found.

    Retiring, losing and finding the record carry over to its instances in the
    same transaction; pass the in-memory instances to keep them in step too.
    """
    with locks.hold([record.id]):
        if open_checkouts is None:
            open_checkouts = gateway.load_checkouts(OUTSTANDING_STATUSES)
        change = plan_status(record, trigger, list(open_checkouts))
        cascade = INSTANCE_CASCADE.get(trigger)
        with gateway.transaction() as tx:
            persist_changes(tx, [change])
            if cascade:
                tx.set_instance_status(record.id, cascade[0], cascade[1])
        apply_change(record, change)
        if cascade:
            for inst in instances:
                if inst.equipment_id == record.id and inst.status in cascade[1]:
                    inst.status = cascade[0]
    logger.info("Equipment %s: %s -> %s (%s)", record.id, change.old_status.value,
                change.new_status.value, trigger.value)
    return change


def retire_instance(gateway: SqlGateway, record: EquipmentRecord, instance: EquipmentInstance,
                    open_checkouts: Optional[Iterable[CheckoutRecord]] = None,
                    locks=record_locks) -> AvailabilityChange:
    """
    Take one physical unit out of service for good.

    The record's total shrinks by one and its count is recomputed; retiring the
    last unit retires the record itself.
    """
    if instance.equipment_id != record.id:
        raise ValidationError(f"Instance {instance.qr_code} does not belong to {record.id}")
    if instance.status == EquipmentStatus.RETIRED:
        raise InvalidTransition(f"{instance.qr_code} is already retired")

    with locks.hold([record.id]):
        if open_checkouts is None:
            open_checkouts = gateway.load_checkouts(OUTSTANDING_STATUSES)
        open_checkouts = [c for c in open_checkouts if c.status in OUTSTANDING_STATUSES]
        if any(c.instance_id == instance.id for c in open_checkouts):
            raise ValidationError(f"{instance.qr_code} is checked out, return it first")

        if record.total_quantity <= 1:
            new_total = record.total_quantity
            change = plan_status(record, EquipmentTrigger.RETIRE, open_checkouts)
        else:
            require_transition(record.status, EquipmentTrigger.RETIRE)
            new_total = record.total_quantity - 1
            change = plan_resize(record, new_total, open_checkouts)

        with gateway.transaction() as tx:
            if tx.set_instance_status(record.id, _ES.RETIRED, [s for s in _ES if s != _ES.RETIRED],
                                      instance_id=instance.id) != 1:
                raise ConflictError(f"{instance.qr_code} was changed elsewhere, please retry")
            tx.update_equipment_availability(
                record.id, change.new_quantity, change.new_status,
                expected_qty=change.expected_quantity, new_total=new_total,
            )
        apply_change(record, change)
        record.total_quantity = new_total
        instance.status = _ES.RETIRED

    logger.info("Retired %s; %s now %d of %d available", instance.qr_code, record.id,
                record.available_quantity, record.total_quantity)
    return change


def reconcile_catalog(gateway: SqlGateway, records: Iterable[EquipmentRecord],
                      checkouts: Optional[Iterable[CheckoutRecord]] = None,
                      locks=record_locks) -> List[AvailabilityChange]:
    """Consistency sweep: rewrite every drifted cached count from the checkout set."""
    records = list(records)
    with locks.hold(r.id for r in records):
        if checkouts is None:
            checkouts = gateway.load_checkouts(OUTSTANDING_STATUSES)
        changes = reconcile(records, checkouts)
        if changes:
            with gateway.transaction() as tx:
                persist_changes(tx, changes)
            by_id = {r.id: r for r in records}
            for ch in changes:
                apply_change(by_id[ch.equipment_id], ch)
    logger.info("Reconcile: %d of %d record(s) corrected", len(changes), len(records))
    return changes


def mark_overdue(gateway: SqlGateway, checkouts: Iterable[CheckoutRecord],
                 now: Optional[datetime] = None) -> List[CheckoutRecord]:
    """Persist active -> overdue for every checkout past its due date."""
    now = now or datetime.now()
    due = [c for c in checkouts if c.status == CheckoutStatus.ACTIVE and c.due_date < now.date()]
    if not due:
        return []
    with gateway.transaction() as tx:
        for c in due:
            tx.mark_overdue(c.id)
    return refresh_overdue(due, now)
