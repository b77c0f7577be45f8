"""
Checkout workflow: pick a user, collect equipment, review, commit.

::

    SELECTING_USER -> SELECTING_EQUIPMENT -> REVIEWING_SUMMARY -> COMMITTED
                   <-                     <-

Nothing touches storage or availability counters before ``commit()``, so
going back or abandoning a session leaves no trace. ``commit()`` writes the
delivery note, one checkout per unit and the conditional availability updates
in a single gateway transaction. A failed commit keeps the session in
REVIEWING_SUMMARY so it can be retried as is.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .catalog import persist_changes, refresh_records
from .errors import ConflictError, InvalidTransition, NotFound, Unavailable, ValidationError
from .gateway import SqlGateway, new_id
from .ledger import (
    BLOCKING_STATUSES,
    AvailabilityChange,
    apply_change,
    ensure_available,
    plan_checkout,
    record_locks,
)
from .models import (
    CatalogSnapshot,
    CheckoutItem,
    CheckoutRecord,
    DeliveryNote,
    EquipmentInstance,
    EquipmentRecord,
    User,
)
from .resolver import Match, resolve

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    SELECTING_USER = "selecting-user"
    SELECTING_EQUIPMENT = "selecting-equipment"
    REVIEWING_SUMMARY = "reviewing-summary"
    COMMITTED = "committed"


_BACK = {
    SessionState.SELECTING_EQUIPMENT: SessionState.SELECTING_USER,
    SessionState.REVIEWING_SUMMARY: SessionState.SELECTING_EQUIPMENT,
}


class CheckoutSession:
    def __init__(
        self,
        gateway: SqlGateway,
        catalog: CatalogSnapshot,
        notifier=None,
        locks=record_locks,
        clock: Callable[[], datetime] = datetime.now,
        similarity_threshold: float = 0.70,
        min_fuzzy_length: int = 4,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.notifier = notifier
        self.locks = locks
        self.clock = clock
        self.similarity_threshold = similarity_threshold
        self.min_fuzzy_length = min_fuzzy_length

        self.state = SessionState.SELECTING_USER
        self.user: Optional[User] = None
        self.cart: List[CheckoutItem] = []
        self.due_date: Optional[date] = None
        self.notes: Optional[str] = None
        self.delivery_note: Optional[DeliveryNote] = None
        self.last_match: Optional[Match] = None

    # ------------------------------------------------------------------
    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"Not allowed while {self.state.value} (needs {allowed})")

    def find_item(self, equipment_id: str) -> Optional[CheckoutItem]:
        for item in self.cart:
            if item.equipment_id == equipment_id:
                return item
        return None

    @property
    def unit_count(self) -> int:
        return sum(item.quantity for item in self.cart)

    # ---- SELECTING_USER ------------------------------------------------
    def select_user(self, user: Optional[User]) -> None:
        self._require(SessionState.SELECTING_USER)
        if user is None:
            raise ValidationError("Select a user first")
        self.user = user
        self.state = SessionState.SELECTING_EQUIPMENT

    def create_user(self, first_name: str, last_name: str, email: str = "", phone: str = "",
                    department: str = "") -> User:
        self._require(SessionState.SELECTING_USER)
        user = User(id=new_id(), first_name=first_name, last_name=last_name,
                    email=email, phone=phone, department=department)
        self.gateway.create_user(user)
        self.select_user(user)
        return user

    # ---- SELECTING_EQUIPMENT -------------------------------------------
    def scan(self, raw_code: str) -> CheckoutItem:
        """Resolve a scanned code and add one unit of it to the cart."""
        self._require(SessionState.SELECTING_EQUIPMENT)
        hit = resolve(raw_code, self.catalog, threshold=self.similarity_threshold,
                      min_length=self.min_fuzzy_length)
        if not hit.found:
            raise NotFound(hit.describe(), variants=hit.variants)
        self.last_match = hit
        return self.add(hit.record, 1, hit.instance)

    def add(self, record: EquipmentRecord, quantity: int = 1,
            instance: Optional[EquipmentInstance] = None) -> CheckoutItem:
        self._require(SessionState.SELECTING_EQUIPMENT)
        item = self.find_item(record.id)
        if instance is not None and item is not None and any(i.id == instance.id for i in item.instances):
            raise ValidationError(f"{record.name} #{instance.instance_number} is already in the cart")
        if instance is not None:
            self._check_instance(record, instance)
        ensure_available(record, quantity, item.quantity if item else 0)

        if item is None:
            item = CheckoutItem(equipment=record, quantity=quantity)
            self.cart.append(item)
        else:
            item.quantity += quantity
        if instance is not None:
            item.instances.append(instance)
        logger.debug("Cart: %s x%d", record.id, item.quantity)
        return item

    def _check_instance(self, record: EquipmentRecord, instance: EquipmentInstance) -> None:
        label = f"{record.name} #{instance.instance_number}"
        reason = BLOCKING_STATUSES.get(instance.status)
        if reason:
            raise Unavailable(f"{label} is not available ({reason})", reason=reason,
                              payload={"equipment_id": record.id, "instance_id": instance.id})
        if self.gateway.held_instances([instance.id]):
            raise Unavailable(f"{label} is already checked out", reason="checked-out",
                              payload={"equipment_id": record.id, "instance_id": instance.id})

    def set_quantity(self, equipment_id: str, quantity: int) -> None:
        self._require(SessionState.SELECTING_EQUIPMENT, SessionState.REVIEWING_SUMMARY)
        item = self.find_item(equipment_id)
        if item is None:
            raise ValidationError(f"Equipment {equipment_id} is not in the cart")
        if quantity <= 0:
            self.remove(equipment_id)
            return
        if quantity < len(item.instances):
            raise ValidationError(f"{len(item.instances)} unit(s) of {item.equipment.name} were scanned individually")
        ensure_available(item.equipment, quantity)
        item.quantity = quantity

    def remove(self, equipment_id: str) -> None:
        self._require(SessionState.SELECTING_EQUIPMENT, SessionState.REVIEWING_SUMMARY)
        self.cart = [item for item in self.cart if item.equipment_id != equipment_id]
        if not self.cart and self.state == SessionState.REVIEWING_SUMMARY:
            self.state = SessionState.SELECTING_EQUIPMENT

    def review(self) -> None:
        self._require(SessionState.SELECTING_EQUIPMENT)
        if not self.cart:
            raise ValidationError("Add at least one item before continuing")
        self.state = SessionState.REVIEWING_SUMMARY

    # ---- navigation ----------------------------------------------------
    def back(self) -> SessionState:
        if self.state not in _BACK:
            raise InvalidTransition(f"Cannot go back from {self.state.value}")
        self.state = _BACK[self.state]
        return self.state

    def cancel(self) -> None:
        """Abandon the workflow. Nothing was written, so there is nothing to undo."""
        self._require(SessionState.SELECTING_USER, SessionState.SELECTING_EQUIPMENT,
                      SessionState.REVIEWING_SUMMARY)
        self.state = SessionState.SELECTING_USER
        self.user = None
        self.cart = []
        self.due_date = None
        self.notes = None
        self.last_match = None

    # ---- REVIEWING_SUMMARY ---------------------------------------------
    def set_due_date(self, due: Optional[date], notes: Optional[str] = None) -> None:
        self._require(SessionState.REVIEWING_SUMMARY)
        if due is None:
            raise ValidationError("Pick a return date")
        if due < self.clock().date():
            raise ValidationError("Return date cannot be in the past")
        self.due_date = due
        self.notes = (notes or "").strip() or None

    def _validate_commit(self) -> None:
        self._require(SessionState.REVIEWING_SUMMARY)
        if self.user is None:
            raise ValidationError("Select a user first")
        if not self.cart:
            raise ValidationError("The cart is empty")
        if self.due_date is None:
            raise ValidationError("Pick a return date")
        if self.due_date < self.clock().date():
            raise ValidationError("Return date cannot be in the past")

    def _build(self, now: datetime):
        note = DeliveryNote(
            id=new_id(), user_id=self.user.id, issue_date=now,
            due_date=self.due_date, notes=self.notes,
        )
        records: List[CheckoutRecord] = []
        changes: List[AvailabilityChange] = []
        for item in self.cart:
            ensure_available(item.equipment, item.quantity)
            changes.append(plan_checkout(item.equipment, item.quantity))
            for n in range(item.quantity):
                inst = item.instances[n] if n < len(item.instances) else None
                records.append(CheckoutRecord(
                    id=new_id(), equipment_id=item.equipment_id, user_id=self.user.id,
                    delivery_note_id=note.id, instance_id=inst.id if inst else None,
                    checkout_date=now, due_date=self.due_date, notes=self.notes,
                ))
        return note, records, changes

    def _write(self):
        note, records, changes = self._build(self.clock())
        with self.gateway.transaction() as tx:
            held = tx.held_instances(r.instance_id for r in records if r.instance_id)
            if held:
                raise Unavailable(f"{len(held)} scanned unit(s) went out on another delivery note",
                                  reason="checked-out", payload={"instance_ids": sorted(held)})
            tx.create_delivery_note(note)
            tx.create_checkout_records(records)
            persist_changes(tx, changes)
        return note, records, changes

    def commit(self) -> DeliveryNote:
        self._validate_commit()
        equipment = [item.equipment for item in self.cart]

        with self.locks.hold(r.id for r in equipment):
            try:
                note, records, changes = self._write()
            except ConflictError:
                logger.warning("Stock changed during commit, refetching and retrying once")
                refresh_records(self.gateway, equipment)
                try:
                    note, records, changes = self._write()
                except (ConflictError, Unavailable) as e:
                    logger.warning("Commit retry failed: %s", e)
                    raise ConflictError("Stock changed, please retry") from e
            except Unavailable as e:
                # the cart was valid when filled; the shared record moved since
                raise ConflictError("Stock changed, please retry") from e

            by_id: Dict[str, EquipmentRecord] = {r.id: r for r in equipment}
            for ch in changes:
                apply_change(by_id[ch.equipment_id], ch)

        note.checkouts = records
        self.delivery_note = note
        self.state = SessionState.COMMITTED
        logger.info("Delivery note %s: %d unit(s) for %s", note.number, len(records), self.user.id)
        self._notify(note)
        return note

    def _notify(self, note: DeliveryNote) -> None:
        if self.notifier is None:
            return
        lines = len(self.cart)
        try:
            self.notifier.notify(
                "checkout",
                "New equipment checkout",
                f"Delivery note {note.number} created for {self.user.full_name} "
                f"({lines} item{'s' if lines > 1 else ''}, {note.item_count} unit(s))",
                {
                    "note_number": note.number,
                    "user_name": self.user.full_name,
                    "user_department": self.user.department,
                    "equipment_count": note.item_count,
                },
            )
        except Exception:
            # the commit already happened; a notification failure must not undo it
            logger.exception("Notification for %s failed", note.number)
