"""Tests for availability accounting and status transitions."""

from datetime import date, datetime

import pytest

from gearout.errors import ConflictError, InvalidTransition, Unavailable, ValidationError
from gearout.ledger import (
    CheckoutTrigger,
    EquipmentTrigger,
    RecordLocks,
    apply_checkout,
    apply_loss,
    apply_return,
    available_quantity,
    can_checkout,
    ensure_available,
    plan_checkout,
    plan_resize,
    plan_status,
    reconcile,
    refresh_overdue,
    require_transition,
    transition_checkout,
)
from gearout.models import (
    CheckoutRecord,
    CheckoutStatus,
    DeliveryNoteStatus,
    EquipmentRecord,
    EquipmentStatus,
    delivery_note_status,
)

NOW = datetime(2026, 10, 18, 9, 30)


def record(total=2, available=None, status=EquipmentStatus.AVAILABLE, id="X1"):
    return EquipmentRecord(id=id, name="Cordless drill", serial_number="SN-100",
                           total_quantity=total, available_quantity=available, status=status)


def checkout(status=CheckoutStatus.ACTIVE, equipment_id="X1", due=date(2026, 10, 25), id="c1"):
    return CheckoutRecord(id=id, equipment_id=equipment_id, user_id="u1",
                          checkout_date=NOW, due_date=due, status=status)


# =============================================================================
# available_quantity
# =============================================================================

class TestAvailableQuantity:

    @pytest.mark.parametrize("status", [CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE, CheckoutStatus.LOST])
    def test_outstanding_holds_reduce_stock(self, status):
        assert available_quantity(record(total=3), [checkout(status)]) == 2

    def test_returned_checkouts_do_not_count(self):
        assert available_quantity(record(total=3), [checkout(CheckoutStatus.RETURNED)]) == 3

    def test_other_equipment_is_ignored(self):
        assert available_quantity(record(total=3), [checkout(equipment_id="X2")]) == 3

    def test_maintenance_takes_one_unit(self):
        rec = record(total=3, status=EquipmentStatus.MAINTENANCE)
        assert available_quantity(rec, [checkout()]) == 1

    def test_retired_is_zero(self):
        assert available_quantity(record(total=3, status=EquipmentStatus.RETIRED), []) == 0

    def test_never_negative(self):
        holds = [checkout(id=f"c{i}") for i in range(5)]
        assert available_quantity(record(total=2), holds) == 0


# =============================================================================
# Availability checks
# =============================================================================

class TestCanCheckout:

    def test_enough_stock(self):
        assert can_checkout(record(total=2), 1)
        assert can_checkout(record(total=2), 2)

    def test_cart_counts_against_stock(self):
        assert not can_checkout(record(total=2), 1, already_in_cart=2)

    @pytest.mark.parametrize("status, reason", [
        (EquipmentStatus.MAINTENANCE, "maintenance"),
        (EquipmentStatus.RETIRED, "retired"),
        (EquipmentStatus.LOST, "lost"),
    ])
    def test_blocking_status(self, status, reason):
        rec = record(total=2, status=status)
        assert not can_checkout(rec, 1)
        with pytest.raises(Unavailable) as exc:
            ensure_available(rec, 1)
        assert exc.value.reason == reason
        assert exc.value.to_dict()["reason"] == reason

    def test_exhausted(self):
        with pytest.raises(Unavailable) as exc:
            ensure_available(record(total=1, available=0, status=EquipmentStatus.CHECKED_OUT), 1)
        assert exc.value.reason == "quantity-exhausted"

    def test_exhausted_while_available(self):
        with pytest.raises(Unavailable) as exc:
            ensure_available(record(total=2, available=1), 2)
        assert exc.value.reason == "quantity-exhausted"
        assert exc.value.code == 409

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            ensure_available(record(), 0)


# =============================================================================
# Counter changes
# =============================================================================

class TestCounter:

    def test_checkout_last_unit_flips_status(self):
        rec = record(total=1)
        change = apply_checkout(rec, 1)
        assert (rec.available_quantity, rec.status) == (0, EquipmentStatus.CHECKED_OUT)
        assert change.expected_quantity == 1
        assert change.delta == -1

    def test_checkout_more_than_available(self):
        with pytest.raises(Unavailable):
            plan_checkout(record(total=2, available=1), 2)

    def test_return_promotes_and_clamps(self):
        rec = record(total=2, available=0, status=EquipmentStatus.CHECKED_OUT)
        apply_return(rec, 1)
        assert (rec.available_quantity, rec.status) == (1, EquipmentStatus.AVAILABLE)
        apply_return(rec, 5)
        assert rec.available_quantity == 2

    def test_return_to_retired_stays_zero(self):
        rec = record(total=2, available=0, status=EquipmentStatus.RETIRED)
        apply_return(rec, 1)
        assert (rec.available_quantity, rec.status) == (0, EquipmentStatus.RETIRED)

    def test_return_while_in_maintenance_keeps_status(self):
        rec = record(total=3, available=0, status=EquipmentStatus.MAINTENANCE)
        holds = [checkout(id="a"), checkout(id="b")]
        apply_return(rec, 1)
        assert (rec.available_quantity, rec.status) == (1, EquipmentStatus.MAINTENANCE)
        assert rec.available_quantity == available_quantity(rec, holds[1:])

    def test_return_never_frees_the_maintenance_unit(self):
        rec = record(total=1, available=0, status=EquipmentStatus.MAINTENANCE)
        apply_return(rec, 1)
        assert rec.available_quantity == available_quantity(rec, []) == 0
        assert reconcile([rec], []) == []

        rec = record(total=3, available=1, status=EquipmentStatus.MAINTENANCE)
        apply_return(rec, 5)
        assert rec.available_quantity == available_quantity(rec, []) == 2

    def test_resize_recomputes_from_holds(self):
        rec = record(total=3, available=1, status=EquipmentStatus.MAINTENANCE)
        change = plan_resize(rec, 2, [checkout()])
        assert (change.new_quantity, change.new_status) == (0, EquipmentStatus.MAINTENANCE)
        change = plan_resize(record(total=3, available=1), 2, [checkout(), checkout(id="c2")])
        assert (change.new_quantity, change.new_status) == (0, EquipmentStatus.CHECKED_OUT)

    def test_loss_keeps_hold(self):
        c = checkout()
        apply_loss(c, notes="left on site")
        assert c.status == CheckoutStatus.LOST
        assert c.is_outstanding
        assert c.notes == "left on site"

    def test_sequence_stays_in_bounds(self):
        rec = record(total=3)
        for op in ["out", "out", "in", "out", "out", "in", "in", "in", "in"]:
            if op == "out" and can_checkout(rec, 1):
                apply_checkout(rec, 1)
            elif op == "in":
                apply_return(rec, 1)
            assert 0 <= rec.available_quantity <= rec.total_quantity
            assert (rec.status == EquipmentStatus.CHECKED_OUT) == (rec.available_quantity == 0)


# =============================================================================
# Transitions
# =============================================================================

class TestTransitions:

    def test_retired_cannot_come_back(self):
        with pytest.raises(InvalidTransition):
            require_transition(EquipmentStatus.RETIRED, EquipmentTrigger.MAINTENANCE_END)
        with pytest.raises(InvalidTransition):
            plan_status(record(status=EquipmentStatus.RETIRED), EquipmentTrigger.FOUND, [])

    def test_maintenance_round_trip(self):
        rec = record(total=3, available=2)
        start = plan_status(rec, EquipmentTrigger.MAINTENANCE_START, [checkout()])
        assert (start.new_status, start.new_quantity) == (EquipmentStatus.MAINTENANCE, 1)
        rec.status, rec.available_quantity = start.new_status, start.new_quantity
        end = plan_status(rec, EquipmentTrigger.MAINTENANCE_END, [checkout()])
        assert (end.new_status, end.new_quantity) == (EquipmentStatus.AVAILABLE, 2)

    def test_found_with_everything_out_settles_to_checked_out(self):
        rec = record(total=1, available=0, status=EquipmentStatus.LOST)
        change = plan_status(rec, EquipmentTrigger.FOUND, [checkout()])
        assert (change.new_status, change.new_quantity) == (EquipmentStatus.CHECKED_OUT, 0)

    def test_retire_zeroes_stock(self):
        change = plan_status(record(total=4), EquipmentTrigger.RETIRE, [])
        assert (change.new_status, change.new_quantity) == (EquipmentStatus.RETIRED, 0)

    def test_return_sets_date_and_notes(self):
        c = checkout()
        c.notes = "scratched"
        transition_checkout(c, CheckoutTrigger.RETURN, NOW, "cleaned")
        assert c.status == CheckoutStatus.RETURNED
        assert c.return_date == NOW
        assert c.notes == "scratched\ncleaned"

    def test_returned_is_terminal(self):
        c = checkout(CheckoutStatus.RETURNED)
        for trigger in CheckoutTrigger:
            with pytest.raises(InvalidTransition):
                transition_checkout(c, trigger, NOW)

    def test_lost_can_be_recovered(self):
        c = checkout(CheckoutStatus.LOST)
        transition_checkout(c, CheckoutTrigger.RECOVER, NOW)
        assert c.status == CheckoutStatus.RETURNED


# =============================================================================
# Sweeps
# =============================================================================

def test_refresh_overdue():
    late = checkout(due=date(2026, 10, 17), id="late")
    today = checkout(due=date(2026, 10, 18), id="today")
    lost = checkout(CheckoutStatus.LOST, due=date(2026, 10, 1), id="lost")
    changed = refresh_overdue([late, today, lost], NOW)
    assert changed == [late]
    assert late.status == CheckoutStatus.OVERDUE
    assert today.status == CheckoutStatus.ACTIVE
    assert lost.status == CheckoutStatus.LOST


def test_reconcile_reports_only_drift():
    drifted = record(total=2, available=2, id="X1")
    steady = record(total=2, available=1, id="X2")
    holds = [checkout(equipment_id="X1", id="a"), checkout(equipment_id="X2", id="b"),
             checkout(CheckoutStatus.RETURNED, equipment_id="X1", id="c")]
    changes = reconcile([drifted, steady], holds)
    assert len(changes) == 1
    assert (changes[0].equipment_id, changes[0].expected_quantity, changes[0].new_quantity) == ("X1", 2, 1)


def test_reconcile_fixes_status_with_count():
    rec = record(total=1, available=1)
    [change] = reconcile([rec], [checkout()])
    assert (change.new_quantity, change.new_status) == (0, EquipmentStatus.CHECKED_OUT)


# =============================================================================
# Delivery note status
# =============================================================================

@pytest.mark.parametrize("statuses, expected", [
    ([CheckoutStatus.ACTIVE, CheckoutStatus.ACTIVE], DeliveryNoteStatus.ACTIVE),
    ([CheckoutStatus.RETURNED, CheckoutStatus.ACTIVE], DeliveryNoteStatus.PARTIAL),
    ([CheckoutStatus.RETURNED, CheckoutStatus.RETURNED], DeliveryNoteStatus.RETURNED),
    ([CheckoutStatus.RETURNED, CheckoutStatus.OVERDUE], DeliveryNoteStatus.OVERDUE),
    ([CheckoutStatus.OVERDUE, CheckoutStatus.LOST], DeliveryNoteStatus.LOST),
    ([], DeliveryNoteStatus.ACTIVE),
])
def test_delivery_note_status(statuses, expected):
    checkouts = [checkout(s, id=f"c{i}") for i, s in enumerate(statuses)]
    assert delivery_note_status(checkouts) == expected


# =============================================================================
# Locks
# =============================================================================

def test_record_locks_time_out():
    locks = RecordLocks(timeout=0.05)
    with locks.hold(["X1", "X2"]):
        with pytest.raises(ConflictError):
            with locks.hold(["X2"]):
                pass
    # released afterwards
    with locks.hold(["X2", "X1"]):
        pass
