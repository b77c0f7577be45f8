"""
SQL persistence gateway.

The checkout core talks to storage only through this object. Writes that must
succeed or fail together run inside ``gateway.transaction()``::

    with gateway.transaction() as tx:
        note_id = tx.create_delivery_note(note)
        tx.create_checkout_records(records)
        tx.update_equipment_availability(eid, new_qty, new_status, expected_qty=old_qty)

Leaving the block commits; any exception rolls everything back. Availability
updates are conditional (``WHERE available_quantity = :expected``), so a
concurrent writer turns into a ``ConflictError`` rather than a lost update.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Set

import streamlit as st
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .db import create_db_and_tables, get_engine
from .db_models import CheckoutRow, DeliveryNoteRow, EquipmentRow, InstanceRow, UserRow
from .errors import ConflictError, GearOutError, PersistenceError, ValidationError
from .models import (
    OUTSTANDING_STATUSES,
    CatalogSnapshot,
    CheckoutRecord,
    CheckoutStatus,
    DeliveryNote,
    EquipmentInstance,
    EquipmentRecord,
    EquipmentStatus,
    User,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


def new_note_number(issued: datetime) -> str:
    return f"DN-{issued:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


# ---------------------------------------------------------------------
# Row <-> domain mapping (snake_case on both sides)
# ---------------------------------------------------------------------
def to_record(row: EquipmentRow) -> EquipmentRecord:
    return EquipmentRecord(
        id=row.id, name=row.name, serial_number=row.serial_number,
        article_number=row.article_number, total_quantity=row.total_quantity,
        available_quantity=row.available_quantity, status=row.status, qr_type=row.qr_type,
        category=row.category, location=row.location, description=row.description,
    )


def to_instance(row: InstanceRow) -> EquipmentInstance:
    return EquipmentInstance(
        id=row.id, equipment_id=row.equipment_id, instance_number=row.instance_number,
        qr_code=row.qr_code, status=row.status,
    )


def to_checkout(row: CheckoutRow) -> CheckoutRecord:
    return CheckoutRecord(
        id=row.id, equipment_id=row.equipment_id, user_id=row.user_id,
        delivery_note_id=row.delivery_note_id, instance_id=row.instance_id,
        status=row.status, checkout_date=row.checkout_date, due_date=row.due_date,
        return_date=row.return_date, notes=row.notes,
    )


def to_user(row: UserRow) -> User:
    return User(
        id=row.id, first_name=row.first_name, last_name=row.last_name,
        email=row.email, phone=row.phone, department=row.department,
    )


def _held_instances(session: Session, instance_ids: Iterable[str]) -> Set[str]:
    """Instance ids among the given ones that an outstanding checkout still holds."""
    ids = list(set(instance_ids))
    if not ids:
        return set()
    stmt = (
        select(CheckoutRow.instance_id)
        .where(CheckoutRow.instance_id.in_(ids))
        .where(CheckoutRow.status.in_([s.value for s in OUTSTANDING_STATUSES]))
    )
    return set(session.exec(stmt).all())


# ---------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------
class GatewayTransaction:
    def __init__(self, session: Session):
        self.session = session

    def create_delivery_note(self, note: DeliveryNote) -> str:
        if not note.number:
            note.number = new_note_number(note.issue_date)
        self.session.add(DeliveryNoteRow(
            id=note.id, number=note.number, user_id=note.user_id,
            issue_date=note.issue_date, due_date=note.due_date, notes=note.notes,
        ))
        self.session.flush()
        return note.id

    def create_checkout_records(self, records: Iterable[CheckoutRecord]) -> bool:
        for rec in records:
            self.session.add(CheckoutRow(
                id=rec.id, equipment_id=rec.equipment_id, user_id=rec.user_id,
                delivery_note_id=rec.delivery_note_id, instance_id=rec.instance_id,
                status=rec.status.value, checkout_date=rec.checkout_date, due_date=rec.due_date,
                return_date=rec.return_date, notes=rec.notes,
            ))
        self.session.flush()
        return True

    def update_equipment_availability(self, equipment_id: str, new_qty: int, new_status: EquipmentStatus,
                                      expected_qty: Optional[int] = None, new_total: Optional[int] = None) -> bool:
        stmt = update(EquipmentRow).where(EquipmentRow.id == equipment_id)
        if expected_qty is not None:
            stmt = stmt.where(EquipmentRow.available_quantity == expected_qty)
        stmt = stmt.values(available_quantity=new_qty, status=EquipmentStatus(new_status).value)
        if new_total is not None:
            stmt = stmt.values(total_quantity=new_total)
        result = self.session.connection().execute(stmt)
        if result.rowcount != 1:
            raise ConflictError(
                f"Availability of {equipment_id} changed (expected {expected_qty})",
                payload={"equipment_id": equipment_id},
            )
        return True

    def set_instance_status(self, equipment_id: str, new_status: EquipmentStatus, from_statuses,
                            instance_id: Optional[str] = None) -> int:
        """Move the parent's instances (or one of them) out of the given statuses; returns rows changed."""
        stmt = (
            update(InstanceRow)
            .where(InstanceRow.equipment_id == equipment_id)
            .where(InstanceRow.status.in_([EquipmentStatus(s).value for s in from_statuses]))
            .values(status=EquipmentStatus(new_status).value)
        )
        if instance_id is not None:
            stmt = stmt.where(InstanceRow.id == instance_id)
        return self.session.connection().execute(stmt).rowcount

    def held_instances(self, instance_ids: Iterable[str]) -> Set[str]:
        return _held_instances(self.session, instance_ids)

    def _set_checkout_status(self, checkout_id: str, new_status: CheckoutStatus, from_statuses,
                             notes: Optional[str], return_date: Optional[datetime] = None) -> bool:
        values = {"status": new_status.value}
        if notes is not None:
            values["notes"] = notes
        if return_date is not None:
            values["return_date"] = return_date
        stmt = (
            update(CheckoutRow)
            .where(CheckoutRow.id == checkout_id)
            .where(CheckoutRow.status.in_([s.value for s in from_statuses]))
            .values(**values)
        )
        if self.session.connection().execute(stmt).rowcount != 1:
            raise ConflictError(f"Checkout {checkout_id} was already settled elsewhere",
                                payload={"checkout_id": checkout_id})
        return True

    def mark_returned(self, checkout_id: str, notes: Optional[str] = None,
                      return_date: Optional[datetime] = None) -> bool:
        return self._set_checkout_status(
            checkout_id, CheckoutStatus.RETURNED, (CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE),
            notes, return_date or datetime.now(),
        )

    def mark_lost(self, checkout_id: str, notes: Optional[str] = None) -> bool:
        return self._set_checkout_status(
            checkout_id, CheckoutStatus.LOST, (CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE), notes,
        )

    def mark_recovered(self, checkout_id: str, notes: Optional[str] = None,
                       return_date: Optional[datetime] = None) -> bool:
        return self._set_checkout_status(
            checkout_id, CheckoutStatus.RETURNED, (CheckoutStatus.LOST,), notes, return_date or datetime.now(),
        )

    def mark_overdue(self, checkout_id: str) -> bool:
        return self._set_checkout_status(checkout_id, CheckoutStatus.OVERDUE, (CheckoutStatus.ACTIVE,), None)


# ---------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------
class SqlGateway:
    def __init__(self, db_url: Optional[str] = None, timeout: Optional[float] = None, create: bool = True):
        self.db_url = db_url
        self.timeout = timeout
        if create:
            create_db_and_tables(db_url, timeout)

    @property
    def engine(self):
        return get_engine(self.db_url, self.timeout)

    @contextmanager
    def transaction(self) -> Iterator[GatewayTransaction]:
        session = Session(self.engine)
        try:
            yield GatewayTransaction(session)
            session.commit()
        except GearOutError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Persistence failure, transaction rolled back: %s", e)
            raise PersistenceError() from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _reading(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Read failure: %s", e)
            raise PersistenceError("Could not load data, please retry") from e

    # -- catalog ------------------------------------------------------
    def load_catalog(self, version: int = 0) -> CatalogSnapshot:
        with self._reading() as s:
            rows = s.exec(select(EquipmentRow).order_by(EquipmentRow.position, EquipmentRow.created_at)).all()
            inst = s.exec(select(InstanceRow).order_by(InstanceRow.equipment_id, InstanceRow.instance_number)).all()
            return CatalogSnapshot.of([to_record(r) for r in rows], [to_instance(i) for i in inst], version)

    def fetch_equipment(self, equipment_ids: Iterable[str]) -> Dict[str, EquipmentRecord]:
        ids = list(set(equipment_ids))
        with self._reading() as s:
            rows = s.exec(select(EquipmentRow).where(EquipmentRow.id.in_(ids))).all()
            return {r.id: to_record(r) for r in rows}

    def add_equipment(self, record: EquipmentRecord, instances: Iterable[EquipmentInstance] = ()) -> str:
        with self.transaction() as tx:
            s = tx.session
            last = s.exec(select(func.max(EquipmentRow.position))).one()
            s.add(EquipmentRow(
                id=record.id, position=(last or 0) + 1, name=record.name,
                serial_number=record.serial_number, article_number=record.article_number,
                total_quantity=record.total_quantity, available_quantity=record.available_quantity,
                status=record.status.value, qr_type=record.qr_type.value, category=record.category,
                location=record.location, description=record.description,
            ))
            s.flush()
            for i in instances:
                s.add(InstanceRow(id=i.id, equipment_id=i.equipment_id, instance_number=i.instance_number,
                                  qr_code=i.qr_code, status=i.status.value))
        logger.info("Added equipment %s (%s x%d)", record.id, record.name, record.total_quantity)
        return record.id

    def held_instances(self, instance_ids: Iterable[str]) -> Set[str]:
        with self._reading() as s:
            return _held_instances(s, instance_ids)

    # -- users --------------------------------------------------------
    def load_users(self) -> List[User]:
        with self._reading() as s:
            rows = s.exec(select(UserRow).order_by(UserRow.last_name, UserRow.first_name)).all()
            return [to_user(r) for r in rows]

    def create_user(self, user: User) -> str:
        if not user.first_name.strip() or not user.last_name.strip():
            raise ValidationError("First and last name are required")
        with self.transaction() as tx:
            tx.session.add(UserRow(
                id=user.id, first_name=user.first_name.strip(), last_name=user.last_name.strip(),
                email=user.email, phone=user.phone, department=user.department,
            ))
        return user.id

    # -- checkouts ----------------------------------------------------
    def load_checkouts(self, statuses: Optional[Iterable[CheckoutStatus]] = None) -> List[CheckoutRecord]:
        with self._reading() as s:
            stmt = select(CheckoutRow).order_by(CheckoutRow.checkout_date)
            if statuses is not None:
                stmt = stmt.where(CheckoutRow.status.in_([CheckoutStatus(x).value for x in statuses]))
            return [to_checkout(r) for r in s.exec(stmt).all()]

    def load_delivery_notes(self) -> List[DeliveryNote]:
        with self._reading() as s:
            notes = s.exec(select(DeliveryNoteRow).order_by(DeliveryNoteRow.issue_date.desc())).all()
            rows = s.exec(select(CheckoutRow).where(CheckoutRow.delivery_note_id.is_not(None))).all()
            by_note: Dict[str, List[CheckoutRecord]] = {}
            for r in rows:
                by_note.setdefault(r.delivery_note_id, []).append(to_checkout(r))
            return [
                DeliveryNote(
                    id=n.id, number=n.number, user_id=n.user_id, issue_date=n.issue_date,
                    due_date=n.due_date, notes=n.notes, checkouts=by_note.get(n.id, []),
                )
                for n in notes
            ]


@st.cache_resource(show_spinner=False)
def get_gateway(db_url: Optional[str] = None, timeout: Optional[float] = None) -> SqlGateway:
    """One gateway per database, shared across reruns and browser sessions."""
    return SqlGateway(db_url, timeout)
