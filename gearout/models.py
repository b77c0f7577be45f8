# gearout/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple


# ---------------------------
# Status vocabularies
# ---------------------------

class EquipmentStatus(str, Enum):
    AVAILABLE = "available"
    CHECKED_OUT = "checked-out"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"
    LOST = "lost"


class CheckoutStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"
    LOST = "lost"


class DeliveryNoteStatus(str, Enum):
    ACTIVE = "active"
    PARTIAL = "partial"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"


class QrType(str, Enum):
    INDIVIDUAL = "individual"
    BATCH = "batch"


# holds that still keep a unit out of stock
OUTSTANDING_STATUSES = frozenset({CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE, CheckoutStatus.LOST})


# ---------------------------
# Catalog
# ---------------------------

@dataclass
class EquipmentRecord:
    id: str
    name: str
    serial_number: str
    total_quantity: int = 1
    available_quantity: Optional[int] = None
    status: EquipmentStatus = EquipmentStatus.AVAILABLE
    article_number: Optional[str] = None
    qr_type: QrType = QrType.INDIVIDUAL
    category: str = ""
    location: str = ""
    description: str = ""

    def __post_init__(self):
        self.status = EquipmentStatus(self.status)
        self.qr_type = QrType(self.qr_type)
        if self.total_quantity < 1:
            raise ValueError(f"total_quantity must be >= 1 (got {self.total_quantity})")
        if self.available_quantity is None:
            self.available_quantity = self.total_quantity
        self.available_quantity = max(0, min(int(self.available_quantity), self.total_quantity))

    @property
    def label(self) -> str:
        return f"{self.name} [{self.serial_number}]" if self.serial_number else self.name


@dataclass
class EquipmentInstance:
    id: str
    equipment_id: str
    instance_number: int
    qr_code: str
    status: EquipmentStatus = EquipmentStatus.AVAILABLE

    def __post_init__(self):
        self.status = EquipmentStatus(self.status)


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Read-only view of the catalog handed to the core per operation.

    Record order matters: resolution ties go to the first record.
    """
    records: Tuple[EquipmentRecord, ...] = ()
    instances: Tuple[EquipmentInstance, ...] = ()
    version: int = 0

    @classmethod
    def of(cls, records: Iterable[EquipmentRecord], instances: Iterable[EquipmentInstance] = (), version: int = 0):
        return cls(tuple(records), tuple(instances), version)

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, equipment_id: str) -> Optional[EquipmentRecord]:
        for rec in self.records:
            if rec.id == equipment_id:
                return rec
        return None

    def instances_of(self, equipment_id: str) -> List[EquipmentInstance]:
        return sorted(
            (i for i in self.instances if i.equipment_id == equipment_id),
            key=lambda i: i.instance_number,
        )


# ---------------------------
# Parties
# ---------------------------

@dataclass
class User:
    id: str
    first_name: str
    last_name: str
    email: str = ""
    phone: str = ""
    department: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ---------------------------
# Checkouts
# ---------------------------

@dataclass
class CheckoutRecord:
    id: str
    equipment_id: str
    user_id: str
    checkout_date: datetime
    due_date: date
    status: CheckoutStatus = CheckoutStatus.ACTIVE
    delivery_note_id: Optional[str] = None
    instance_id: Optional[str] = None
    return_date: Optional[datetime] = None
    notes: Optional[str] = None

    def __post_init__(self):
        self.status = CheckoutStatus(self.status)

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_STATUSES


@dataclass
class DeliveryNote:
    id: str
    user_id: str
    issue_date: datetime
    due_date: date
    number: str = ""
    notes: Optional[str] = None
    checkouts: List[CheckoutRecord] = field(default_factory=list)

    @property
    def status(self) -> DeliveryNoteStatus:
        return delivery_note_status(self.checkouts)

    @property
    def item_count(self) -> int:
        return len(self.checkouts)


def delivery_note_status(checkouts: Iterable[CheckoutRecord]) -> DeliveryNoteStatus:
    statuses = [c.status for c in checkouts]
    if any(s == CheckoutStatus.LOST for s in statuses):
        return DeliveryNoteStatus.LOST
    if any(s == CheckoutStatus.OVERDUE for s in statuses):
        return DeliveryNoteStatus.OVERDUE
    returned = [s == CheckoutStatus.RETURNED for s in statuses]
    if returned and all(returned):
        return DeliveryNoteStatus.RETURNED
    if any(returned):
        return DeliveryNoteStatus.PARTIAL
    return DeliveryNoteStatus.ACTIVE


@dataclass
class CheckoutItem:
    """Cart line inside an in-progress checkout session (never persisted)."""
    equipment: EquipmentRecord
    quantity: int = 1
    # units scanned by instance QR code, at most `quantity` of them
    instances: List[EquipmentInstance] = field(default_factory=list)

    @property
    def equipment_id(self) -> str:
        return self.equipment.id
