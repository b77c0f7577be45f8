# gearout/db_models.py
from datetime import date, datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


# ---------------------------
# Catalog
# ---------------------------

class EquipmentRow(SQLModel, table=True):
    __tablename__ = "equipment"

    id: str = Field(primary_key=True)
    # catalog order: first registered first
    position: int = Field(default=0, nullable=False, index=True)

    name: str = Field(nullable=False, index=True)
    serial_number: str = Field(nullable=False, index=True)
    article_number: Optional[str] = Field(default=None, index=True)

    total_quantity: int = Field(ge=1, nullable=False)
    available_quantity: int = Field(ge=0, nullable=False)
    status: str = Field(default="available", nullable=False, index=True)
    qr_type: str = Field(default="individual", nullable=False)

    category: str = ""
    location: str = ""
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


class InstanceRow(SQLModel, table=True):
    """One physical unit of an individual-QR equipment record."""
    __tablename__ = "equipment_instance"
    __table_args__ = (UniqueConstraint("equipment_id", "instance_number", name="uq_instance_number"),)

    id: str = Field(primary_key=True)
    equipment_id: str = Field(foreign_key="equipment.id", nullable=False, index=True)
    instance_number: int = Field(ge=1, nullable=False)
    qr_code: str = Field(nullable=False, unique=True, index=True)
    status: str = Field(default="available", nullable=False)


# ---------------------------
# Parties
# ---------------------------

class UserRow(SQLModel, table=True):
    __tablename__ = "app_user"

    id: str = Field(primary_key=True)
    first_name: str = Field(nullable=False, index=True)
    last_name: str = Field(nullable=False, index=True)
    email: str = Field(default="", index=True)
    phone: str = ""
    department: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ---------------------------
# Checkouts
# ---------------------------

class DeliveryNoteRow(SQLModel, table=True):
    __tablename__ = "delivery_note"

    id: str = Field(primary_key=True)
    number: str = Field(nullable=False, unique=True, index=True)
    user_id: str = Field(foreign_key="app_user.id", nullable=False, index=True)
    issue_date: datetime = Field(nullable=False, index=True)
    due_date: date = Field(nullable=False)
    notes: Optional[str] = None


class CheckoutRow(SQLModel, table=True):
    __tablename__ = "checkout"

    id: str = Field(primary_key=True)
    equipment_id: str = Field(foreign_key="equipment.id", nullable=False, index=True)
    user_id: str = Field(foreign_key="app_user.id", nullable=False, index=True)
    delivery_note_id: Optional[str] = Field(default=None, foreign_key="delivery_note.id", index=True)
    instance_id: Optional[str] = Field(default=None, foreign_key="equipment_instance.id")

    status: str = Field(default="active", nullable=False, index=True)  # active/overdue/returned/lost
    checkout_date: datetime = Field(nullable=False)
    due_date: date = Field(nullable=False, index=True)
    return_date: Optional[datetime] = None
    notes: Optional[str] = None
