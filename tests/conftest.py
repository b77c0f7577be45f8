"""
GearOut Test Configuration

Shared fixtures: a throwaway SQLite-backed gateway, a seeded catalog and a
fixed clock.
"""

import logging
from datetime import date, datetime

import pytest

from gearout.gateway import SqlGateway
from gearout.ledger import RecordLocks
from gearout.models import EquipmentRecord, User

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

NOW = datetime(2026, 10, 18, 9, 30)
DUE = date(2026, 10, 25)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Fixed 'now' so due-date checks are repeatable."""
    return lambda: NOW


@pytest.fixture
def locks():
    """Fresh per-record locks so tests never share lock state."""
    return RecordLocks(timeout=2.0)


@pytest.fixture
def gateway(tmp_path):
    """Gateway on a temporary SQLite file with the schema created."""
    return SqlGateway(f"sqlite:///{(tmp_path / 'gearout.db').as_posix()}", timeout=2.0)


@pytest.fixture
def user(gateway):
    u = User(id="u1", first_name="Ada", last_name="Lovelace", email="ada@example.com", department="Lab")
    gateway.create_user(u)
    return u


# =============================================================================
# Catalog Fixtures
# =============================================================================

def make_record(id, serial, name=None, total=1, **kw):
    return EquipmentRecord(id=id, name=name or f"Item {id}", serial_number=serial,
                           total_quantity=total, qr_type=kw.pop("qr_type", "batch"), **kw)


@pytest.fixture
def add_records(gateway):
    """Persist records in the given order and return a fresh catalog snapshot."""
    def _add(*records):
        for rec in records:
            gateway.add_equipment(rec)
        return gateway.load_catalog()
    return _add


@pytest.fixture
def x1_catalog(add_records):
    return add_records(make_record("X1", "SN-100", name="Cordless drill", total=2))
