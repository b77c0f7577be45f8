"""Tests for spreadsheet import."""

import pandas as pd

from gearout.data import _concat_sheets, catalog_frame, load_equipment_sheets_from_path, records_from_frame
from gearout.models import EquipmentStatus, QrType


def test_header_aliases_and_defaults():
    df = pd.DataFrame({
        "ID": [101, None],
        "Designation": ["Cordless drill", "XLR cable 5m"],
        "Serial No": ["SN-100", "XLR-5"],
        "Qty": [1, 12],
        "Category": ["Tools", None],
    })
    drill, cable = records_from_frame(df)

    assert (drill.id, drill.name, drill.serial_number) == ("101", "Cordless drill", "SN-100")
    assert drill.qr_type == QrType.INDIVIDUAL
    assert drill.category == "Tools"
    assert drill.status == EquipmentStatus.AVAILABLE

    assert len(cable.id) == 32
    assert (cable.total_quantity, cable.available_quantity) == (12, 12)
    assert cable.qr_type == QrType.BATCH
    assert cable.category == "Uncategorized"
    assert cable.article_number is None


def test_explicit_qr_type_wins():
    df = pd.DataFrame({"name": ["Mic"], "serial": ["MIC-1"], "quantity": [4], "QR Type": ["Individual"]})
    [mic] = records_from_frame(df)
    assert mic.qr_type == QrType.INDIVIDUAL


def test_blank_rows_are_dropped():
    df = pd.DataFrame({"name": ["Lamp", None, ""], "serial_number": ["LAMP-1", None, ""]})
    assert [r.name for r in records_from_frame(df)] == ["Lamp"]


def test_sheet_name_becomes_category():
    sheets = {
        "Audio": pd.DataFrame({"name": ["Mic"], "serial": ["MIC-1"]}),
        "Empty": pd.DataFrame(),
        "Light": pd.DataFrame({"name": ["Lamp"], "serial": ["LAMP-1"], "category": ["Stage"]}),
    }
    df = _concat_sheets(sheets)
    assert df["category"].tolist() == ["Audio", "Stage"]


def test_csv_file(tmp_path):
    path = tmp_path / "equipment.csv"
    path.write_text("name,serial,article,qty\nTripod,TRP-1,ART-2024-07-15,2\n", encoding="utf-8")
    [tripod] = records_from_frame(load_equipment_sheets_from_path(str(path)))
    assert (tripod.serial_number, tripod.article_number, tripod.total_quantity) == ("TRP-1", "ART-2024-07-15", 2)


def test_catalog_frame():
    df = pd.DataFrame({"name": ["Lamp"], "serial": ["LAMP-1"], "qty": [3]})
    frame = catalog_frame(records_from_frame(df))
    row = frame.iloc[0]
    assert (row["name"], row["available"], row["total"], row["status"]) == ("Lamp", 3, 3, "available")
