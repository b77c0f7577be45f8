import streamlit as st
from pathlib import Path

from gearout.catalog import reconcile_catalog, register_equipment, retire_instance, set_equipment_status
from gearout.config import get_settings
from gearout.data import (
    catalog_frame,
    load_equipment_sheets_from_bytes,
    load_equipment_sheets_from_path,
    records_from_frame,
)
from gearout.errors import GearOutError
from gearout.gateway import get_gateway
from gearout.ledger import EquipmentTrigger, record_locks
from gearout.models import EquipmentStatus

st.set_page_config(page_title="Equipment", page_icon="📦", layout="wide")
st.title("Equipment")

settings = get_settings()

record_locks.timeout = settings.db_timeout
gateway = get_gateway(settings.db_url, settings.db_timeout)

# Try seed files under data/
CANDIDATES = [
    Path("data/equipment.xlsx"),
    Path("data/equipment.csv"),
]

# Sidebar: import
with st.sidebar:
    st.subheader("Import equipment")
    up = st.file_uploader("Excel (.xlsx, one sheet per category) or CSV", type=["xlsx", "csv"])
    seed = next((p for p in CANDIDATES if p.exists()), None)
    df_in = None
    if up is not None:
        df_in = load_equipment_sheets_from_bytes(up.read(), up.name)
    elif seed is not None and st.button(f"Load seed file `{seed}`"):
        df_in = load_equipment_sheets_from_path(str(seed))
    if df_in is not None and not df_in.empty:
        st.dataframe(df_in, use_container_width=True)
        if st.button("Add to catalog"):
            added = 0
            for rec in records_from_frame(df_in):
                try:
                    register_equipment(gateway, rec)
                    added += 1
                except GearOutError as e:
                    st.warning(f"{rec.name}: {e.message}")
            st.success(f"Added {added} record(s).")

try:
    catalog = gateway.load_catalog()
except GearOutError as e:
    st.error(e.message)
    st.stop()

if not len(catalog):
    st.info("No equipment yet. Import an Excel workbook or CSV from the sidebar.")
    st.stop()

df = catalog_frame(list(catalog))

# Filters
with st.form("filter_form"):
    c1, c2, c3 = st.columns(3)
    with c1:
        cat = st.selectbox("Category", ["(all)"] + sorted(df["category"].dropna().unique().tolist()))
    with c2:
        status = st.selectbox("Status", ["(all)"] + sorted(df["status"].unique().tolist()))
    with c3:
        s = st.text_input("Search (name/serial/article contains)")
    st.form_submit_button("Apply")

fdf = df.copy()
if cat != "(all)":
    fdf = fdf[fdf["category"] == cat]
if status != "(all)":
    fdf = fdf[fdf["status"] == status]
if s:
    mask = (
        fdf["name"].str.contains(s, case=False, na=False)
        | fdf["serial_number"].str.contains(s, case=False, na=False)
        | fdf["article_number"].str.contains(s, case=False, na=False)
    )
    fdf = fdf[mask]

st.dataframe(fdf, use_container_width=True)

# Status actions
st.markdown("### Status")
ACTIONS = {
    "Start maintenance": EquipmentTrigger.MAINTENANCE_START,
    "End maintenance": EquipmentTrigger.MAINTENANCE_END,
    "Retire": EquipmentTrigger.RETIRE,
    "Declare lost": EquipmentTrigger.DECLARE_LOST,
    "Found again": EquipmentTrigger.FOUND,
}
records = list(catalog)
with st.form("status_form"):
    c1, c2, c3 = st.columns([4, 2, 1])
    with c1:
        idx = st.selectbox("Equipment", options=range(len(records)), format_func=lambda i: records[i].label)
    with c2:
        action = st.selectbox("Action", list(ACTIONS))
    with c3:
        go = st.form_submit_button("Apply")
    if go:
        try:
            ch = set_equipment_status(gateway, records[idx], ACTIONS[action],
                                      instances=catalog.instances_of(records[idx].id))
            st.success(f"{records[idx].name}: {ch.old_status.value} → {ch.new_status.value}, "
                       f"{ch.new_quantity} available")
        except GearOutError as e:
            st.error(e.message)

# Single units (individual QR codes)
units = [i for i in catalog.instances if i.status != EquipmentStatus.RETIRED]
if units:
    st.markdown("### Retire a single unit")
    with st.form("unit_form"):
        k = st.selectbox("Unit", options=range(len(units)),
                         format_func=lambda n: f"{units[n].qr_code} · {units[n].status.value}")
        if st.form_submit_button("Retire unit"):
            unit = units[k]
            try:
                ch = retire_instance(gateway, catalog.get(unit.equipment_id), unit)
                st.success(f"{unit.qr_code} retired, {ch.new_quantity} available")
            except GearOutError as e:
                st.error(e.message)

# Consistency sweep
st.markdown("### Consistency")
if st.button("Recompute availability from checkouts"):
    try:
        changes = reconcile_catalog(gateway, records)
        st.success(f"{len(changes)} record(s) corrected." if changes else "All counts are consistent.")
    except GearOutError as e:
        st.error(e.message)
