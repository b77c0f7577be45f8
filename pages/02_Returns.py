import streamlit as st
import pandas as pd

from gearout.catalog import mark_overdue
from gearout.config import get_settings
from gearout.errors import GearOutError
from gearout.gateway import get_gateway
from gearout.ledger import record_locks
from gearout.models import CheckoutStatus
from gearout.returns import mark_lost, recover, return_checkouts
from gearout.store import JsonNotificationSink

st.set_page_config(page_title="Returns", page_icon="🧾", layout="wide")
st.title("Delivery notes & returns")

settings = get_settings()

record_locks.timeout = settings.db_timeout
gateway = get_gateway(settings.db_url, settings.db_timeout)
sink = JsonNotificationSink(settings.notify_store)

try:
    mark_overdue(gateway, gateway.load_checkouts([CheckoutStatus.ACTIVE]))
    catalog = gateway.load_catalog()
    notes = gateway.load_delivery_notes()
    users = {u.id: u for u in gateway.load_users()}
except GearOutError as e:
    st.error(e.message)
    st.stop()

with st.sidebar:
    st.subheader("Notifications")
    for n in sink.all()[:10]:
        st.caption(f"{n['date']} · {n['message']}")

if not notes:
    st.info("No delivery notes yet.")
    st.stop()

st.dataframe(pd.DataFrame([{
    "number": n.number,
    "borrower": users[n.user_id].full_name if n.user_id in users else n.user_id,
    "issued": n.issue_date.strftime("%Y-%m-%d"),
    "due": n.due_date.isoformat(),
    "units": n.item_count,
    "status": n.status.value,
} for n in notes]), use_container_width=True)

pick = st.selectbox("Delivery note", options=range(len(notes)), format_func=lambda i: notes[i].number)
note = notes[pick]


def label(c):
    rec = catalog.get(c.equipment_id)
    name = rec.label if rec else c.equipment_id
    return f"{name} · {c.status.value}"


open_items = [c for c in note.checkouts if c.status in (CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE)]
lost_items = [c for c in note.checkouts if c.status == CheckoutStatus.LOST]

if open_items:
    with st.form("return_form"):
        chosen = st.multiselect("Units", options=range(len(open_items)),
                                default=list(range(len(open_items))), format_func=lambda i: label(open_items[i]))
        remark = st.text_area("Notes (optional)")
        c1, c2 = st.columns(2)
        do_return = c1.form_submit_button("↩ Return selected")
        do_lost = c2.form_submit_button("⚠ Mark selected lost")
    selected = [open_items[i] for i in chosen]
    try:
        if do_return and selected:
            return_checkouts(gateway, catalog, selected, notes=remark or None)
            sink.notify("return", "Equipment returned", f"{len(selected)} unit(s) returned on {note.number}")
            st.rerun()
        if do_lost and selected:
            mark_lost(gateway, selected, notes=remark or None)
            sink.notify("lost", "Equipment lost", f"{len(selected)} unit(s) marked lost on {note.number}")
            st.rerun()
    except GearOutError as e:
        st.error(e.message)
else:
    st.success("Everything on this note is settled.")

if lost_items:
    st.markdown("### Lost units")
    i = st.selectbox("Lost unit", options=range(len(lost_items)), format_func=lambda k: label(lost_items[k]))
    if st.button("Recovered"):
        try:
            recover(gateway, catalog, lost_items[i], policy=settings.recovery_policy)
            st.rerun()
        except GearOutError as e:
            st.error(e.message)
