import streamlit as st
import pandas as pd
from datetime import date, timedelta

from gearout.config import get_settings
from gearout.errors import GearOutError
from gearout.gateway import get_gateway
from gearout.ledger import record_locks
from gearout.log import configure_logging
from gearout.pdf import generate_delivery_note_pdf, summarize_items
from gearout.session import CheckoutSession, SessionState
from gearout.store import JsonNotificationSink

# ----------------- UI CONFIG -----------------
st.set_page_config(page_title="Equipment Checkout", page_icon="🧰", layout="wide")
st.title("🧰 Equipment checkout")

settings = get_settings()
configure_logging(settings.log_level)

record_locks.timeout = settings.db_timeout
gateway = get_gateway(settings.db_url, settings.db_timeout)


def new_session() -> CheckoutSession:
    return CheckoutSession(
        gateway,
        gateway.load_catalog(),
        notifier=JsonNotificationSink(settings.notify_store),
        similarity_threshold=settings.similarity_threshold,
        min_fuzzy_length=settings.min_fuzzy_length,
    )


def run(action, *args, **kwargs):
    """Call a session action and show domain errors inline; None means it failed."""
    try:
        result = action(*args, **kwargs)
        return True if result is None else result
    except GearOutError as e:
        st.error(e.message)
        return None


# ----------------- STATE -----------------
if "checkout" not in st.session_state:
    try:
        st.session_state.checkout = new_session()
    except GearOutError as e:
        st.error(e.message)
        st.stop()
session: CheckoutSession = st.session_state.checkout

STEPS = {
    SessionState.SELECTING_USER: "1 · Borrower",
    SessionState.SELECTING_EQUIPMENT: "2 · Equipment",
    SessionState.REVIEWING_SUMMARY: "3 · Summary",
    SessionState.COMMITTED: "✅ Done",
}

with st.sidebar:
    st.header("Checkout")
    for state, label in STEPS.items():
        st.markdown(f"**{label}**" if state == session.state else label)
    if session.state != SessionState.COMMITTED and st.button("✖ Cancel checkout"):
        session.cancel()
        st.rerun()

# ----------------- STEP 1: USER -----------------
if session.state == SessionState.SELECTING_USER:
    users = run(gateway.load_users) or []
    if users:
        labels = {u.id: f"{u.full_name} ({u.department})" if u.department else u.full_name for u in users}
        uid = st.selectbox("Borrower", options=list(labels), format_func=labels.get)
        if st.button("Continue ➜"):
            run(session.select_user, next(u for u in users if u.id == uid))
            st.rerun()
    else:
        st.info("No users yet. Create the first one below.")

    with st.expander("➕ New user", expanded=not users):
        with st.form("new_user"):
            c1, c2 = st.columns(2)
            with c1:
                first = st.text_input("First name")
                email = st.text_input("Email")
            with c2:
                last = st.text_input("Last name")
                phone = st.text_input("Phone")
            dept = st.text_input("Department")
            if st.form_submit_button("Create and continue"):
                if run(session.create_user, first, last, email, phone, dept):
                    st.rerun()

# ----------------- STEP 2: EQUIPMENT -----------------
elif session.state == SessionState.SELECTING_EQUIPMENT:
    st.caption(f"Borrower: **{session.user.full_name}**")

    with st.form("scan", clear_on_submit=True):
        code = st.text_input("Scan or type a code", placeholder="Serial number, article number, QR code …")
        if st.form_submit_button("Add") and code:
            item = run(session.scan, code)
            if item is not None:
                st.success(f"{item.equipment.name} ×{item.quantity} ({session.last_match.describe()})")

    with st.expander("Pick from list"):
        records = [r for r in session.catalog if r.available_quantity > 0]
        if records:
            pick = st.selectbox("Equipment", options=range(len(records)), format_func=lambda i: records[i].label)
            qty = st.number_input("Qty", min_value=1, value=1, step=1)
            if st.button("➕ Add to cart"):
                run(session.add, records[pick], int(qty))
        else:
            st.info("Nothing available right now.")

    if session.cart:
        st.write("**Cart:**")
        st.dataframe(pd.DataFrame(summarize_items(session.cart)), use_container_width=True)
        with st.form("edit_cart"):
            ids = [it.equipment_id for it in session.cart]
            target = st.selectbox("Item", options=ids, format_func=lambda i: session.find_item(i).equipment.label)
            new_qty = st.number_input("New quantity (0 removes)", min_value=0, value=1, step=1)
            if st.form_submit_button("Update"):
                if run(session.set_quantity, target, int(new_qty)):
                    st.rerun()

    c1, c2 = st.columns(2)
    if c1.button("⬅ Back"):
        session.back()
        st.rerun()
    if c2.button("Review ➜", disabled=not session.cart):
        if run(session.review):
            st.rerun()

# ----------------- STEP 3: SUMMARY -----------------
elif session.state == SessionState.REVIEWING_SUMMARY:
    st.caption(f"Borrower: **{session.user.full_name}** · {session.unit_count} unit(s)")
    st.dataframe(pd.DataFrame(summarize_items(session.cart)), use_container_width=True)

    due = st.date_input("Return date", value=session.due_date or date.today() + timedelta(days=7),
                        min_value=date.today())
    notes = st.text_area("Notes (optional)", value=session.notes or "")

    c1, c2 = st.columns(2)
    if c1.button("⬅ Back"):
        session.back()
        st.rerun()
    if c2.button("💾 Confirm checkout", type="primary"):
        try:
            session.set_due_date(due, notes)
            session.commit()
        except GearOutError as e:
            st.error(e.message)
        else:
            st.rerun()

# ----------------- COMMITTED -----------------
else:
    note = session.delivery_note
    st.success(f"Delivery note {note.number} created for {session.user.full_name} ({note.item_count} unit(s)).")
    st.download_button(
        label="📄 Delivery note (PDF)",
        data=generate_delivery_note_pdf(note, session.user, session.cart),
        file_name=f"{note.number}.pdf",
        mime="application/pdf",
    )
    if st.button("New checkout"):
        # fresh snapshot so the next borrower sees current stock
        st.session_state.checkout = new_session()
        st.rerun()

st.markdown("---")
st.caption("Scanner input: codes are matched exactly, then partially, then by similarity.")
