"""
Read-only operator dashboard.

Run with: streamlit run kitchen_ops/dashboard.py
"""

import os
from datetime import datetime

import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from kitchen_ops.config import BUSINESS_TIMEZONE, DB_FILE, business_date, utc_now
from kitchen_ops.reports import (
    STATUS_COLORS,
    attendance_frame,
    attendance_totals,
    audit_frame,
    confirmations_frame,
    inventory_frame,
    load_document,
    payments_frame,
    reminders_frame,
)


def page_inventory(doc):
    st.title("📦 Inventory")
    df = inventory_frame(doc)
    if df.empty:
        st.info("🔍 No inventory items yet. Add some with /additem in Telegram")
        return

    col1, col2, col3, col4 = st.columns(4)
    counts = df["status"].value_counts()
    col1.metric("Items", len(df))
    col2.metric("🔴 Critical", int(counts.get("Critical", 0)))
    col3.metric("🟡 Low", int(counts.get("Low", 0)))
    col4.metric("🟢 OK", int(counts.get("OK", 0)))

    chart_df = df.dropna(subset=["days_left"])
    if not chart_df.empty:
        fig = px.bar(
            chart_df,
            x="item",
            y="days_left",
            color=chart_df["status"].astype(str),
            color_discrete_map=STATUS_COLORS,
            labels={"days_left": "Days left", "item": "Item", "color": "Status"},
            title="Days of Stock Remaining",
        )
        fig.update_layout(height=400)
        st.plotly_chart(fig, use_container_width=True)

    st.dataframe(df.drop(columns=["id"]), use_container_width=True, hide_index=True)


def page_staff(doc):
    st.title("👥 Staff")
    month = st.text_input("Month (YYYY-MM)", value=business_date(utc_now())[:7])
    frame = attendance_frame(doc, month)

    if frame.empty:
        st.info(f"No attendance recorded for {month}")
    else:
        totals = attendance_totals(frame)
        fig = go.Figure()
        for status, color in (("present", "#00C851"), ("absent", "#FF3547"), ("leave", "#FFB300")):
            fig.add_trace(go.Bar(x=totals["name"], y=totals[status], name=status.title(), marker_color=color))
        fig.update_layout(barmode="stack", title=f"Attendance - {month}", height=350)
        st.plotly_chart(fig, use_container_width=True)
        st.dataframe(frame, use_container_width=True, hide_index=True)

    st.subheader("💰 Payments")
    payments = payments_frame(doc)
    if payments.empty:
        st.info("No payments recorded yet")
    else:
        st.metric("Total paid", f"₹{payments['amount'].sum():,.0f}")
        st.dataframe(payments.drop(columns=["id"]), use_container_width=True, hide_index=True)


def page_activity(doc):
    st.title("🔔 Activity")

    st.subheader("🥬 Open vegetable confirmations")
    confirmations = confirmations_frame(doc)
    if confirmations.empty:
        st.success("No open confirmations")
    else:
        st.dataframe(confirmations, use_container_width=True, hide_index=True)

    st.subheader("⏰ Reminders")
    reminders = reminders_frame(doc)
    if reminders.empty:
        st.info("No active reminders")
    else:
        st.dataframe(reminders, use_container_width=True, hide_index=True)

    st.subheader("📜 Audit log")
    limit = st.slider("Entries", min_value=20, max_value=1000, value=200, step=20)
    st.dataframe(audit_frame(doc, limit), use_container_width=True, hide_index=True)


def main():
    st.set_page_config(page_title="Kitchen Ops", page_icon="🍽", layout="wide")

    path = os.environ.get("DB_FILE", DB_FILE)
    if not os.path.exists(path):
        st.error(f"🚨 Document {path} not found. Start the bot first.")
        st.stop()

    doc = load_document(path)
    pages = {
        "📦 Inventory": page_inventory,
        "👥 Staff": page_staff,
        "🔔 Activity": page_activity,
    }
    choice = st.sidebar.radio("Page", list(pages))
    st.sidebar.caption(f"Business timezone: {BUSINESS_TIMEZONE}")
    st.sidebar.caption(f"Loaded {datetime.fromtimestamp(os.path.getmtime(path)):%Y-%m-%d %H:%M:%S}")
    if st.sidebar.button("🔄 Reload"):
        st.rerun()

    pages[choice](doc)


if __name__ == "__main__":
    main()
