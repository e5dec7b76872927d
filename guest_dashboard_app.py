#!/usr/bin/env python3
"""
Guest Analytics App - Attendance, Loyalty & Retention

A Streamlit app for the guest lists imported with ``guest-import``: guests per
event, new vs returning guests, loyalty distribution, top repeat guests, and a
per-event view.
"""

from typing import List, Tuple

import pandas as pd
import plotly.express as px
import streamlit as st
import warnings
warnings.filterwarnings('ignore')

from guest_analytics import (
    GUESTS_PER_PAGE,
    TOP_GUESTS_LIMIT,
    Event,
    GuestAnalyticsError,
    GuestRecord,
    build_identity_index,
    compute_event_guest_counts,
    compute_loyalty_buckets,
    compute_new_vs_returning,
    compute_top_repeat_guests,
    get_dashboard_kpis,
    get_event_kpis,
    guest_display_name,
    paginate,
    search_event_guests,
    search_repeat_guests,
    sort_events,
)
from guest_csv import default_data_dir, load_data

# Page config
st.set_page_config(
    page_title="Guest Analytics",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_data
def load_store(data_dir: str) -> Tuple[List[Event], List[GuestRecord]]:
    """
    Load events and guests from the data store.

    Returns:
        Tuple of (events, guests)
    """
    try:
        return load_data(data_dir)
    except Exception as e:
        st.error(f"❌ Error loading data from {data_dir}: {str(e)}")
        st.stop()
        return [], []


def render_dashboard(events: List[Event], guests: List[GuestRecord]) -> None:
    """Organizer-level dashboard across all events."""
    # One identity index shared by every aggregate on this page
    index = build_identity_index(events, guests)
    kpis = get_dashboard_kpis(events, guests, index=index)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Total Unique Guests", kpis.total_unique_guests)
    with col2:
        st.metric("Total Events", kpis.total_events)
    with col3:
        st.metric("Average Guests per Event", kpis.average_guests_per_event)
    with col4:
        st.metric(
            "Max Guests at a Single Event",
            kpis.max_guests_at_single_event.count,
            help=kpis.max_guests_at_single_event.event_title,
        )

    col1, col2 = st.columns(2)

    with col1:
        st.subheader("Guests per event")
        counts_df = pd.DataFrame([row.as_dict() for row in compute_event_guest_counts(events, guests)])
        if not counts_df.empty:
            fig = px.bar(counts_df, x="label", y="guestCount", labels={"label": "Event", "guestCount": "Guests"})
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No events yet.")

    with col2:
        st.subheader("New vs returning guests")
        split_df = pd.DataFrame([row.as_dict() for row in compute_new_vs_returning(events, guests)])
        if not split_df.empty:
            split_df = split_df.rename(columns={"newGuests": "New", "returningGuests": "Returning"})
            fig = px.bar(
                split_df,
                x="label",
                y=["New", "Returning"],
                labels={"label": "Event", "value": "Guests", "variable": ""},
            )
            fig.update_layout(barmode="stack")
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No events yet.")

    st.subheader("Guest loyalty")
    st.caption("Unique guests by number of events attended.")
    loyalty_df = pd.DataFrame([bucket.as_dict() for bucket in compute_loyalty_buckets(events, guests, index=index)])
    fig = px.bar(loyalty_df, x="bucket", y="count", labels={"bucket": "Events attended", "count": "Guests"})
    st.plotly_chart(fig, use_container_width=True)

    st.subheader("Top repeat guests")
    query = st.text_input("Search by name or email", key="top_guest_search", placeholder="Search guests...")
    top_guests = search_repeat_guests(compute_top_repeat_guests(events, guests, index=index), query)

    if top_guests:
        st.dataframe(
            pd.DataFrame([
                {
                    "Name": guest.identity.name,
                    "Email": guest.identity.email or "-",
                    "Events Attended": guest.events_attended,
                    "First Event": guest.first_event_date,
                    "Last Event": guest.last_event_date,
                }
                for guest in top_guests
            ]),
            use_container_width=True,
            hide_index=True,
        )
        st.caption(f"Showing up to {TOP_GUESTS_LIMIT} guests.")
    else:
        st.info("No repeat guests found.")


def render_event(events: List[Event], guests: List[GuestRecord]) -> None:
    """Single-event view: KPIs, new vs returning donut, searchable guest list."""
    ordered = sort_events(events)
    event = st.selectbox(
        "Event",
        options=ordered,
        index=len(ordered) - 1,
        format_func=lambda ev: f"{ev.date.isoformat()} – {ev.title}",
    )

    st.header(event.title)
    st.write(f"**Date:** {event.date.isoformat()}")
    st.write(f"**Venue:** {event.venue}")
    if event.description:
        st.caption(event.description)

    kpis = get_event_kpis(event, events, guests)

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Total Guests", kpis.total_guests)
    with col2:
        st.metric("Unique Guests", kpis.unique_guests)
    with col3:
        st.metric("Returning Guests", kpis.returning_guests)
        st.caption(f"{kpis.returning_percentage}% of guests are returning")

    st.subheader("New vs returning guests")
    if kpis.total_guests > 0:
        donut_df = pd.DataFrame({
            "Status": ["New", "Returning"],
            "Guests": [kpis.new_guests, kpis.returning_guests],
        })
        fig = px.pie(donut_df, names="Status", values="Guests", hole=0.6)
        st.plotly_chart(fig, use_container_width=True)
    else:
        st.info("No guest data available")

    event_guests = [guest for guest in guests if guest.event_id == event.id]
    st.subheader("Guest list")
    st.caption(f"Imported {len(event_guests)} guest{'s' if len(event_guests) != 1 else ''} from CSV")

    query = st.text_input("Search by name or email", key=f"guest_search_{event.id}", placeholder="Search guests...")
    matches = search_event_guests(event_guests, query)

    if not matches:
        st.info("No guests match your search.")
        return

    total_pages = paginate(matches, 1, GUESTS_PER_PAGE).total_pages
    page_number = st.number_input("Page", min_value=1, max_value=total_pages, value=1, step=1)
    page = paginate(matches, int(page_number), GUESTS_PER_PAGE)

    st.dataframe(
        pd.DataFrame([
            {
                "Name": guest_display_name(guest),
                "Email": guest.email or "-",
                "Phone": guest.phone_number or "-",
            }
            for guest in page.items
        ]),
        use_container_width=True,
        hide_index=True,
    )
    st.caption(f"Page {page.page} of {page.total_pages}")


def main():
    """Main Streamlit app."""
    st.title("📊 Guest Analytics – Attendance & Loyalty")

    data_dir = st.sidebar.text_input("Data directory", value=str(default_data_dir()))
    if st.sidebar.button("Reload data"):
        load_store.clear()

    with st.spinner("Loading data..."):
        events, guests = load_store(data_dir)

    if not events:
        st.info("No events yet. Import guest lists with `guest-import path/to/list.csv`.")
        st.stop()
        return

    tab1, tab2 = st.tabs(["Dashboard", "Event"])

    try:
        with tab1:
            render_dashboard(events, guests)
        with tab2:
            render_event(events, guests)
    except GuestAnalyticsError as e:
        st.error(f"❌ Error: the data store is inconsistent: {str(e)}")
        st.stop()


if __name__ == "__main__":
    main()
