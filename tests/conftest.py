"""
Pytest configuration and fixtures for guest analytics tests
"""

import pytest

from guest_analytics import Event, GuestRecord


@pytest.fixture
def two_events():
    """Two events a month apart."""
    return [
        Event(id="1", title="New Year Party", date="2024-01-01"),
        Event(id="2", title="February Meetup", date="2024-02-01"),
    ]


@pytest.fixture
def two_event_guests():
    """a@x.com attends both events, b@x.com only the second."""
    return [
        GuestRecord(event_id="1", email="a@x.com"),
        GuestRecord(event_id="2", email="a@x.com"),
        GuestRecord(event_id="2", email="b@x.com"),
    ]


@pytest.fixture
def series():
    """Three events, given out of date order on purpose."""
    return [
        Event(id="c", title="Third", date="2024-03-10", venue="Hall C"),
        Event(id="a", title="First", date="2024-01-10", venue="Hall A"),
        Event(id="b", title="Second", date="2024-02-10", venue="Hall B"),
    ]


@pytest.fixture
def series_guests():
    """
    Guests of the three-event series.

    - ana@example.com: all three events (email case varies)
    - Jo Lee / 555 (no email): first and third event
    - bo@example.com: second event only, listed twice
    - cy@example.com: third event only
    """
    return [
        GuestRecord(event_id="a", name="Ana Silva", email="ana@example.com"),
        GuestRecord(event_id="a", first_name="Jo", last_name="Lee", phone_number="555"),
        GuestRecord(event_id="b", name="Ana S.", email="  ANA@example.com "),
        GuestRecord(event_id="b", name="Bo", email="bo@example.com"),
        GuestRecord(event_id="b", name="Bo", email="bo@example.com"),
        GuestRecord(event_id="c", email="Ana@Example.com"),
        GuestRecord(event_id="c", first_name="jo", last_name="LEE", phone_number=" 555 "),
        GuestRecord(event_id="c", name="Cy", email="cy@example.com"),
    ]


@pytest.fixture
def guest_csv(tmp_path):
    """A guest-list export with typical ticketing-tool headers."""
    path = tmp_path / "Spring Gala.csv"
    path.write_text(
        "API ID,First Name,LAST NAME,E-mail Address,Mobile,Ticket Type,Notes\n"
        "g-1,Ana,Silva,ana@example.com,555-0100,VIP,\n"
        "g-2,Jo,Lee,,555,General,likes jazz\n"
        "\n"
        "g-3,,,  ,,General,\n",
        encoding="utf-8",
    )
    return path
