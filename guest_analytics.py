"""
Guest Analytics - identity resolution and cross-event aggregation.

Guest lists are imported per event and carry no shared guest ID, so every
metric here is built on a deterministic identity key derived from each row:
the lowercased email when present, otherwise first name + last name + phone.

All functions are pure: they take the full (events, guests) snapshot, build
whatever they need locally, and return plain dataclasses.
"""

import math
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple


LOYALTY_BUCKETS = ["1 event", "2 events", "3 events", "4+ events"]
UNKNOWN_GUEST_NAME = "Unknown"
TOP_GUESTS_LIMIT = 50
GUESTS_PER_PAGE = 25


class GuestAnalyticsError(ValueError):
    """Base error for invalid analytics input."""


class UnknownEventError(GuestAnalyticsError):
    """A guest row or KPI query references an event that is not in the events list."""

    def __init__(self, event_id: str, message: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message or f"Unknown event id: {event_id!r}")


def _clean(value: Any) -> Optional[str]:
    """Trim a raw field value; empty and whitespace-only become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        # datetime is a date subclass - drop the time component
        return date(value.year, value.month, value.day)
    return date.fromisoformat(str(value).strip()[:10])


@dataclass(frozen=True)
class Event:
    id: str
    title: str
    date: date
    venue: str = ""
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", _parse_date(self.date))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            date=data["date"],
            venue=str(data.get("venue") or ""),
            description=_clean(data.get("description")),
        )


@dataclass(frozen=True)
class GuestRecord:
    """
    One imported guest-list row.

    Only ``event_id`` is required. ``id``, ``api_id``, ``ticket_type`` and
    ``raw_data`` are carried through from the CSV import and are never used by
    the aggregation functions.
    """

    event_id: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    id: Optional[str] = None
    api_id: Optional[str] = None
    ticket_type: Optional[str] = None
    raw_data: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GuestRecord":
        return cls(
            event_id=str(data["event_id"]),
            name=_clean(data.get("name")),
            first_name=_clean(data.get("first_name")),
            last_name=_clean(data.get("last_name")),
            email=_clean(data.get("email")),
            phone_number=_clean(data.get("phone_number")),
            id=_clean(data.get("id")),
            api_id=_clean(data.get("api_id")),
            ticket_type=_clean(data.get("ticket_type")),
            raw_data=dict(data.get("raw_data") or {}),
        )


@dataclass(frozen=True)
class GuestIdentity:
    key: str
    email: Optional[str]
    name: str
    phone_number: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "email": self.email,
            "name": self.name,
            "phoneNumber": self.phone_number,
        }


@dataclass(frozen=True)
class IdentityIndexEntry:
    identity: GuestIdentity
    event_ids: FrozenSet[str]
    first_seen: date
    last_seen: date


@dataclass(frozen=True)
class EventGuestCount:
    event_id: str
    label: str
    guest_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {"eventId": self.event_id, "label": self.label, "guestCount": self.guest_count}


@dataclass(frozen=True)
class EventGuestData:
    event_id: str
    label: str
    guest_count: int
    new_guests: int
    returning_guests: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "label": self.label,
            "guestCount": self.guest_count,
            "newGuests": self.new_guests,
            "returningGuests": self.returning_guests,
        }


@dataclass(frozen=True)
class LoyaltyBucket:
    bucket: str
    count: int

    def as_dict(self) -> Dict[str, Any]:
        return {"bucket": self.bucket, "count": self.count}


@dataclass(frozen=True)
class TopRepeatGuest:
    identity: GuestIdentity
    events_attended: int
    first_event_date: date
    last_event_date: date

    def as_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity.as_dict(),
            "eventsAttended": self.events_attended,
            "firstEventDate": self.first_event_date.isoformat(),
            "lastEventDate": self.last_event_date.isoformat(),
        }


@dataclass(frozen=True)
class MaxGuests:
    count: int
    event_title: Optional[str]


@dataclass(frozen=True)
class DashboardKPIs:
    total_unique_guests: int
    total_events: int
    average_guests_per_event: int
    max_guests_at_single_event: MaxGuests

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalUniqueGuests": self.total_unique_guests,
            "totalEvents": self.total_events,
            "averageGuestsPerEvent": self.average_guests_per_event,
            "maxGuestsAtSingleEvent": {
                "count": self.max_guests_at_single_event.count,
                "eventTitle": self.max_guests_at_single_event.event_title,
            },
        }


@dataclass(frozen=True)
class EventKPIs:
    total_guests: int
    unique_guests: int
    returning_guests: int
    returning_percentage: int

    @property
    def new_guests(self) -> int:
        return self.unique_guests - self.returning_guests

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalGuests": self.total_guests,
            "uniqueGuests": self.unique_guests,
            "returningGuests": self.returning_guests,
            "returningPercentage": self.returning_percentage,
        }


@dataclass(frozen=True)
class PageSlice:
    items: List[Any]
    page: int
    total_pages: int


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (all inputs here are >= 0)."""
    return int(math.floor(value + 0.5))


def fold_text(text: str) -> str:
    """Casefold and strip accents, so "Émile" and "emile" compare equal."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def name_sort_key(name: str) -> Tuple[str, str]:
    """
    Locale-independent collation key for display names.

    Accents and case are ignored on the first pass ("émile" sorts with
    "Emile"); the raw name breaks ties so the order is total and stable.
    """
    return fold_text(name), name


def guest_display_name(guest: GuestRecord) -> str:
    """Explicit name, else "first last", else "Unknown"."""
    first_name = _clean(guest.first_name) or ""
    last_name = _clean(guest.last_name) or ""
    return _clean(guest.name) or f"{first_name} {last_name}".strip() or UNKNOWN_GUEST_NAME


def resolve_identity(guest: GuestRecord) -> GuestIdentity:
    """
    Reduce a guest row to its identity.

    Primary key: the trimmed, lowercased email.
    Fallback key: "first|last|phone", lowercased. A row with nothing filled in
    resolves to "||", so all fully blank rows are one identity.

    Args:
        guest: Guest row; every field may be missing

    Returns:
        GuestIdentity for the row (never fails)
    """
    email = _clean(guest.email)
    email = email.lower() if email else None
    first_name = _clean(guest.first_name) or ""
    last_name = _clean(guest.last_name) or ""
    phone_number = _clean(guest.phone_number)
    name = guest_display_name(guest)

    if email:
        return GuestIdentity(key=email, email=email, name=name, phone_number=phone_number)

    fallback_key = f"{first_name}|{last_name}|{phone_number or ''}".lower()
    return GuestIdentity(key=fallback_key, email=None, name=name, phone_number=phone_number)


def sort_events(events: Iterable[Event]) -> List[Event]:
    """Events ascending by date; same-day events keep their input order."""
    return sorted(events, key=lambda event: event.date)


def event_label(event: Event) -> str:
    return f"{event.date.isoformat()} – {event.title}"


def group_guests_by_event(events: Sequence[Event], guests: Iterable[GuestRecord]) -> Dict[str, List[GuestRecord]]:
    """
    Group guest rows by event id in a single pass, keeping row order.

    Every event gets an entry (possibly empty).

    Raises:
        UnknownEventError: a row references an event that is not in ``events``
    """
    by_event: Dict[str, List[GuestRecord]] = {event.id: [] for event in events}
    for guest in guests:
        rows = by_event.get(guest.event_id)
        if rows is None:
            raise UnknownEventError(
                guest.event_id,
                f"Guest row references unknown event id: {guest.event_id!r}",
            )
        rows.append(guest)
    return by_event


def build_identity_index(events: Sequence[Event], guests: Sequence[GuestRecord]) -> Dict[str, IdentityIndexEntry]:
    """
    Fold all guest rows into one entry per identity key.

    Events are walked in ascending date order and rows in input order, so the
    identity kept for a key (display name, phone) is the one of its first row,
    and first_seen/last_seen are the earliest/latest event dates it appeared at.

    Args:
        events: All events of the organizer
        guests: All guest rows of those events

    Returns:
        Dict of identity key -> IdentityIndexEntry, in first-appearance order
    """
    by_event = group_guests_by_event(events, guests)

    # key -> [identity, event ids, first seen, last seen]; local to this call
    accumulator: Dict[str, list] = {}
    for event in sort_events(events):
        for guest in by_event[event.id]:
            identity = resolve_identity(guest)
            existing = accumulator.get(identity.key)
            if existing is None:
                accumulator[identity.key] = [identity, {event.id}, event.date, event.date]
                continue
            existing[1].add(event.id)
            if event.date < existing[2]:
                existing[2] = event.date
            if event.date > existing[3]:
                existing[3] = event.date

    return {
        key: IdentityIndexEntry(
            identity=identity,
            event_ids=frozenset(event_ids),
            first_seen=first_seen,
            last_seen=last_seen,
        )
        for key, (identity, event_ids, first_seen, last_seen) in accumulator.items()
    }


def compute_event_guest_counts(events: Sequence[Event], guests: Sequence[GuestRecord]) -> List[EventGuestCount]:
    """
    Raw guest row count per event, events in chronological order.

    Rows are not deduplicated: a guest listed twice counts twice.
    """
    by_event = group_guests_by_event(events, guests)
    return [
        EventGuestCount(event_id=event.id, label=event_label(event), guest_count=len(by_event[event.id]))
        for event in sort_events(events)
    ]


def compute_new_vs_returning(events: Sequence[Event], guests: Sequence[GuestRecord]) -> List[EventGuestData]:
    """
    Split each event's rows into new and returning guests.

    Walks events chronologically keeping a running set of identity keys seen
    so far. Counting is per row: a row whose key is already in the set is
    returning, otherwise it is new and its key joins the set. A guest listed
    twice at their first event therefore counts once as new and once as
    returning.

    Returns:
        One EventGuestData per event, in chronological order
    """
    by_event = group_guests_by_event(events, guests)
    seen_keys = set()
    results = []

    for event in sort_events(events):
        event_guests = by_event[event.id]
        new_guests = 0
        returning_guests = 0

        for guest in event_guests:
            key = resolve_identity(guest).key
            if key in seen_keys:
                returning_guests += 1
            else:
                new_guests += 1
                seen_keys.add(key)

        results.append(EventGuestData(
            event_id=event.id,
            label=event_label(event),
            guest_count=len(event_guests),
            new_guests=new_guests,
            returning_guests=returning_guests,
        ))

    return results


def compute_loyalty_buckets(
    events: Sequence[Event],
    guests: Sequence[GuestRecord],
    index: Optional[Mapping[str, IdentityIndexEntry]] = None,
) -> List[LoyaltyBucket]:
    """
    Count identities by how many distinct events they attended.

    Args:
        events: All events
        guests: All guest rows
        index: Identity index already built from the same events/guests (optional)

    Returns:
        Buckets "1 event", "2 events", "3 events", "4+ events", always in that order
    """
    if index is None:
        index = build_identity_index(events, guests)

    counts = {bucket: 0 for bucket in LOYALTY_BUCKETS}
    for entry in index.values():
        attended = len(entry.event_ids)
        if attended >= 4:
            counts["4+ events"] += 1
        elif attended > 1:
            counts[f"{attended} events"] += 1
        else:
            counts["1 event"] += 1

    return [LoyaltyBucket(bucket=bucket, count=counts[bucket]) for bucket in LOYALTY_BUCKETS]


def compute_top_repeat_guests(
    events: Sequence[Event],
    guests: Sequence[GuestRecord],
    index: Optional[Mapping[str, IdentityIndexEntry]] = None,
) -> List[TopRepeatGuest]:
    """
    Guests who attended more than one event, most loyal first.

    Ties on events attended are ordered by display name. The full list is
    returned; truncation is up to the caller.
    """
    if index is None:
        index = build_identity_index(events, guests)

    top_guests = [
        TopRepeatGuest(
            identity=entry.identity,
            events_attended=len(entry.event_ids),
            first_event_date=entry.first_seen,
            last_event_date=entry.last_seen,
        )
        for entry in index.values()
        if len(entry.event_ids) > 1
    ]
    top_guests.sort(key=lambda guest: (-guest.events_attended, name_sort_key(guest.identity.name)))
    return top_guests


def get_dashboard_kpis(
    events: Sequence[Event],
    guests: Sequence[GuestRecord],
    index: Optional[Mapping[str, IdentityIndexEntry]] = None,
) -> DashboardKPIs:
    """
    Headline numbers for the organizer dashboard.

    - total_unique_guests: number of identities
    - total_events: number of events
    - average_guests_per_event: guest rows / events, rounded half up (0 without events)
    - max_guests_at_single_event: largest raw row count and that event's title;
      the first event in input order wins ties
    """
    if index is None:
        index = build_identity_index(events, guests)
    by_event = group_guests_by_event(events, guests)

    total_events = len(events)
    average_guests_per_event = round_half_up(len(guests) / total_events) if total_events > 0 else 0

    max_count = 0
    max_event_title = None
    for event in events:
        event_guest_count = len(by_event[event.id])
        if event_guest_count > max_count:
            max_count = event_guest_count
            max_event_title = event.title

    return DashboardKPIs(
        total_unique_guests=len(index),
        total_events=total_events,
        average_guests_per_event=average_guests_per_event,
        max_guests_at_single_event=MaxGuests(count=max_count, event_title=max_event_title),
    )


def get_event_kpis(event: Event, all_events: Sequence[Event], all_guests: Sequence[GuestRecord]) -> EventKPIs:
    """
    KPIs for a single event.

    Returning guests are this event's distinct identities that also appear at
    an event positioned strictly earlier in the chronological order.

    Args:
        event: The event to report on
        all_events: Every event of the organizer (must contain ``event``)
        all_guests: Every guest row of those events

    Returns:
        EventKPIs

    Raises:
        UnknownEventError: ``event`` is not in ``all_events``
    """
    sorted_events = sort_events(all_events)
    position = next((i for i, candidate in enumerate(sorted_events) if candidate.id == event.id), None)
    if position is None:
        raise UnknownEventError(event.id, f"Event {event.id!r} is not among the organizer's events")

    by_event = group_guests_by_event(all_events, all_guests)
    event_guests = by_event[event.id]
    event_keys = {resolve_identity(guest).key for guest in event_guests}

    earlier_keys = set()
    for earlier_event in sorted_events[:position]:
        earlier_keys.update(resolve_identity(guest).key for guest in by_event[earlier_event.id])

    unique_guests = len(event_keys)
    returning_guests = len(event_keys & earlier_keys)
    returning_percentage = round_half_up(returning_guests / unique_guests * 100) if unique_guests > 0 else 0

    return EventKPIs(
        total_guests=len(event_guests),
        unique_guests=unique_guests,
        returning_guests=returning_guests,
        returning_percentage=returning_percentage,
    )


def search_repeat_guests(top_guests: Sequence[TopRepeatGuest], query: str, limit: int = TOP_GUESTS_LIMIT) -> List[TopRepeatGuest]:
    """Filter repeat guests by name or email (ignoring case and accents), keeping at most ``limit``."""
    query = fold_text((query or "").strip())
    if not query:
        return list(top_guests[:limit])

    matches = [
        guest for guest in top_guests
        if query in fold_text(guest.identity.name) or (guest.identity.email and query in fold_text(guest.identity.email))
    ]
    return matches[:limit]


def search_event_guests(guests: Sequence[GuestRecord], query: str) -> List[GuestRecord]:
    """
    Filter an event's guest rows by name or email and sort them by display name.

    Matches name, first name, last name, "first last" and email, ignoring case
    and accents the same way the name ordering does.
    """
    query = fold_text((query or "").strip())

    def matches(guest: GuestRecord) -> bool:
        full_name = f"{guest.first_name or ''} {guest.last_name or ''}"
        candidates = [guest.name, guest.first_name, guest.last_name, full_name, guest.email]
        return any(query in fold_text(value) for value in candidates if value)

    filtered = [guest for guest in guests if matches(guest)] if query else list(guests)
    return sorted(filtered, key=lambda guest: name_sort_key(guest_display_name(guest)))


def paginate(items: Sequence[Any], page: int, per_page: int = GUESTS_PER_PAGE) -> PageSlice:
    """1-based page of ``items``; out-of-range page numbers are clamped."""
    total_pages = math.ceil(len(items) / per_page) if items else 0
    page = min(max(page, 1), max(total_pages, 1))
    start = (page - 1) * per_page
    return PageSlice(items=list(items[start:start + per_page]), page=page, total_pages=total_pages)
