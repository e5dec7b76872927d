#!/usr/bin/env python3
"""
Import guest-list CSV files into the guest analytics data store.

Each CSV file becomes one event (titled after the file name) and its rows
become guest records. Column headers vary between ticketing tools, so they are
matched case-insensitively to the canonical guest fields.

The data store is three flat CSV files in a data directory:
- events.csv: One row per event
- guests.csv: One row per imported guest-list row
- guest_list_files.csv: One row per imported file (links the file to its event)
"""

import json
import os
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import click
import pandas as pd

from guest_analytics import Event, GuestRecord


EVENTS_FILE = "events.csv"
GUESTS_FILE = "guests.csv"
GUEST_LIST_FILES_FILE = "guest_list_files.csv"
DATA_DIR_ENV = "GUEST_ANALYTICS_DATA_DIR"
DEFAULT_VENUE = "TBD"
UNTITLED_EVENT = "Untitled Event"

EVENT_COLUMNS = ["id", "title", "date", "venue", "description"]
GUEST_COLUMNS = [
    "id", "event_id", "api_id", "name", "first_name", "last_name",
    "email", "phone_number", "ticket_type", "raw_data",
]
GUEST_LIST_FILE_COLUMNS = ["id", "event_id", "file_name", "file_size", "guest_count", "created_at"]

# Canonical field -> header predicate (header is already lowercased).
# The first header in column order that matches wins.
HEADER_MATCHERS: Dict[str, Callable[[str], bool]] = {
    "api_id": lambda h: h == "api_id" or "api id" in h,
    "name": lambda h: h == "name",
    "first_name": lambda h: h == "first_name" or "first name" in h,
    "last_name": lambda h: h == "last_name" or "last name" in h,
    "email": lambda h: "email" in h,
    "phone_number": lambda h: "phone" in h or "mobile" in h,
    "ticket_type": lambda h: "ticket" in h or "type" in h,
}


class GuestCSVError(Exception):
    """A guest-list file could not be imported."""


class EmptyGuestListError(GuestCSVError):
    """The guest-list file has no guest rows."""


class GuestListNotFoundError(GuestCSVError):
    """No imported guest-list file has the given id."""


@dataclass(frozen=True)
class GuestListFile:
    """Bookkeeping record for one imported CSV file."""

    id: str
    event_id: str
    file_name: str
    file_size: int
    guest_count: int
    created_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuestListFile":
        return cls(
            id=str(data["id"]),
            event_id=str(data["event_id"]),
            file_name=str(data["file_name"]),
            file_size=int(data["file_size"] or 0),
            guest_count=int(data["guest_count"] or 0),
            created_at=str(data.get("created_at") or ""),
        )


@dataclass(frozen=True)
class GuestListImport:
    event: Event
    guests: List[GuestRecord]
    file: GuestListFile


def default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV, "."))


def parse_csv(path) -> List[Dict[str, str]]:
    """
    Read a guest-list CSV into a list of row dictionaries.

    Every cell is read as a string; missing cells become "" and blank lines
    are skipped.

    Args:
        path: Path to the CSV file

    Returns:
        List of {header: value} dictionaries, in file order

    Raises:
        EmptyGuestListError: The file has no content at all
        GuestCSVError: The file is not valid UTF-8 CSV
    """
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        raise EmptyGuestListError(f"CSV file is empty: {Path(path).name}")
    except pd.errors.ParserError as e:
        raise GuestCSVError(f"Could not parse {Path(path).name}: {e}") from e
    except UnicodeDecodeError as e:
        raise GuestCSVError(f"Could not decode {Path(path).name}: {e}") from e

    return df.to_dict(orient="records")


def _find_header(headers: Sequence[str], field_name: str) -> Optional[str]:
    matcher = HEADER_MATCHERS[field_name]
    return next((header for header in headers if matcher(str(header).lower())), None)


def normalize_guest_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map one CSV row with arbitrary headers onto the canonical guest fields.

    Args:
        row: {header: value} dictionary as returned by parse_csv

    Returns:
        Dictionary with api_id, name, first_name, last_name, email,
        phone_number, ticket_type (None when no header matches or the value is
        blank) and raw_data (the untouched original row)
    """
    headers = list(row.keys())
    normalized: Dict[str, Any] = {}

    for field_name in HEADER_MATCHERS:
        header = _find_header(headers, field_name)
        value = row.get(header) if header is not None else None
        if value is None or (isinstance(value, float) and pd.isna(value)):
            normalized[field_name] = None
        else:
            normalized[field_name] = str(value).strip() or None

    normalized["raw_data"] = dict(row)
    return normalized


def event_title_from_filename(file_name: str) -> str:
    """Strip a trailing .csv (any case) from the file name."""
    stem = file_name[:-4] if file_name.lower().endswith(".csv") else file_name
    return stem.strip() or UNTITLED_EVENT


def import_guest_list(path, event_date: Optional[date] = None, venue: str = DEFAULT_VENUE) -> GuestListImport:
    """
    Turn one guest-list CSV into a new event plus its guest records.

    Args:
        path: Path to the CSV file
        event_date: Date of the event (defaults to today)
        venue: Venue of the event

    Returns:
        GuestListImport with the event, its guests, and file metadata

    Raises:
        EmptyGuestListError: The CSV contains no guest rows
        GuestCSVError: The CSV cannot be parsed
    """
    path = Path(path)
    rows = parse_csv(path)
    if not rows:
        raise EmptyGuestListError(f"CSV file is empty: {path.name}")

    event = Event(
        id=str(uuid.uuid4()),
        title=event_title_from_filename(path.name),
        date=event_date or date.today(),
        venue=venue,
        description=f"Event created from guest list: {path.name}",
    )

    guests = [
        GuestRecord(id=str(uuid.uuid4()), event_id=event.id, **normalize_guest_row(row))
        for row in rows
    ]

    guest_list_file = GuestListFile(
        id=str(uuid.uuid4()),
        event_id=event.id,
        file_name=path.name,
        file_size=path.stat().st_size,
        guest_count=len(rows),
        created_at=datetime.now().isoformat(timespec="seconds"),
    )
    return GuestListImport(event=event, guests=guests, file=guest_list_file)


def _read_store_file(path: Path) -> List[Dict[str, str]]:
    if not path.exists():
        return []
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return []
    return df.to_dict(orient="records")


def load_data(data_dir=None) -> Tuple[List[Event], List[GuestRecord]]:
    """
    Load events and guests from the data directory.

    A directory without store files is an empty store.

    Args:
        data_dir: Directory holding events.csv and guests.csv (defaults to
            $GUEST_ANALYTICS_DATA_DIR or the current directory)

    Returns:
        Tuple of (events, guests)
    """
    data_dir = Path(data_dir) if data_dir is not None else default_data_dir()

    events = [Event.from_dict(row) for row in _read_store_file(data_dir / EVENTS_FILE)]

    guests = []
    for row in _read_store_file(data_dir / GUESTS_FILE):
        row = dict(row)
        row["raw_data"] = json.loads(row["raw_data"]) if row.get("raw_data") else {}
        guests.append(GuestRecord.from_dict(row))

    return events, guests


def load_guest_list_files(data_dir=None) -> List[GuestListFile]:
    """Load the imported-file records, in import order."""
    data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
    return [GuestListFile.from_dict(row) for row in _read_store_file(data_dir / GUEST_LIST_FILES_FILE)]


def save_data(
    data_dir,
    events: Sequence[Event],
    guests: Sequence[GuestRecord],
    files: Optional[Sequence[GuestListFile]] = None,
) -> None:
    """
    Write events.csv and guests.csv, replacing any existing store files.

    guest_list_files.csv is only rewritten when ``files`` is given.
    """
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    events_df = pd.DataFrame(
        [
            {
                "id": event.id,
                "title": event.title,
                "date": event.date.isoformat(),
                "venue": event.venue,
                "description": event.description or "",
            }
            for event in events
        ],
        columns=EVENT_COLUMNS,
    )

    guests_df = pd.DataFrame(
        [
            {
                "id": guest.id or "",
                "event_id": guest.event_id,
                "api_id": guest.api_id or "",
                "name": guest.name or "",
                "first_name": guest.first_name or "",
                "last_name": guest.last_name or "",
                "email": guest.email or "",
                "phone_number": guest.phone_number or "",
                "ticket_type": guest.ticket_type or "",
                "raw_data": json.dumps(dict(guest.raw_data)) if guest.raw_data else "",
            }
            for guest in guests
        ],
        columns=GUEST_COLUMNS,
    )

    events_df.to_csv(data_dir / EVENTS_FILE, index=False)
    guests_df.to_csv(data_dir / GUESTS_FILE, index=False)

    if files is not None:
        files_df = pd.DataFrame(
            [
                {
                    "id": guest_list_file.id,
                    "event_id": guest_list_file.event_id,
                    "file_name": guest_list_file.file_name,
                    "file_size": guest_list_file.file_size,
                    "guest_count": guest_list_file.guest_count,
                    "created_at": guest_list_file.created_at,
                }
                for guest_list_file in files
            ],
            columns=GUEST_LIST_FILE_COLUMNS,
        )
        files_df.to_csv(data_dir / GUEST_LIST_FILES_FILE, index=False)


def remove_guest_list(data_dir, file_id: str) -> Tuple[GuestListFile, int]:
    """
    Delete an imported guest list together with the event it created and that
    event's guest rows.

    Args:
        data_dir: Data store directory
        file_id: Id of the guest_list_files.csv record

    Returns:
        Tuple of (removed file record, number of guest rows removed)

    Raises:
        GuestListNotFoundError: No file record has that id
    """
    events, guests = load_data(data_dir)
    files = load_guest_list_files(data_dir)

    removed = next((guest_list_file for guest_list_file in files if guest_list_file.id == file_id), None)
    if removed is None:
        raise GuestListNotFoundError(f"No imported guest list with id {file_id!r}")

    kept_guests = [guest for guest in guests if guest.event_id != removed.event_id]
    save_data(
        data_dir,
        [event for event in events if event.id != removed.event_id],
        kept_guests,
        [guest_list_file for guest_list_file in files if guest_list_file.id != file_id],
    )
    return removed, len(guests) - len(kept_guests)


def format_file_size(size: int) -> str:
    """Human readable size: Bytes, KB or MB with up to two decimals."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB"]
    exponent = 0
    value = float(size)
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


data_dir_option = click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    envvar=DATA_DIR_ENV,
    default=".",
    show_default=True,
    help="Directory holding the events, guests and guest-list file records.",
)


@click.command("guest-import")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@data_dir_option
@click.option(
    "--date",
    "event_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Event date for the imported lists (defaults to today).",
)
@click.option("--venue", default=DEFAULT_VENUE, show_default=True, help="Venue for the imported events.")
def main(files: Tuple[str, ...], data_dir: str, event_date, venue: str) -> None:
    """Import guest-list CSV FILES, one new event per file."""
    events, guests = load_data(data_dir)
    guest_list_files = load_guest_list_files(data_dir)
    click.echo(f"Loaded {len(events)} events and {len(guests)} guests from {data_dir}")
    click.echo()

    imported = []
    failed = []

    for i, file_path in enumerate(files, 1):
        click.echo(f"Importing file {i}/{len(files)}: {Path(file_path).name}")
        try:
            result = import_guest_list(
                file_path,
                event_date=event_date.date() if event_date else None,
                venue=venue,
            )
        except GuestCSVError as e:
            click.echo(f"  Error: {e}", err=True)
            failed.append(file_path)
            continue

        events.append(result.event)
        guests.extend(result.guests)
        guest_list_files.append(result.file)
        imported.append(result)
        click.echo(f"  ✓ {result.event.title} ({result.file.guest_count} guests)")

    if imported:
        save_data(data_dir, events, guests, guest_list_files)

    click.echo()
    click.echo("=" * 50)
    click.echo("Import Summary")
    click.echo("=" * 50)
    click.echo(f"Files imported: {len(imported)}")
    click.echo(f"Files failed: {len(failed)}")
    click.echo(f"Guests imported: {sum(result.file.guest_count for result in imported)}")
    click.echo(f"Total events in store: {len(events)}")
    click.echo(f"Total guests in store: {len(guests)}")

    if failed:
        raise SystemExit(1)


@click.group("guest-lists")
def cli() -> None:
    """Manage imported guest-list files.

    \b
    Examples:
        guest-lists import "Spring Gala.csv" --date 2024-05-01
        guest-lists list
        guest-lists remove 1b4e28ba-2fa1-11d2-883f-0016d3cca427 --yes
    """
    pass


cli.add_command(main, "import")


@cli.command("list")
@data_dir_option
def list_files(data_dir: str) -> None:
    """List imported guest-list files, newest first."""
    guest_list_files = load_guest_list_files(data_dir)
    if not guest_list_files:
        click.echo("No guest list files yet. Import one with: guest-lists import FILE.csv")
        return

    events_by_id = {event.id: event for event in load_data(data_dir)[0]}
    for guest_list_file in sorted(guest_list_files, key=lambda f: f.created_at, reverse=True):
        event = events_by_id.get(guest_list_file.event_id)
        click.echo(f"{guest_list_file.id}  {guest_list_file.file_name}")
        click.echo(
            f"  {guest_list_file.guest_count} guests, {format_file_size(guest_list_file.file_size)}, "
            f"imported {guest_list_file.created_at}"
            + (f", event: {event.date.isoformat()} – {event.title}" if event else "")
        )


@cli.command("remove")
@click.argument("file_id")
@data_dir_option
@click.confirmation_option(
    prompt="Delete this guest list file? This also deletes its event and all associated guest records."
)
def remove_file(file_id: str, data_dir: str) -> None:
    """Delete the imported file FILE_ID with its event and guests."""
    try:
        removed, guest_count = remove_guest_list(data_dir, file_id)
    except GuestListNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Removed {removed.file_name} ({guest_count} guests)")


if __name__ == "__main__":
    cli()
