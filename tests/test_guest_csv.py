"""
Tests for guest_csv.py
"""

from datetime import date

import pytest
from click.testing import CliRunner

from guest_analytics import Event, GuestRecord, build_identity_index
from guest_csv import (
    DATA_DIR_ENV,
    EmptyGuestListError,
    GuestCSVError,
    GuestListFile,
    GuestListNotFoundError,
    cli,
    default_data_dir,
    event_title_from_filename,
    format_file_size,
    import_guest_list,
    load_data,
    load_guest_list_files,
    main,
    normalize_guest_row,
    parse_csv,
    remove_guest_list,
    save_data,
)


class TestNormalizeGuestRow:
    """Tests for header normalization."""

    def test_maps_headers_case_insensitively(self):
        row = {
            "API ID": "g-1",
            "First Name": " Ana ",
            "LAST NAME": "Silva",
            "Email Address": "ana@example.com",
            "Mobile": "555-0100",
            "Ticket Type": "VIP",
            "Notes": "front row",
        }
        normalized = normalize_guest_row(row)
        assert normalized["api_id"] == "g-1"
        assert normalized["first_name"] == "Ana"
        assert normalized["last_name"] == "Silva"
        assert normalized["email"] == "ana@example.com"
        assert normalized["phone_number"] == "555-0100"
        assert normalized["ticket_type"] == "VIP"
        assert normalized["name"] is None
        assert normalized["raw_data"] == row

    def test_exact_header_names(self):
        normalized = normalize_guest_row({
            "api_id": "1", "name": "Jo Lee", "first_name": "Jo", "last_name": "Lee", "phone": "555",
        })
        assert normalized["api_id"] == "1"
        assert normalized["name"] == "Jo Lee"
        assert normalized["first_name"] == "Jo"
        assert normalized["phone_number"] == "555"

    def test_missing_headers_are_none(self):
        normalized = normalize_guest_row({"Guest": "Somebody"})
        for field_name in ["api_id", "name", "first_name", "last_name", "email", "phone_number", "ticket_type"]:
            assert normalized[field_name] is None

    def test_blank_values_are_none(self):
        normalized = normalize_guest_row({"Email": "   ", "Phone Number": ""})
        assert normalized["email"] is None
        assert normalized["phone_number"] is None

    def test_first_matching_header_wins(self):
        normalized = normalize_guest_row({"Work Email": "work@x.com", "Email": "home@x.com"})
        assert normalized["email"] == "work@x.com"

    def test_result_builds_a_guest_record(self):
        guest = GuestRecord(event_id="1", **normalize_guest_row({"Email": "a@x.com"}))
        assert guest.email == "a@x.com"


class TestParseCsv:
    """Tests for CSV parsing."""

    def test_rows_as_strings(self, guest_csv):
        rows = parse_csv(guest_csv)
        # The blank line is skipped
        assert len(rows) == 3
        assert rows[0]["API ID"] == "g-1"
        assert rows[1]["E-mail Address"] == ""
        assert rows[1]["Notes"] == "likes jazz"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(EmptyGuestListError):
            parse_csv(path)

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(GuestCSVError, match="Could not decode bad.csv"):
            parse_csv(path)


class TestImportGuestList:
    """Tests for turning a CSV into an event and guests."""

    def test_creates_event_from_file(self, guest_csv):
        result = import_guest_list(guest_csv, event_date=date(2024, 5, 1), venue="Town Hall")

        assert result.event.title == "Spring Gala"
        assert result.event.date == date(2024, 5, 1)
        assert result.event.venue == "Town Hall"
        assert result.event.description == "Event created from guest list: Spring Gala.csv"
        assert result.file.file_name == "Spring Gala.csv"
        assert result.file.guest_count == 3
        assert result.file.file_size == guest_csv.stat().st_size
        assert result.file.event_id == result.event.id
        assert result.file.created_at

    def test_guests_reference_event(self, guest_csv):
        result = import_guest_list(guest_csv)
        assert all(guest.event_id == result.event.id for guest in result.guests)
        assert len({guest.id for guest in result.guests}) == 3
        assert result.event.date == date.today()
        assert result.event.venue == "TBD"

    def test_guest_fields(self, guest_csv):
        guests = import_guest_list(guest_csv).guests
        assert guests[0].first_name == "Ana"
        assert guests[0].phone_number == "555-0100"
        assert guests[0].ticket_type == "VIP"
        # "E-mail" does not contain "email", so the email column is not recognised
        assert guests[0].email is None
        assert guests[1].first_name == "Jo"
        assert guests[1].raw_data["Notes"] == "likes jazz"

    def test_header_only_file(self, tmp_path):
        path = tmp_path / "nobody.csv"
        path.write_text("Name,Email\n", encoding="utf-8")
        with pytest.raises(EmptyGuestListError):
            import_guest_list(path)

    @pytest.mark.parametrize("file_name,expected", [
        ("Spring Gala.csv", "Spring Gala"),
        ("LIST.CSV", "LIST"),
        ("notes.txt", "notes.txt"),
        (".csv", "Untitled Event"),
        ("  .csv", "Untitled Event"),
    ])
    def test_event_title_from_filename(self, file_name, expected):
        assert event_title_from_filename(file_name) == expected


class TestDataStore:
    """Tests for loading and saving events.csv / guests.csv."""

    def test_missing_store_is_empty(self, tmp_path):
        assert load_data(tmp_path / "nothing-here") == ([], [])

    def test_save_then_load(self, tmp_path):
        events = [Event(id="e1", title="Gala, 2024", date="2024-05-01", venue="Hall", description=None)]
        guests = [
            GuestRecord(event_id="e1", id="g1", name="Ana", email="ana@example.com",
                        raw_data={"Email": "ana@example.com", "Note": 'says "hi"'}),
            GuestRecord(event_id="e1", id="g2", first_name="Jo", last_name="Lee", phone_number="0555"),
        ]
        save_data(tmp_path, events, guests)
        loaded_events, loaded_guests = load_data(tmp_path)

        assert loaded_events == events
        assert loaded_guests == guests
        assert loaded_guests[0].raw_data == {"Email": "ana@example.com", "Note": 'says "hi"'}
        # Phone numbers are kept as text
        assert loaded_guests[1].phone_number == "0555"

    def test_default_data_dir_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path))
        assert default_data_dir() == tmp_path


class TestImportCommand:
    """Tests for the guest-import command."""

    def test_imports_into_store(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        result = runner.invoke(main, [str(guest_csv), "--data-dir", str(store), "--date", "2024-05-01"])

        assert result.exit_code == 0, result.output
        assert "Files imported: 1" in result.output

        events, guests = load_data(store)
        assert [event.title for event in events] == ["Spring Gala"]
        assert events[0].date == date(2024, 5, 1)
        assert len(guests) == 3
        assert len(build_identity_index(events, guests)) == 3

    def test_appends_to_existing_store(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        runner.invoke(main, [str(guest_csv), "--data-dir", str(store)])
        result = runner.invoke(main, [str(guest_csv), "--data-dir", str(store)])

        assert result.exit_code == 0, result.output
        events, guests = load_data(store)
        assert len(events) == 2
        assert len(guests) == 6

    def test_failed_file_is_skipped(self, guest_csv, tmp_path):
        empty = tmp_path / "empty.csv"
        empty.write_text("", encoding="utf-8")
        store = tmp_path / "store"

        result = CliRunner().invoke(main, [str(empty), str(guest_csv), "--data-dir", str(store)])

        assert result.exit_code == 1
        assert "CSV file is empty" in result.output
        assert "Files failed: 1" in result.output
        events, _ = load_data(store)
        assert [event.title for event in events] == ["Spring Gala"]

    def test_undecodable_file_does_not_stop_the_run(self, guest_csv, tmp_path):
        bad = tmp_path / "bad.csv"
        bad.write_bytes(b"\xff\xfe\xfa")
        store = tmp_path / "store"

        result = CliRunner().invoke(main, [str(bad), str(guest_csv), "--data-dir", str(store)])

        assert result.exit_code == 1
        assert not isinstance(result.exception, UnicodeDecodeError)
        assert "Could not decode bad.csv" in result.output
        assert "Files imported: 1" in result.output
        assert "Files failed: 1" in result.output
        events, guests = load_data(store)
        assert [event.title for event in events] == ["Spring Gala"]
        assert len(guests) == 3

    def test_records_imported_files(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        result = CliRunner().invoke(main, [str(guest_csv), "--data-dir", str(store)])

        assert result.exit_code == 0, result.output
        events, _ = load_data(store)
        files = load_guest_list_files(store)
        assert len(files) == 1
        assert files[0].file_name == "Spring Gala.csv"
        assert files[0].guest_count == 3
        assert files[0].file_size == guest_csv.stat().st_size
        assert files[0].event_id == events[0].id


class TestGuestListFiles:
    """Tests for listing and removing imported guest-list files."""

    def test_save_then_load_file_records(self, tmp_path):
        files = [GuestListFile(
            id="f1", event_id="e1", file_name="Gala.csv", file_size=2048, guest_count=12,
            created_at="2024-05-01T10:00:00",
        )]
        save_data(tmp_path, [Event(id="e1", title="Gala", date="2024-05-01")], [], files)
        assert load_guest_list_files(tmp_path) == files

    def test_save_without_files_keeps_records(self, tmp_path):
        files = [GuestListFile(
            id="f1", event_id="e1", file_name="Gala.csv", file_size=10, guest_count=1,
            created_at="2024-05-01T10:00:00",
        )]
        save_data(tmp_path, [], [], files)
        save_data(tmp_path, [], [])
        assert load_guest_list_files(tmp_path) == files

    def test_missing_store_has_no_files(self, tmp_path):
        assert load_guest_list_files(tmp_path / "nothing-here") == []

    def test_remove_deletes_event_and_guests(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        runner.invoke(main, [str(guest_csv), "--data-dir", str(store)])
        other = tmp_path / "Summer Mixer.csv"
        other.write_text("Email\nzed@example.com\n", encoding="utf-8")
        runner.invoke(main, [str(other), "--data-dir", str(store)])

        gala = next(f for f in load_guest_list_files(store) if f.file_name == "Spring Gala.csv")
        removed, guest_count = remove_guest_list(store, gala.id)

        assert removed == gala
        assert guest_count == 3
        events, guests = load_data(store)
        assert [event.title for event in events] == ["Summer Mixer"]
        assert [guest.email for guest in guests] == ["zed@example.com"]
        assert [f.file_name for f in load_guest_list_files(store)] == ["Summer Mixer.csv"]

    def test_remove_unknown_file(self, tmp_path):
        with pytest.raises(GuestListNotFoundError):
            remove_guest_list(tmp_path, "nope")

    def test_list_command(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        runner.invoke(cli, ["import", str(guest_csv), "--data-dir", str(store), "--date", "2024-05-01"])

        result = runner.invoke(cli, ["list", "--data-dir", str(store)])

        assert result.exit_code == 0, result.output
        record = load_guest_list_files(store)[0]
        assert record.id in result.output
        assert "Spring Gala.csv" in result.output
        assert "3 guests" in result.output
        assert "2024-05-01 – Spring Gala" in result.output

    def test_list_command_empty_store(self, tmp_path):
        result = CliRunner().invoke(cli, ["list", "--data-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "No guest list files yet" in result.output

    def test_remove_command(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        runner.invoke(cli, ["import", str(guest_csv), "--data-dir", str(store)])
        record = load_guest_list_files(store)[0]

        result = runner.invoke(cli, ["remove", record.id, "--data-dir", str(store), "--yes"])

        assert result.exit_code == 0, result.output
        assert "Removed Spring Gala.csv (3 guests)" in result.output
        assert load_data(store) == ([], [])
        assert load_guest_list_files(store) == []

    def test_remove_command_asks_for_confirmation(self, guest_csv, tmp_path):
        store = tmp_path / "store"
        runner = CliRunner()
        runner.invoke(cli, ["import", str(guest_csv), "--data-dir", str(store)])
        record = load_guest_list_files(store)[0]

        result = runner.invoke(cli, ["remove", record.id, "--data-dir", str(store)], input="n\n")

        assert result.exit_code != 0
        assert len(load_guest_list_files(store)) == 1
        assert len(load_data(store)[1]) == 3

    def test_remove_command_unknown_id(self, tmp_path):
        result = CliRunner().invoke(cli, ["remove", "nope", "--data-dir", str(tmp_path), "--yes"])
        assert result.exit_code == 1
        assert "No imported guest list with id 'nope'" in result.output

    @pytest.mark.parametrize("size,expected", [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1536, "1.5 KB"),
        (1048576, "1 MB"),
    ])
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected
