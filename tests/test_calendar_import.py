"""CSV import of calendar events."""

import pytest

from bookinghub.models.models import CalendarEvent, TalentProfile
from bookinghub.services.calendar_import import (
    auto_map_headers,
    import_calendar_csv,
    normalize_status,
)
from bookinghub.services.errors import ValidationError


CSV = (
    "Talent,Event Title,Start Date,End Date,Status,City\n"
    "Maya Reyes,Anime Expo,2026-07-03,2026-07-06,Confirmed,Los Angeles\n"
    ",Agency offsite,2026-08-01,,ooo,\n"
    "Maya Reyes,,2026-09-01,,maybe,\n"
).encode()


class TestHeaderMapping:
    def test_keyword_detection(self):
        mapping = auto_map_headers(["Talent", "Event Title", "Start Date", "End Date", "Status", "City", "Link"])

        assert mapping == {
            "Talent": "talent_name",
            "Event Title": "event_title",
            "Start Date": "start_date",
            "End Date": "end_date",
            "Status": "status",
            "City": "location_city",
            "Link": "url",
        }

    def test_exact_field_names_win(self):
        assert auto_map_headers(["venue_name", "start_time"]) == {"venue_name": "venue_name", "start_time": "start_time"}


class TestStatusNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("Confirmed", "booked"),
        ("pending", "hold"),
        ("open", "available"),
        ("Maybe", "tentative"),
        ("canceled", "cancelled"),
        ("Out of Office", "not_available"),
        ("whatever", "available"),
        (None, "available"),
    ])
    def test_synonyms(self, raw, expected):
        assert normalize_status(raw) == expected


class TestImport:
    def test_dry_run_reports_without_writing(self, db, make_user):
        make_user("maya@example.com", "talent", "Maya", "Reyes")

        result = import_calendar_csv(db, CSV, source_file="bookings.csv", dry_run=True)

        assert result.created == 2
        assert result.skipped == 1
        assert result.rows[2].errors == ["Missing event_title"]
        assert result.rows[2].row_index == 4
        assert db.query(CalendarEvent).count() == 0

    def test_commit_inserts_normalized_events(self, db, make_user):
        talent = make_user("maya@example.com", "talent", "Maya", "Reyes")
        tp = db.query(TalentProfile).filter(TalentProfile.user_id == talent.user_id).one()

        result = import_calendar_csv(db, CSV, source_file="bookings.csv", created_by=talent.user_id, dry_run=False)

        assert result.created == 2
        events = {e.event_title: e for e in db.query(CalendarEvent).all()}
        expo = events["Anime Expo"]
        assert expo.talent_id == tp.id
        assert expo.status == "booked"
        assert expo.end_date.isoformat() == "2026-07-06"
        assert expo.location_city == "Los Angeles"
        assert expo.location_country == "USA"
        assert expo.timezone == "America/Chicago"
        assert expo.all_day is True
        assert expo.source_file == "bookings.csv"
        offsite = events["Agency offsite"]
        assert offsite.talent_id is None
        assert offsite.status == "not_available"
        assert offsite.end_date == offsite.start_date

    def test_default_talent_applies_to_rows_without_one(self, db, make_user):
        talent = make_user("maya@example.com", "talent", "Maya", "Reyes")
        tp = db.query(TalentProfile).filter(TalentProfile.user_id == talent.user_id).one()

        import_calendar_csv(db, CSV, default_talent_id=tp.id, dry_run=False)

        assert {e.talent_id for e in db.query(CalendarEvent).all()} == {tp.id}

    def test_invalid_dates_are_row_errors(self, db):
        content = b"event_title,start_date\nShow,31/31/2026\n"

        result = import_calendar_csv(db, content, dry_run=True)

        assert result.created == 0
        assert "Invalid start_date: 31/31/2026" in result.rows[0].errors

    def test_empty_file_is_rejected(self, db):
        with pytest.raises(ValidationError):
            import_calendar_csv(db, b"   ", dry_run=True)
