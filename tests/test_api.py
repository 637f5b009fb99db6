"""HTTP surface: auth flow, calendar, users, talents, files and business events."""

import io
from datetime import date, datetime, timezone

import pytest
from PIL import Image

from bookinghub.models.models import (
    ActivityLog,
    BusinessEventContact,
    BusinessEventTravel,
    CalendarEvent,
    LoginHistory,
    Profile,
    TalentProfile,
    User,
)
from bookinghub.services.business import ensure_business_account_exists


def _talent_id(db, profile):
    return db.query(TalentProfile).filter(TalentProfile.user_id == profile.user_id).one().id


@pytest.fixture
def maya(make_user):
    return make_user("maya@example.com", "talent", "Maya", "Reyes")


@pytest.fixture
def jon(make_user):
    return make_user("jon@example.com", "talent", "Jon", "Okafor")


class TestAuthFlow:
    def test_signup_confirm_login_me(self, client, db):
        r = client.post("/auth/signup", json={
            "email": "New@Example.com",
            "password": "password123",
            "first_name": "Nia",
            "last_name": "Cole",
        })
        assert r.status_code == 201
        assert r.json()["confirmation_required"] is True

        r = client.post("/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert r.status_code == 401

        token = db.query(User).filter(User.email == "new@example.com").one().confirmation_token
        assert client.get("/auth/confirm", params={"token": token}).status_code == 200

        r = client.post(
            "/auth/login",
            json={"email": "new@example.com", "password": "password123"},
            headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1", "x-geo-city": "Austin"},
        )
        assert r.status_code == 200
        access = r.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {access}"}).json()
        assert me["role"] == "talent"
        assert me["capabilities"] == ["calendar:edit_own", "calendar:view"]
        assert me["talent_id"] is not None

        entry = db.query(LoginHistory).one()
        assert entry.ip_address == "198.51.100.7"
        assert entry.location_info == {"city": "Austin", "region": None, "country": None}

    def test_wrong_password(self, client, maya):
        r = client.post("/auth/login", json={"email": "maya@example.com", "password": "nope-nope"})

        assert r.status_code == 401

    def test_refresh_issues_new_tokens(self, client, maya):
        tokens = client.post("/auth/login", json={"email": "maya@example.com", "password": "password123"}).json()

        r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert r.status_code == 200
        assert r.json()["access_token"]

    def test_me_requires_a_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_update_own_profile(self, client, db, maya, auth_headers):
        version = maya.version

        r = client.patch("/auth/me", json={"phone": "555-0101", "first_name": "May", "expected_version": version}, headers=auth_headers(maya))

        assert r.status_code == 200
        assert r.json()["phone"] == "555-0101"
        assert r.json()["first_name"] == "May"
        assert r.json()["version"] == version + 1
        entry = db.query(ActivityLog).filter(ActivityLog.user_id == maya.user_id, ActivityLog.action == "profile_updated").one()
        assert entry.action == "profile_updated"
        assert entry.admin_user_id is None
        assert entry.details["phone"] == {"before": None, "after": "555-0101"}

    def test_update_own_profile_with_stale_version(self, client, maya, auth_headers):
        r = client.patch("/auth/me", json={"phone": "555-0101", "expected_version": maya.version + 5}, headers=auth_headers(maya))

        assert r.status_code == 409

    def test_update_own_profile_cannot_touch_role(self, client, db, maya, auth_headers):
        r = client.patch("/auth/me", json={"role": "admin"}, headers=auth_headers(maya))

        assert r.status_code == 422
        db.refresh(maya)
        assert maya.role == "talent"


class TestCalendarApi:
    @pytest.fixture
    def events(self, db, maya, jon):
        rows = {
            "maya": CalendarEvent(talent_id=_talent_id(db, maya), event_title="Expo", start_date=date(2026, 5, 1), status="booked"),
            "jon": CalendarEvent(talent_id=_talent_id(db, jon), event_title="Con", start_date=date(2026, 5, 2), status="hold"),
            "open": CalendarEvent(event_title="Agency day", start_date=date(2026, 5, 3), status="available"),
        }
        db.add_all(rows.values())
        db.commit()
        return rows

    def test_admin_sees_every_event(self, client, admin, auth_headers, events):
        r = client.get("/calendar/events", params={"year": 2026}, headers=auth_headers(admin))

        assert r.status_code == 200
        body = r.json()
        assert [e["event_title"] for e in body["events"]] == ["Expo", "Con", "Agency day"]
        assert body["query"]["talent_scope"] is None

    def test_talent_sees_own_and_unassigned(self, client, maya, auth_headers, events):
        r = client.get("/calendar/events", params={"year": 2026}, headers=auth_headers(maya))

        body = r.json()
        assert [e["event_title"] for e in body["events"]] == ["Expo", "Agency day"]
        assert body["events"][0]["talent_name"] == "Maya Reyes"

    def test_empty_status_selection_returns_nothing(self, client, admin, auth_headers, events):
        r = client.get("/calendar/events", params={"year": 2026, "statuses": ""}, headers=auth_headers(admin))

        assert r.json()["events"] == []

    def test_unknown_status_is_rejected(self, client, admin, auth_headers, events):
        r = client.get("/calendar/events", params={"statuses": "booked,bogus"}, headers=auth_headers(admin))

        assert r.status_code == 400

    def test_talent_writes_only_own_events(self, client, db, maya, jon, auth_headers):
        headers = auth_headers(maya)
        own = {"talent_id": str(_talent_id(db, maya)), "event_title": "Signing", "start_date": "2026-06-01"}

        r = client.post("/calendar/events", json=own, headers=headers)
        assert r.status_code == 201
        assert r.json()["end_date"] == "2026-06-01"

        foreign = dict(own, talent_id=str(_talent_id(db, jon)))
        assert client.post("/calendar/events", json=foreign, headers=headers).status_code == 403
        unassigned = {"event_title": "Agency day", "start_date": "2026-06-01"}
        assert client.post("/calendar/events", json=unassigned, headers=headers).status_code == 403

    def test_patch_and_delete(self, client, maya, admin, auth_headers, events):
        r = client.patch(f"/calendar/events/{events['jon'].id}", json={"status": "booked"}, headers=auth_headers(maya))
        assert r.status_code == 403

        r = client.patch(f"/calendar/events/{events['maya'].id}", json={"venue_name": "Hall B"}, headers=auth_headers(maya))
        assert r.status_code == 200
        assert r.json()["venue_name"] == "Hall B"

        assert client.delete(f"/calendar/events/{events['jon'].id}", headers=auth_headers(admin)).status_code == 200
        assert client.get(f"/calendar/events/{events['jon'].id}", headers=auth_headers(admin)).status_code == 404

    def test_patch_cannot_null_required_fields(self, client, admin, auth_headers, events):
        url = f"/calendar/events/{events['maya'].id}"
        headers = auth_headers(admin)

        for field in ("status", "event_title", "start_date", "all_day"):
            assert client.patch(url, json={field: None}, headers=headers).status_code == 422

        event = client.get(url, headers=headers).json()
        assert event["status"] == "booked"
        assert event["event_title"] == "Expo"

    def test_unknown_talent_is_rejected(self, client, admin, auth_headers, events):
        headers = auth_headers(admin)
        ghost = "00000000-0000-0000-0000-000000000001"

        r = client.post("/calendar/events", json={"talent_id": ghost, "event_title": "X", "start_date": "2026-06-01"}, headers=headers)
        assert r.status_code == 400

        r = client.patch(f"/calendar/events/{events['open'].id}", json={"talent_id": ghost}, headers=headers)
        assert r.status_code == 400

    def test_end_before_start_is_rejected(self, client, admin, auth_headers, events):
        headers = auth_headers(admin)
        body = {"event_title": "X", "start_date": "2026-06-05", "end_date": "2026-06-01"}

        assert client.post("/calendar/events", json=body, headers=headers).status_code == 400
        url = f"/calendar/events/{events['open'].id}"
        assert client.patch(url, json={"end_date": "2026-05-03"}, headers=headers).status_code == 200
        # Start moved past the stored end date
        r = client.patch(f"/calendar/events/{events['open'].id}", json={"start_date": "2026-05-10"}, headers=headers)
        assert r.status_code == 400
        r = client.patch(
            f"/calendar/events/{events['open'].id}",
            json={"start_date": "2026-05-10", "end_date": "2026-05-12"},
            headers=headers,
        )
        assert r.status_code == 200

    def test_ics_download(self, client, maya, auth_headers, events):
        r = client.get(f"/calendar/events/{events['maya'].id}.ics", headers=auth_headers(maya))

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/calendar")
        assert f'filename="event-{events["maya"].id}.ics"' in r.headers["content-disposition"]
        assert "SUMMARY:Expo\r\n" in r.text

    def test_ics_hidden_for_foreign_talent(self, client, maya, auth_headers, events):
        r = client.get(f"/calendar/events/{events['jon'].id}.ics", headers=auth_headers(maya))

        assert r.status_code == 404

    def test_import(self, client, db, admin, maya, auth_headers):
        content = b"Talent,Event Title,Start Date\nMaya Reyes,Expo,2026-07-01\n,,2026-07-02\n"
        files = {"file": ("bookings.csv", content, "text/csv")}

        r = client.post("/calendar/import", params={"dry_run": "false"}, files=files, headers=auth_headers(admin))

        assert r.status_code == 200
        assert r.json()["created"] == 1
        assert r.json()["skipped"] == 1
        event = db.query(CalendarEvent).one()
        assert event.talent_id == _talent_id(db, maya)
        assert event.source_file == "bookings.csv"

    def test_import_needs_global_edit(self, client, maya, auth_headers):
        files = {"file": ("bookings.csv", b"event_title,start_date\nX,2026-01-01\n", "text/csv")}

        assert client.post("/calendar/import", files=files, headers=auth_headers(maya)).status_code == 403


class TestUsersApi:
    def test_role_change(self, client, admin, maya, auth_headers):
        r = client.put(f"/users/{maya.user_id}/role", json={"role": "staff"}, headers=auth_headers(admin))

        assert r.status_code == 200
        body = r.json()
        assert (body["old_role"], body["new_role"], body["changed"]) == ("talent", "staff", True)

    def test_role_change_needs_admin(self, client, staff, maya, auth_headers):
        r = client.put(f"/users/{maya.user_id}/role", json={"role": "staff"}, headers=auth_headers(staff))

        assert r.status_code == 403

    def test_admin_cannot_change_own_role(self, client, admin, auth_headers):
        r = client.put(f"/users/{admin.user_id}/role", json={"role": "talent"}, headers=auth_headers(admin))

        assert r.status_code == 403

    def test_stale_role_change_is_a_conflict(self, client, admin, maya, auth_headers):
        r = client.put(
            f"/users/{maya.user_id}/role",
            json={"role": "staff", "expected_version": maya.version + 5},
            headers=auth_headers(admin),
        )

        assert r.status_code == 409

    def test_create_user(self, client, db, admin, auth_headers):
        r = client.post("/users", json={
            "email": "biz@example.com",
            "password": "password123",
            "role": "business",
            "first_name": "Acme",
        }, headers=auth_headers(admin))

        assert r.status_code == 201
        assert r.json()["business_account_id"] is not None
        assert r.json()["profile"]["role"] == "business"

    def test_staff_cannot_create_admins(self, client, staff, auth_headers):
        r = client.post("/users", json={
            "email": "boss@example.com",
            "password": "password123",
            "role": "admin",
        }, headers=auth_headers(staff))

        assert r.status_code == 403

    def test_profile_update_with_stale_version(self, client, admin, maya, auth_headers):
        r = client.patch(
            f"/users/{maya.user_id}",
            json={"phone": "555-0101", "expected_version": maya.version + 1},
            headers=auth_headers(admin),
        )

        assert r.status_code == 409

    def test_hard_delete(self, client, db, admin, maya, auth_headers):
        user_id = maya.user_id

        r = client.delete(f"/users/{user_id}", headers=auth_headers(admin))

        assert r.status_code == 200
        assert r.json()["warnings"] == []
        assert client.get(f"/users/{user_id}", headers=auth_headers(admin)).status_code == 404
        assert db.query(TalentProfile).filter(TalentProfile.user_id == user_id).count() == 0

    def test_login_history_export(self, client, db, staff, maya, auth_headers):
        db.add(LoginHistory(
            user_id=maya.user_id,
            ip_address="203.0.113.9",
            user_agent="curl/8",
            login_time=datetime(2026, 3, 1, tzinfo=timezone.utc),
        ))
        db.commit()

        r = client.get(f"/users/{maya.user_id}/login-history/export", headers=auth_headers(staff))

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert f"login-history-{maya.user_id}-" in r.headers["content-disposition"]
        lines = r.text.splitlines()
        assert lines[0] == "ip_address,city,region,country,login_time,user_agent"
        assert lines[1].startswith('"203.0.113.9"')

    def test_talent_cannot_list_users(self, client, maya, auth_headers):
        assert client.get("/users", headers=auth_headers(maya)).status_code == 403


class TestTalentsApi:
    def test_public_listing_shows_visible_talents_only(self, client, db, maya, jon):
        tp = db.query(TalentProfile).filter(TalentProfile.user_id == maya.user_id).one()
        tp.public_visibility = True
        db.commit()

        r = client.get("/talents")

        assert [t["slug"] for t in r.json()] == ["maya-reyes"]
        assert client.get("/talents/maya-reyes").status_code == 200
        assert client.get("/talents/jon-okafor").status_code == 404

    def test_owner_edits_bio_but_not_visibility(self, client, db, maya, auth_headers):
        tp_id = _talent_id(db, maya)

        r = client.patch(f"/talents/{tp_id}", json={"bio": "Voice actor."}, headers=auth_headers(maya))
        assert r.status_code == 200
        assert r.json()["bio"] == "Voice actor."

        r = client.patch(f"/talents/{tp_id}", json={"public_visibility": True}, headers=auth_headers(maya))
        assert r.status_code == 403

    def test_rename_regenerates_slug(self, client, db, staff, maya, auth_headers):
        r = client.patch(f"/talents/{_talent_id(db, maya)}", json={"name": "Maya R. Santos"}, headers=auth_headers(staff))

        assert r.json()["slug"] == "maya-r-santos"


class TestFilesApi:
    def _png(self, size):
        buf = io.BytesIO()
        Image.new("RGB", size, (200, 40, 40)).save(buf, format="PNG")
        return buf.getvalue()

    def test_avatar_upload_is_downscaled_and_linked(self, client, db, storage, admin, auth_headers):
        files = {"file": ("Me Photo.png", self._png((3000, 1000)), "image/png")}

        r = client.post("/files/avatars", files=files, headers=auth_headers(admin))

        assert r.status_code == 200
        body = r.json()
        assert body["key"] == f"{admin.user_id}/me-photo.png"
        with Image.open(storage._get_path("avatars", body["key"])) as img:
            assert max(img.size) == 1600
        db.refresh(admin)
        assert admin.avatar_url == body["url"]

    def test_existing_path_needs_upsert(self, client, admin, auth_headers):
        def upload(**data):
            files = {"file": ("me.png", self._png((10, 10)), "image/png")}
            return client.post("/files/avatars", files=files, data=data, headers=auth_headers(admin))

        assert upload().status_code == 200
        assert upload().status_code == 409
        assert upload(upsert="true").status_code == 200

    def test_non_image_is_rejected(self, client, admin, auth_headers):
        files = {"file": ("notes.txt", b"hello", "text/plain")}

        assert client.post("/files/avatars", files=files, headers=auth_headers(admin)).status_code == 400

    def test_headshot_for_someone_elses_talent(self, client, db, maya, jon, auth_headers):
        files = {"file": ("h.png", self._png((10, 10)), "image/png")}

        r = client.post(
            "/files/headshots",
            files=files,
            data={"talent_id": str(_talent_id(db, jon))},
            headers=auth_headers(maya),
        )

        assert r.status_code == 403


class TestBusinessEventsApi:
    def test_listing_depends_on_role(self, client, db, staff, maya, jon, make_user, auth_headers):
        biz = make_user("biz@example.com", "business", "Acme")
        account = ensure_business_account_exists(db, biz.user_id)
        r = client.post("/business-events", json={
            "title": "Spring Con",
            "start_ts": "2026-04-01T10:00:00",
            "talent_ids": [str(_talent_id(db, maya))],
            "business_account_ids": [str(account.id)],
        }, headers=auth_headers(staff))
        assert r.status_code == 201
        client.post("/business-events", json={"title": "Internal"}, headers=auth_headers(staff))

        def titles(profile):
            return [e["title"] for e in client.get("/business-events", headers=auth_headers(profile)).json()]

        assert sorted(titles(staff)) == ["Internal", "Spring Con"]
        assert titles(biz) == ["Spring Con"]
        assert titles(maya) == ["Spring Con"]
        assert titles(jon) == []

    def test_unknown_talent_is_rejected(self, client, staff, auth_headers):
        import uuid

        r = client.post("/business-events", json={"title": "X", "talent_ids": [str(uuid.uuid4())]}, headers=auth_headers(staff))

        assert r.status_code == 400

    def test_talent_cannot_create(self, client, maya, auth_headers):
        assert client.post("/business-events", json={"title": "X"}, headers=auth_headers(maya)).status_code == 403


class TestEventLogistics:
    @pytest.fixture
    def event(self, client, db, staff, maya, jon, make_user, auth_headers):
        biz = make_user("biz@example.com", "business", "Acme")
        account = ensure_business_account_exists(db, biz.user_id)
        r = client.post("/business-events", json={
            "title": "Spring Con",
            "talent_ids": [str(_talent_id(db, maya)), str(_talent_id(db, jon))],
            "business_account_ids": [str(account.id)],
        }, headers=auth_headers(staff))
        return {"id": r.json()["id"], "biz": biz}

    def test_contact_upsert_keeps_a_single_row(self, client, db, staff, auth_headers, event):
        url = f"/business-events/{event['id']}/contact"

        client.put(url, json={"contact_name": "Lee", "phone_number": "555-0100"}, headers=auth_headers(staff))
        r = client.put(url, json={"contact_name": "Lee Park", "phone_number": "555-0199"}, headers=auth_headers(staff))

        assert r.status_code == 200
        assert db.query(BusinessEventContact).count() == 1
        logistics = client.get(f"/business-events/{event['id']}/logistics", headers=auth_headers(staff)).json()
        assert logistics["contact"] == {"contact_name": "Lee Park", "phone_number": "555-0199"}

    def test_talent_sections_upsert_per_talent(self, client, db, staff, maya, auth_headers, event):
        base = f"/business-events/{event['id']}/talents/{_talent_id(db, maya)}"
        headers = auth_headers(staff)

        assert client.put(f"{base}/travel", json={"airline_name": "Delta"}, headers=headers).status_code == 200
        r = client.put(f"{base}/travel", json={"airline_name": "United", "confirmation_codes": "XJ42"}, headers=headers)
        assert r.json()["airline_name"] == "United"
        assert client.put(f"{base}/hotel", json={"hotel_name": "Hilton", "checkin_date": "2026-04-01"}, headers=headers).status_code == 200
        assert client.put(f"{base}/transport", json={"provider_type": "lyft"}, headers=headers).status_code == 200

        assert db.query(BusinessEventTravel).count() == 1
        talents = client.get(f"/business-events/{event['id']}/logistics", headers=headers).json()["talents"]
        assert [t["talent_name"] for t in talents] == ["Jon Okafor", "Maya Reyes"]
        assert talents[0]["travel"] is None
        assert talents[1]["travel"]["confirmation_codes"] == "XJ42"
        assert talents[1]["hotel"]["checkin_date"] == "2026-04-01"
        assert talents[1]["transport"]["provider_type"] == "lyft"

    def test_invalid_writes(self, client, db, staff, maya, make_user, auth_headers, event):
        headers = auth_headers(staff)
        base = f"/business-events/{event['id']}/talents/{_talent_id(db, maya)}"
        outsider = make_user("zed@example.com", "talent", "Zed", "Lane")

        assert client.put(f"{base}/transport", json={"provider_type": "blimp"}, headers=headers).status_code == 422
        r = client.put(f"{base}/hotel", json={"checkin_date": "2026-04-03", "checkout_date": "2026-04-01"}, headers=headers)
        assert r.status_code == 400
        r = client.put(
            f"/business-events/{event['id']}/talents/{_talent_id(db, outsider)}/travel",
            json={"airline_name": "Delta"},
            headers=headers,
        )
        assert r.status_code == 400

    def test_only_managers_write(self, client, maya, auth_headers, event):
        r = client.put(f"/business-events/{event['id']}/contact", json={"contact_name": "Me"}, headers=auth_headers(maya))

        assert r.status_code == 403

    def test_visibility_depends_on_role(self, client, db, staff, maya, make_user, auth_headers, event):
        url = f"/business-events/{event['id']}/logistics"
        client.put(f"/business-events/{event['id']}/contact", json={"contact_name": "Lee"}, headers=auth_headers(staff))
        other_biz = make_user("other@example.com", "business", "Other")
        ensure_business_account_exists(db, other_biz.user_id)
        outsider = make_user("zed@example.com", "talent", "Zed", "Lane")

        assert len(client.get(url, headers=auth_headers(event["biz"])).json()["talents"]) == 2
        own = client.get(url, headers=auth_headers(maya)).json()
        assert [t["talent_name"] for t in own["talents"]] == ["Maya Reyes"]
        assert own["contact"]["contact_name"] == "Lee"
        assert client.get(url, headers=auth_headers(other_biz)).status_code == 404
        assert client.get(url, headers=auth_headers(outsider)).status_code == 404

    def test_deleting_the_event_removes_logistics(self, client, db, staff, maya, auth_headers, event):
        headers = auth_headers(staff)
        client.put(f"/business-events/{event['id']}/contact", json={"contact_name": "Lee"}, headers=headers)
        client.put(f"/business-events/{event['id']}/talents/{_talent_id(db, maya)}/travel", json={"airline_name": "Delta"}, headers=headers)

        assert client.delete(f"/business-events/{event['id']}", headers=headers).status_code == 200

        assert db.query(BusinessEventContact).count() == 0
        assert db.query(BusinessEventTravel).count() == 0


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
