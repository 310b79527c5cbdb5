import pytest
from sqlalchemy.exc import SQLAlchemyError

from careconnect.core.errors import NotFoundError, ValidationError
from careconnect.models.availability import PractitionerAvailability
from careconnect.services.availability_service import AvailabilityCalendar, validate_slot
from careconnect.services.presence_service import PresenceTracker

from .conftest import auth_headers
from .test_presence import make_user


class TestSlotValidation:

    def test_valid_slot(self):
        """Test a well-formed slot passes through."""
        day, start, end = validate_slot("Monday", "09:00", "17:00")
        assert day.value == "Monday"
        assert (start, end) == ("09:00", "17:00")

    @pytest.mark.parametrize("day,start,end,field", [
        ("Funday", "09:00", "17:00", "dayOfWeek"),
        ("monday", "09:00", "17:00", "dayOfWeek"),
        ("Monday", "9:00", "17:00", "startTime"),
        ("Monday", "24:00", "17:00", "startTime"),
        ("Monday", "09:00", "17:60", "endTime"),
        ("Monday", "", "17:00", "startTime"),
        ("Monday", "09:00", "09:00", "endTime"),
        ("Monday", "17:00", "09:00", "endTime"),
    ])
    def test_invalid_slot(self, day, start, end, field):
        """Test malformed days and times are rejected with the offending field."""
        with pytest.raises(ValidationError) as exc_info:
            validate_slot(day, start, end)
        assert exc_info.value.field == field

    def test_one_minute_slot_is_allowed(self):
        """Test the shortest valid slot."""
        validate_slot("Sunday", "23:58", "23:59")


class TestAvailabilityCalendar:

    def test_upsert_and_list(self, db):
        """Test slots are stored and listed Monday first."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)

        calendar.upsert(practitioner.id, "Sunday", "10:00", "12:00")
        calendar.upsert(practitioner.id, "Wednesday", "09:00", "17:00")
        calendar.upsert(practitioner.id, "Monday", "08:00", "16:00")

        days = [slot.day_of_week for slot in calendar.list_slots(practitioner.id)]
        assert days == ["Monday", "Wednesday", "Sunday"]

    def test_upsert_overwrites_same_day(self, db):
        """Test a second write for a day replaces the first."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)

        first = calendar.upsert(practitioner.id, "Monday", "09:00", "17:00")
        second = calendar.upsert(practitioner.id, "Monday", "10:00", "14:00")

        assert second.id == first.id
        slots = calendar.list_slots(practitioner.id)
        assert len(slots) == 1
        assert (slots[0].start_time, slots[0].end_time) == ("10:00", "14:00")

    def test_upsert_is_idempotent(self, db):
        """Test repeating the same write leaves one identical row."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)

        calendar.upsert(practitioner.id, "Friday", "09:00", "17:00")
        calendar.upsert(practitioner.id, "Friday", "09:00", "17:00")
        assert db.query(PractitionerAvailability).count() == 1

    def test_invalid_upsert_writes_nothing(self, db):
        """Test validation happens before storage."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)

        with pytest.raises(ValidationError):
            calendar.upsert(practitioner.id, "Monday", "17:00", "09:00")
        assert db.query(PractitionerAvailability).count() == 0

    def test_concurrent_insert_falls_back_to_update(self, db, monkeypatch):
        """Test losing an insert race overwrites the winner's row."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)
        calendar.upsert(practitioner.id, "Monday", "09:00", "17:00")

        # Pretend the row was not there yet when this request looked
        real_get_slot = calendar._get_slot
        calls = []

        def racing_get_slot(practitioner_id, day):
            calls.append(day)
            if len(calls) == 1:
                return None
            return real_get_slot(practitioner_id, day)

        monkeypatch.setattr(calendar, "_get_slot", racing_get_slot)
        slot = calendar.upsert(practitioner.id, "Monday", "11:00", "13:00")

        rows = db.query(PractitionerAvailability).all()
        assert len(rows) == 1
        assert (slot.start_time, slot.end_time) == ("11:00", "13:00")
        assert (rows[0].start_time, rows[0].end_time) == ("11:00", "13:00")

    def test_delete_own_slot(self, db):
        """Test a practitioner can delete their slot."""
        practitioner = make_user(db, "p1@example.com")
        calendar = AvailabilityCalendar(db)
        slot = calendar.upsert(practitioner.id, "Monday", "09:00", "17:00")

        calendar.delete_slot(slot.id, practitioner.id)
        assert calendar.list_slots(practitioner.id) == []

    def test_delete_foreign_slot_is_not_found(self, db):
        """Test someone else's slot looks the same as a missing one."""
        owner = make_user(db, "owner@example.com")
        other = make_user(db, "other@example.com")
        calendar = AvailabilityCalendar(db)
        slot = calendar.upsert(owner.id, "Monday", "09:00", "17:00")

        with pytest.raises(NotFoundError):
            calendar.delete_slot(slot.id, other.id)
        with pytest.raises(NotFoundError):
            calendar.delete_slot(9999, other.id)
        assert len(calendar.list_slots(owner.id)) == 1

    def test_roster_includes_activity(self, db, clock):
        """Test the roster joins slots with presence."""
        active = make_user(db, "active@example.com")
        idle = make_user(db, "idle@example.com")
        tracker = PresenceTracker(db, clock=clock)
        calendar = AvailabilityCalendar(db, presence=tracker)
        calendar.upsert(active.id, "Tuesday", "09:00", "12:00")
        tracker.mark_active(active.id)

        roster = calendar.list_all_with_availability()
        assert list(roster) == [active.id, idle.id]
        assert roster[active.id]["is_active"] is True
        assert roster[active.id]["last_activity"] == clock.now
        assert [slot.day_of_week for slot in roster[active.id]["availability"]] == ["Tuesday"]
        assert roster[idle.id]["is_active"] is False
        assert roster[idle.id]["availability"] == []

    def test_roster_filters_by_id(self, db):
        """Test the roster can be limited to given practitioners."""
        first = make_user(db, "first@example.com")
        make_user(db, "second@example.com")
        calendar = AvailabilityCalendar(db)

        assert list(calendar.list_all_with_availability([first.id])) == [first.id]
        assert calendar.list_all_with_availability([]) == {}

    def test_roster_survives_presence_failure(self, db, clock):
        """Test a presence outage shows everyone inactive."""
        practitioner = make_user(db, "p1@example.com")

        class BrokenTracker(PresenceTracker):
            def list_active(self, user_ids):
                raise SQLAlchemyError("presence store unavailable")

        calendar = AvailabilityCalendar(db, presence=BrokenTracker(db, clock=clock))
        calendar.upsert(practitioner.id, "Monday", "09:00", "17:00")

        roster = calendar.list_all_with_availability()
        assert roster[practitioner.id]["is_active"] is False
        assert len(roster[practitioner.id]["availability"]) == 1


class TestAvailabilityEndpoints:

    def test_set_and_get_availability(self, client, signup):
        """Test a practitioner can save and read back availability."""
        token, user = signup("practitioner")

        response = client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Monday", "startTime": "09:00", "endTime": "17:00"},
            headers=auth_headers(token),
        )
        assert response.status_code == 200
        saved = response.json()["availability"]
        assert saved["practitionerId"] == user["id"]
        assert saved["dayOfWeek"] == "Monday"

        response = client.get("/api/practitioner/availability", headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json()["availability"] == [saved]

    def test_invalid_availability(self, client, signup):
        """Test bad input gets a field-level validation error."""
        token, _ = signup("practitioner")

        response = client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Monday", "startTime": "17:00", "endTime": "09:00"},
            headers=auth_headers(token),
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "VALIDATION_ERROR"
        assert data["message"] == "End time must be after start time"
        assert data["details"] == [{"field": "endTime", "message": "End time must be after start time"}]

    def test_missing_fields(self, client, signup):
        """Test an incomplete body is rejected."""
        token, _ = signup("practitioner")

        response = client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Monday"},
            headers=auth_headers(token),
        )
        assert response.status_code == 400

    def test_patient_cannot_manage_availability(self, client, signup):
        """Test availability management is practitioner only."""
        token, _ = signup("patient")

        response = client.get("/api/practitioner/availability", headers=auth_headers(token))
        assert response.status_code == 403
        assert response.json()["error"] == "AUTHORIZATION_ERROR"

        response = client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Monday", "startTime": "09:00", "endTime": "17:00"},
            headers=auth_headers(token),
        )
        assert response.status_code == 403

    def test_delete_availability(self, client, signup):
        """Test deleting own and foreign slots."""
        owner_token, _ = signup("practitioner", "owner@example.com")
        other_token, _ = signup("practitioner", "other@example.com")

        slot_id = client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Monday", "startTime": "09:00", "endTime": "17:00"},
            headers=auth_headers(owner_token),
        ).json()["availability"]["id"]

        response = client.delete(
            f"/api/practitioner/availability/{slot_id}", headers=auth_headers(other_token)
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Availability not found"

        response = client.delete(
            f"/api/practitioner/availability/{slot_id}", headers=auth_headers(owner_token)
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Availability deleted successfully"

        response = client.delete(
            f"/api/practitioner/availability/{slot_id}", headers=auth_headers(owner_token)
        )
        assert response.status_code == 404

    def test_roster(self, client, signup, login):
        """Test any signed-in user sees practitioners with status."""
        signup("practitioner", "active@example.com", firstName="Ada", lastName="Okafor")
        signup("practitioner", "idle@example.com")
        patient_token, _ = signup("patient")
        practitioner_token, _ = login("active@example.com")

        client.post(
            "/api/practitioner/availability",
            json={"dayOfWeek": "Tuesday", "startTime": "09:00", "endTime": "12:00"},
            headers=auth_headers(practitioner_token),
        )

        response = client.get("/api/practitioner/all", headers=auth_headers(patient_token))
        assert response.status_code == 200

        active, idle = response.json()["practitioners"]
        assert active["name"] == "Ada Okafor"
        assert active["email"] == "active@example.com"
        assert active["isActive"] is True
        assert active["lastActivity"] == "2026-01-05T09:00:00.000Z"
        assert [slot["dayOfWeek"] for slot in active["availability"]] == ["Tuesday"]
        assert idle["isActive"] is False
        assert idle["lastActivity"] is None
        assert idle["availability"] == []

    def test_roster_query_count_does_not_grow_with_slots(self, client, signup, db, select_statements):
        """Test the roster is read in a fixed number of queries."""
        calendar = AvailabilityCalendar(db)
        for index in range(4):
            practitioner = make_user(db, f"p{index}@example.com")
            for day in ("Monday", "Wednesday", "Friday"):
                calendar.upsert(practitioner.id, day, "09:00", "17:00")
        patient_token, _ = signup("patient")

        select_statements.clear()
        response = client.get("/api/practitioner/all", headers=auth_headers(patient_token))

        assert response.status_code == 200
        practitioners = response.json()["practitioners"]
        assert len(practitioners) == 4
        assert all(len(entry["availability"]) == 3 for entry in practitioners)
        # Caller lookup, practitioners, slots, presence
        assert len(select_statements) <= 5

    def test_roster_requires_token(self, client):
        """Test the roster is not public."""
        assert client.get("/api/practitioner/all").status_code == 401

    def test_practitioner_goes_inactive_after_six_minutes(self, client, signup, login, clock):
        """Test a silent practitioner drops off the roster's active list."""
        signup("practitioner")
        patient_token, _ = signup("patient")
        login("practitioner@example.com")

        roster = client.get("/api/practitioner/all", headers=auth_headers(patient_token))
        assert roster.json()["practitioners"][0]["isActive"] is True

        clock.advance(minutes=6)
        roster = client.get("/api/practitioner/all", headers=auth_headers(patient_token))
        assert roster.json()["practitioners"][0]["isActive"] is False

    def test_heartbeat_keeps_practitioner_active(self, client, signup, login, clock):
        """Test heartbeats inside the window keep a practitioner active."""
        signup("practitioner")
        patient_token, _ = signup("patient")
        token, _ = login("practitioner@example.com")

        for _ in range(3):
            clock.advance(minutes=4)
            client.post("/api/practitioner/heartbeat", headers=auth_headers(token))

        roster = client.get("/api/practitioner/all", headers=auth_headers(patient_token))
        assert roster.json()["practitioners"][0]["isActive"] is True
