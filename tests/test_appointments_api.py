"""HTTP tests for booking, rescheduling and deleting appointments."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import auth_headers, local_time
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from salon.models import Appointment, BusinessConfig, ConfirmationToken


def book(client, user, customer, service, staff, starts_at, duration=60):
    return client.post(
        "/appointments",
        json={
            "client_id": customer.id,
            "service_id": service.id,
            "staff_id": staff.id,
            "starts_at": starts_at,
            "duration_minutes": duration,
        },
        headers=auth_headers(user),
    )


def opening_hours(start, end):
    return [{"day": day, "start": start, "end": end} for day in range(7)]

class TestCreateAppointment:
    def test_books_and_snapshots_staff_name(self, client, reception_user, customer, haircut, anna) -> None:
        response = book(client, reception_user, customer, haircut, anna, local_time(hour=10))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["service_id"] == body["final_service_id"] == haircut.id
        assert body["final_staff_id"] == anna.id
        assert body["final_staff_first_name"] == "Anna"
        assert body["created_by_username"] == "front"
        assert body["duration_minutes"] == 60

    def test_stores_naive_utc(self, client, db_session, owner, customer, haircut, anna) -> None:
        response = book(client, owner, customer, haircut, anna, local_time(hour=10))

        stored = db_session.get(Appointment, response.json()["id"])
        assert stored.starts_at.tzinfo is None
        assert stored.starts_at.hour == 13
        assert stored.ends_at - stored.starts_at == timedelta(minutes=60)

    def test_requires_authentication(self, client, customer, haircut, anna) -> None:
        response = client.post(
            "/appointments",
            json={
                "client_id": customer.id,
                "service_id": haircut.id,
                "staff_id": anna.id,
                "starts_at": local_time(),
                "duration_minutes": 60,
            },
        )
        assert response.status_code == 401

    def test_rejects_malformed_token(self, client) -> None:
        response = client.get("/appointments", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_staff_cannot_book(self, client, staff_user, customer, haircut, anna) -> None:
        response = book(client, staff_user, customer, haircut, anna, local_time())
        assert response.status_code == 403

    def test_rejects_non_positive_duration(self, client, owner, customer, haircut, anna) -> None:
        response = book(client, owner, customer, haircut, anna, local_time(), duration=0)
        assert response.status_code == 422

    def test_unknown_client(self, client, owner, haircut, anna) -> None:
        response = client.post(
            "/appointments",
            json={
                "client_id": 9999,
                "service_id": haircut.id,
                "staff_id": anna.id,
                "starts_at": local_time(),
                "duration_minutes": 60,
            },
            headers=auth_headers(owner),
        )
        assert response.status_code == 404

    def test_more_than_a_day_in_the_past(self, client, owner, customer, haircut, anna) -> None:
        response = book(client, owner, customer, haircut, anna, local_time(days_ahead=-2))
        assert response.status_code == 409

    def test_staff_double_booking(self, client, owner, customer, haircut, manicure, anna) -> None:
        assert book(client, owner, customer, haircut, anna, local_time(hour=10)).status_code == 201

        response = book(client, owner, customer, manicure, anna, local_time(hour=10, minute=30), duration=45)

        assert response.status_code == 409
        assert "already has an appointment" in response.json()["detail"]

    def test_back_to_back_for_same_staff(self, client, owner, customer, manicure, anna) -> None:
        assert book(client, owner, customer, manicure, anna, local_time(hour=10), 60).status_code == 201
        assert book(client, owner, customer, manicure, anna, local_time(hour=11), 60).status_code == 201

    def test_resource_capacity_conflict(self, client, owner, customer, haircut, anna, bea, chair) -> None:
        assert book(client, owner, customer, haircut, anna, local_time(hour=10)).status_code == 201

        response = book(client, owner, customer, haircut, bea, local_time(hour=10, minute=30))

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["message"] == "Insufficient resources"
        assert detail["conflicts"] == [
            {
                "resource_id": chair.id,
                "resource_name": "Wash chair",
                "capacity": 1,
                "max_simultaneous": 2,
            }
        ]

    def test_resource_free_again_when_previous_ends(self, client, owner, customer, haircut, anna, bea) -> None:
        assert book(client, owner, customer, haircut, anna, local_time(hour=10)).status_code == 201
        assert book(client, owner, customer, haircut, bea, local_time(hour=11)).status_code == 201

    def test_inactive_staff(self, client, db_session, owner, customer, haircut, anna) -> None:
        anna.active = False
        db_session.commit()

        response = book(client, owner, customer, haircut, anna, local_time())

        assert response.status_code == 409

    def test_staff_not_enabled_for_service(self, client, db_session, owner, customer, haircut, anna, bea) -> None:
        haircut.enabled_staff_ids = [bea.id]
        db_session.commit()

        response = book(client, owner, customer, haircut, anna, local_time())

        assert response.status_code == 409
        assert "not enabled" in response.json()["detail"]

    def test_outside_staff_working_hours(self, client, db_session, owner, customer, haircut, anna) -> None:
        anna.working_hours = [{"day": day, "start": "14:00", "end": "20:00"} for day in range(7)]
        db_session.commit()

        response = book(client, owner, customer, haircut, anna, local_time(hour=10))

        assert response.status_code == 409
        assert "working hours" in response.json()["detail"]

    def test_outside_business_opening_hours(self, client, db_session, owner, customer, haircut, anna) -> None:
        """Staff without a schedule still cannot work past closing time."""
        db_session.add(BusinessConfig(user_id=owner.id, opening_hours=opening_hours("09:00", "10:30")))
        db_session.commit()

        response = book(client, owner, customer, haircut, anna, local_time(hour=10))

        assert response.status_code == 409
        assert response.json()["detail"] == "The appointment is outside the business opening hours"

    def test_inside_business_opening_hours(self, client, db_session, owner, customer, haircut, anna) -> None:
        db_session.add(BusinessConfig(user_id=owner.id, opening_hours=opening_hours("09:00", "11:00")))
        db_session.commit()

        response = book(client, owner, customer, haircut, anna, local_time(hour=10))

        assert response.status_code == 201


class TestCreateGroup:
    def group_payload(self, customer, items, starts_at=None):
        return {"client_id": customer.id, "starts_at": starts_at or local_time(), "items": items}

    def test_books_all_items_together(self, client, owner, customer, haircut, manicure, anna, bea) -> None:
        payload = self.group_payload(
            customer,
            [
                {"service_id": haircut.id, "staff_id": anna.id, "duration_minutes": 60},
                {"service_id": manicure.id, "staff_id": bea.id, "duration_minutes": 45},
            ],
        )

        response = client.post("/appointments/group", json=payload, headers=auth_headers(owner))

        assert response.status_code == 201
        body = response.json()
        assert len(body["appointments"]) == 2
        assert {a["group_id"] for a in body["appointments"]} == {body["group_id"]}

    def test_needs_two_items(self, client, owner, customer, haircut, anna) -> None:
        payload = self.group_payload(
            customer, [{"service_id": haircut.id, "staff_id": anna.id, "duration_minutes": 60}]
        )
        response = client.post("/appointments/group", json=payload, headers=auth_headers(owner))
        assert response.status_code == 422

    def test_same_staff_twice(self, client, owner, customer, haircut, manicure, anna) -> None:
        payload = self.group_payload(
            customer,
            [
                {"service_id": haircut.id, "staff_id": anna.id, "duration_minutes": 60},
                {"service_id": manicure.id, "staff_id": anna.id, "duration_minutes": 45},
            ],
        )
        response = client.post("/appointments/group", json=payload, headers=auth_headers(owner))
        assert response.status_code == 409

    def test_items_compete_for_the_same_resource(
        self, client, db_session, owner, customer, haircut, anna, bea
    ) -> None:
        payload = self.group_payload(
            customer,
            [
                {"service_id": haircut.id, "staff_id": anna.id, "duration_minutes": 60},
                {"service_id": haircut.id, "staff_id": bea.id, "duration_minutes": 30},
            ],
        )

        response = client.post("/appointments/group", json=payload, headers=auth_headers(owner))

        assert response.status_code == 409
        assert response.json()["detail"]["conflicts"][0]["max_simultaneous"] == 2
        assert db_session.query(Appointment).count() == 0

    def test_staff_rows_locked_together_in_id_order(
        self, client, db_session, owner, customer, haircut, manicure, anna, bea
    ) -> None:
        """Requests listing the same staff in different orders must take their locks in the same order."""
        locking = []

        @event.listens_for(db_session, "do_orm_execute")
        def record(state):
            sql = str(state.statement.compile(dialect=postgresql.dialect()))
            if "FROM staff_members" in sql and "FOR UPDATE" in sql:
                locking.append(sql)

        payload = self.group_payload(
            customer,
            [
                {"service_id": manicure.id, "staff_id": bea.id, "duration_minutes": 45},
                {"service_id": haircut.id, "staff_id": anna.id, "duration_minutes": 60},
            ],
        )

        try:
            response = client.post("/appointments/group", json=payload, headers=auth_headers(owner))
        finally:
            event.remove(db_session, "do_orm_execute", record)

        assert response.status_code == 201
        assert len(locking) == 1
        assert "ORDER BY staff_members.id" in locking[0]


class TestListAppointments:
    def test_lists_tenant_appointments(self, client, owner, reception_user, customer, haircut, anna) -> None:
        book(client, owner, customer, haircut, anna, local_time(hour=10))

        response = client.get("/appointments", headers=auth_headers(reception_user))

        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_staff_only_sees_own_in_progress(self, client, owner, staff_user, customer, manicure, anna, bea) -> None:
        own = book(client, owner, customer, manicure, anna, local_time(hour=10)).json()
        book(client, owner, customer, manicure, bea, local_time(hour=10))

        assert client.get("/appointments", headers=auth_headers(staff_user)).json() == []

        client.put(f"/appointments/{own['id']}", json={"status": "in_progress"}, headers=auth_headers(staff_user))
        listed = client.get("/appointments", headers=auth_headers(staff_user)).json()

        assert [a["id"] for a in listed] == [own["id"]]


class TestUpdateAppointment:
    @pytest.fixture
    def booked(self, client, owner, customer, haircut, anna):
        return book(client, owner, customer, haircut, anna, local_time(hour=10)).json()

    def test_admin_reschedules(self, client, owner, booked) -> None:
        response = client.put(
            f"/appointments/{booked['id']}",
            json={"starts_at": local_time(hour=15), "duration_minutes": 90},
            headers=auth_headers(owner),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["duration_minutes"] == 90
        assert body["starts_at"].startswith(local_time(hour=18)[:13])

    def test_reschedule_into_closed_hours(self, client, db_session, owner, booked) -> None:
        db_session.add(BusinessConfig(user_id=owner.id, opening_hours=opening_hours("09:00", "18:00")))
        db_session.commit()

        response = client.put(
            f"/appointments/{booked['id']}", json={"starts_at": local_time(hour=19)}, headers=auth_headers(owner)
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "The appointment is outside the business opening hours"

    def test_unchanged_time_does_not_conflict_with_itself(self, client, owner, booked) -> None:
        response = client.put(
            f"/appointments/{booked['id']}", json={"notes": "Bring photos"}, headers=auth_headers(owner)
        )
        assert response.status_code == 200
        assert response.json()["notes"] == "Bring photos"

    def test_capacity_checked_on_reschedule(self, client, owner, customer, haircut, bea, booked) -> None:
        other = book(client, owner, customer, haircut, bea, local_time(hour=12)).json()

        response = client.put(
            f"/appointments/{other['id']}", json={"starts_at": local_time(hour=10)}, headers=auth_headers(owner)
        )

        assert response.status_code == 409
        assert response.json()["detail"]["message"] == "Insufficient resources"

    def test_skip_resource_check(self, client, owner, customer, haircut, bea, booked) -> None:
        other = book(client, owner, customer, haircut, bea, local_time(hour=12)).json()

        response = client.put(
            f"/appointments/{other['id']}",
            json={"starts_at": local_time(hour=10), "skip_resource_check": True},
            headers=auth_headers(owner),
        )

        assert response.status_code == 200

    def test_cancelled_booking_frees_the_resource(self, client, owner, customer, haircut, bea, booked) -> None:
        cancel = client.put(
            f"/appointments/{booked['id']}", json={"status": "cancelled"}, headers=auth_headers(owner)
        )
        assert cancel.status_code == 200

        assert book(client, owner, customer, haircut, bea, local_time(hour=10)).status_code == 201

    def test_reception_cannot_update(self, client, reception_user, booked) -> None:
        response = client.put(
            f"/appointments/{booked['id']}", json={"notes": "x"}, headers=auth_headers(reception_user)
        )
        assert response.status_code == 403

    def test_completed_is_closed(self, client, owner, booked) -> None:
        done = client.put(f"/appointments/{booked['id']}", json={"status": "completed"}, headers=auth_headers(owner))
        assert done.status_code == 200
        assert done.json()["finished_at"] is not None

        response = client.put(f"/appointments/{booked['id']}", json={"notes": "x"}, headers=auth_headers(owner))
        assert response.status_code == 403

    def test_invalid_status(self, client, owner, booked) -> None:
        response = client.put(f"/appointments/{booked['id']}", json={"status": "done"}, headers=auth_headers(owner))
        assert response.status_code == 422

    def test_staff_starts_assigned_appointment(self, client, staff_user, booked) -> None:
        response = client.put(
            f"/appointments/{booked['id']}", json={"status": "in_progress"}, headers=auth_headers(staff_user)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"
        assert response.json()["started_at"] is not None

    def test_staff_changes_final_service(self, client, staff_user, manicure, booked) -> None:
        headers = auth_headers(staff_user)
        client.put(f"/appointments/{booked['id']}", json={"status": "in_progress"}, headers=headers)

        response = client.put(
            f"/appointments/{booked['id']}", json={"final_service_id": manicure.id}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["final_service_id"] == manicure.id
        assert response.json()["service_id"] != manicure.id

    def test_staff_cannot_touch_pending_without_starting(self, client, staff_user, manicure, booked) -> None:
        response = client.put(
            f"/appointments/{booked['id']}",
            json={"final_service_id": manicure.id},
            headers=auth_headers(staff_user),
        )
        assert response.status_code == 403

    def test_staff_cannot_touch_other_staff_work(self, client, owner, staff_user, customer, manicure, bea) -> None:
        other = book(client, owner, customer, manicure, bea, local_time(hour=10)).json()

        response = client.put(
            f"/appointments/{other['id']}", json={"status": "in_progress"}, headers=auth_headers(staff_user)
        )

        assert response.status_code == 403

    def test_not_found(self, client, owner) -> None:
        response = client.put("/appointments/424242", json={"notes": "x"}, headers=auth_headers(owner))
        assert response.status_code == 404


class TestDeleteAppointment:
    def test_delete(self, client, db_session, owner, reception_user, customer, haircut, anna) -> None:
        booked = book(client, owner, customer, haircut, anna, local_time()).json()
        client.post(f"/appointments/{booked['id']}/confirmation", headers=auth_headers(owner))

        response = client.delete(f"/appointments/{booked['id']}", headers=auth_headers(reception_user))

        assert response.status_code == 200
        assert db_session.query(Appointment).count() == 0
        assert db_session.query(ConfirmationToken).count() == 0

    def test_staff_cannot_delete(self, client, owner, staff_user, customer, haircut, anna) -> None:
        booked = book(client, owner, customer, haircut, anna, local_time()).json()
        response = client.delete(f"/appointments/{booked['id']}", headers=auth_headers(staff_user))
        assert response.status_code == 403


class TestIssueConfirmation:
    def test_issues_and_reuses_token(self, client, db_session, owner, customer, haircut, anna) -> None:
        booked = book(client, owner, customer, haircut, anna, local_time()).json()
        url = f"/appointments/{booked['id']}/confirmation"

        first = client.post(url, headers=auth_headers(owner))
        second = client.post(url, headers=auth_headers(owner))

        assert first.status_code == 200
        assert first.json()["url"].endswith(f"/confirm/{first.json()['token']}")
        assert second.json()["token"] == first.json()["token"]
        assert db_session.get(Appointment, booked["id"]).confirmation_status == "pending"

    def test_expired_token_is_replaced(self, client, db_session, owner, customer, haircut, anna) -> None:
        booked = book(client, owner, customer, haircut, anna, local_time()).json()
        url = f"/appointments/{booked['id']}/confirmation"
        first = client.post(url, headers=auth_headers(owner)).json()

        token = db_session.query(ConfirmationToken).filter_by(token=first["token"]).one()
        token.expires_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=1)
        db_session.commit()

        second = client.post(url, headers=auth_headers(owner)).json()

        assert second["token"] != first["token"]

    def test_token_belongs_to_the_tenant(
        self, client, db_session, owner, reception_user, customer, haircut, anna
    ) -> None:
        booked = book(client, owner, customer, haircut, anna, local_time()).json()

        issued = client.post(f"/appointments/{booked['id']}/confirmation", headers=auth_headers(reception_user))

        token = db_session.query(ConfirmationToken).filter_by(token=issued.json()["token"]).one()
        assert token.user_id == owner.id
