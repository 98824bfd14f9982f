"""
Test Case 04: Group Classes
- Scheduling with trainer/branch validation
- Reservations and capacity
- Cancellation and attendance
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from gymmaster.enums import ReservationStatus, Role
from gymmaster.errors import Conflict, NoActiveMembership, ValidationFailed
from gymmaster.models import GymClass, Reservation
from gymmaster.services import class_service
from utils import (
    create_branch,
    create_member,
    create_membership,
    create_membership_type,
    create_trainer,
    create_user,
    error_code,
    locking_reads,
)


def class_payload(branch_id, trainer_id, start=None, hours=1, **fields):
    start = start or (datetime.now() + timedelta(days=1)).replace(hour=10, minute=0, second=0, microsecond=0)
    payload = {
        "name": "Morning Yoga",
        "branch_id": branch_id,
        "trainer_id": trainer_id,
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=hours)).isoformat(),
        "capacity": 10,
    }
    payload.update(fields)
    return payload


@pytest.fixture
def gym_class(db, branch, trainer):
    start = datetime.now() + timedelta(days=1)
    gym_class = GymClass(
        name="Spinning",
        branch_id=branch.id,
        trainer_id=trainer.id,
        start_time=start,
        end_time=start + timedelta(hours=1),
        capacity=2,
    )
    db.add(gym_class)
    db.commit()
    db.refresh(gym_class)
    return gym_class


class TestSchedule:
    def test_create_class(self, staff_api, branch, trainer):
        response = staff_api.post("/api/classes", class_payload(branch.id, trainer.id))

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["status"] == "SCHEDULED"
        assert data["trainer_name"] == "Tess Trainer"
        assert data["available_spots"] == 10

    def test_trainer_schedule_conflict(self, staff_api, branch, trainer):
        start = (datetime.now() + timedelta(days=2)).replace(hour=9, minute=0, second=0, microsecond=0)
        staff_api.post("/api/classes", class_payload(branch.id, trainer.id, start=start))

        overlapping = staff_api.post(
            "/api/classes", class_payload(branch.id, trainer.id, start=start + timedelta(minutes=30))
        )
        back_to_back = staff_api.post(
            "/api/classes", class_payload(branch.id, trainer.id, start=start + timedelta(hours=1))
        )

        assert overlapping.status_code == 409
        assert error_code(overlapping) == "TRAINER_SCHEDULE_CONFLICT"
        assert back_to_back.status_code == 201

    def test_trainer_not_in_branch(self, staff_api, db, trainer):
        other_branch = create_branch(db, name="B2")

        response = staff_api.post("/api/classes", class_payload(other_branch.id, trainer.id))

        assert response.status_code == 400
        assert error_code(response) == "TRAINER_NOT_IN_BRANCH"

    def test_end_before_start(self, staff_api, branch, trainer):
        response = staff_api.post("/api/classes", class_payload(branch.id, trainer.id, hours=-1))

        assert response.status_code == 400
        assert error_code(response) == "INVALID_TIME_RANGE"

    def test_member_cannot_schedule(self, member_api, branch, trainer):
        response = member_api.post("/api/classes", class_payload(branch.id, trainer.id))

        assert response.status_code == 403

    def test_update_cannot_cancel(self, staff_api, gym_class):
        response = staff_api.put(f"/api/classes/{gym_class.id}", {"status": "CANCELLED"})

        assert response.status_code == 400
        assert error_code(response) == "USE_CANCEL_ENDPOINT"

    def test_update_capacity(self, staff_api, gym_class):
        response = staff_api.put(f"/api/classes/{gym_class.id}", {"capacity": 20})

        assert response.status_code == 200
        assert response.json()["data"]["capacity"] == 20

    def test_available_lists_future_classes(self, member_api, gym_class):
        data = member_api.get("/api/classes/available").json()["data"]

        assert [c["id"] for c in data] == [gym_class.id]


class TestReservations:
    def test_reserve_and_duplicate(self, member_api, gym_class, active_membership):
        first = member_api.post(f"/api/classes/{gym_class.id}/reservations", {})
        second = member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        assert first.status_code == 201, first.text
        assert first.json()["data"]["status"] == "CONFIRMED"
        assert second.status_code == 409
        assert error_code(second) == "ALREADY_RESERVED"

    def test_reserve_without_membership(self, member_api, gym_class, member):
        response = member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        assert response.status_code == 403
        assert error_code(response) == "NO_ACTIVE_MEMBERSHIP"

    def test_class_full(self, db, staff_api, gym_class, membership_type):
        for index in range(3):
            user = create_user(db, f"m{index}@gymmaster.com")
            member = create_member(db, user, qr_code=f"QR-{index}")
            create_membership(db, member, membership_type)
            response = staff_api.post(f"/api/classes/{gym_class.id}/reservations", {"member_id": member.id})

            if index < gym_class.capacity:
                assert response.status_code == 201
            else:
                assert response.status_code == 400
                assert error_code(response) == "CLASS_FULL"

    def test_cancel_and_rebook_reuses_row(self, db, member_api, gym_class, active_membership):
        reservation_id = member_api.post(f"/api/classes/{gym_class.id}/reservations", {}).json()["data"]["id"]

        cancelled = member_api.patch(f"/api/classes/reservations/{reservation_id}/cancel")
        rebooked = member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        assert cancelled.json()["data"]["status"] == "CANCELLED"
        assert rebooked.status_code == 201
        assert rebooked.json()["data"]["id"] == reservation_id
        db.expire_all()
        assert db.query(Reservation).count() == 1

    def test_member_cannot_cancel_other_reservation(self, db, member_api, staff_api, gym_class, membership_type):
        other = create_member(db, create_user(db, "other@gymmaster.com"), qr_code="QR-OTHER")
        create_membership(db, other, membership_type)
        reservation_id = staff_api.post(
            f"/api/classes/{gym_class.id}/reservations", {"member_id": other.id}
        ).json()["data"]["id"]

        response = member_api.patch(f"/api/classes/reservations/{reservation_id}/cancel")

        assert response.status_code == 404
        assert error_code(response) == "RESERVATION_NOT_FOUND"

    def test_my_reservations(self, member_api, gym_class, active_membership):
        member_api.post(f"/api/classes/{gym_class.id}/reservations", {"notes": "First time"})

        data = member_api.get("/api/classes/my-reservations").json()["data"]

        assert len(data) == 1
        assert data[0]["class_name"] == "Spinning"
        assert data[0]["notes"] == "First time"

    def test_attendance(self, member_api, trainer_api, gym_class, active_membership):
        reservation_id = member_api.post(f"/api/classes/{gym_class.id}/reservations", {}).json()["data"]["id"]

        attended = trainer_api.patch(f"/api/classes/reservations/{reservation_id}/attendance", {"attended": True})
        by_member = member_api.patch(f"/api/classes/reservations/{reservation_id}/attendance", {"attended": False})

        assert attended.status_code == 200
        assert attended.json()["data"]["status"] == "ATTENDED"
        assert by_member.status_code == 403

    def test_trainer_has_no_reservations_of_their_own(self, trainer_api):
        response = trainer_api.get("/api/classes/my-reservations")

        assert response.status_code == 403
        assert error_code(response) == "PERMISSION_DENIED"


class TestCancelClass:
    def test_cancel_class_cancels_reservations(self, db, staff_api, member_api, gym_class, active_membership):
        member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        response = staff_api.patch(f"/api/classes/{gym_class.id}/cancel", {"reason": "Trainer sick"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "CANCELLED"
        assert data["cancelled_reservations"] == 1
        db.expire_all()
        assert db.query(Reservation).one().status == ReservationStatus.CANCELLED

    def test_cancel_twice(self, staff_api, gym_class):
        staff_api.patch(f"/api/classes/{gym_class.id}/cancel", {})

        response = staff_api.patch(f"/api/classes/{gym_class.id}/cancel", {})

        assert response.status_code == 400
        assert error_code(response) == "CLASS_ALREADY_CANCELLED"

    def test_cancelled_class_cannot_be_booked(self, member_api, staff_api, gym_class, active_membership):
        staff_api.patch(f"/api/classes/{gym_class.id}/cancel", {})

        response = member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        assert response.status_code == 400
        assert error_code(response) == "CLASS_NOT_SCHEDULED"

    def test_stats(self, staff_api, member_api, gym_class, active_membership):
        member_api.post(f"/api/classes/{gym_class.id}/reservations", {})

        stats = staff_api.get("/api/classes/stats").json()["data"]

        assert stats["total_classes"] == 1
        assert stats["by_status"]["SCHEDULED"] == 1
        assert stats["reservations_by_status"]["CONFIRMED"] == 1


class TestReservationRules:
    def test_started_class_cannot_be_booked(self, db, member, gym_class, active_membership):
        gym_class.start_time = active_membership.end_date - timedelta(hours=2)
        gym_class.end_time = gym_class.start_time + timedelta(hours=1)
        db.commit()

        with pytest.raises(ValidationFailed) as exc_info:
            class_service.reserve(db, gym_class.id, member.id, now=gym_class.start_time + timedelta(minutes=1))
        assert exc_info.value.error_code == "CLASS_ALREADY_STARTED"

    def test_membership_checked_at_booking_time(self, db, member, gym_class, active_membership):
        with pytest.raises(NoActiveMembership):
            class_service.reserve(db, gym_class.id, member.id, now=active_membership.end_date + timedelta(days=1))

    def test_cancelled_class_frees_trainer_slot(self, db, branch, trainer, gym_class):
        class_service.cancel_class(db, gym_class.id)

        data = class_service.create_class(
            db,
            {
                "name": "Replacement",
                "branch_id": branch.id,
                "trainer_id": trainer.id,
                "start_time": gym_class.start_time,
                "end_time": gym_class.end_time,
                "capacity": 5,
            },
        )

        assert data["name"] == "Replacement"

    def test_update_rechecks_conflicts(self, db, branch, trainer, gym_class):
        later = class_service.create_class(
            db,
            {
                "name": "Later",
                "branch_id": branch.id,
                "trainer_id": trainer.id,
                "start_time": gym_class.end_time + timedelta(hours=1),
                "end_time": gym_class.end_time + timedelta(hours=2),
                "capacity": 5,
            },
        )

        with pytest.raises(Conflict):
            class_service.update_class(db, later["id"], {"start_time": gym_class.start_time})


class TestConcurrentBooking:
    def test_simultaneous_bookings_respect_capacity(self, serialized_database):
        with serialized_database.session_scope() as session:
            branch = create_branch(session)
            trainer = create_trainer(session, create_user(session, "trainer@gymmaster.com", role=Role.TRAINER), branch)
            membership_type = create_membership_type(session)
            start = datetime.now() + timedelta(hours=3)
            gym_class = GymClass(
                name="Spinning",
                branch_id=branch.id,
                trainer_id=trainer.id,
                start_time=start,
                end_time=start + timedelta(hours=1),
                capacity=2,
            )
            session.add(gym_class)
            member_ids = []
            for index in range(5):
                member = create_member(session, create_user(session, f"m{index}@gymmaster.com"), qr_code=f"QR-{index}")
                create_membership(session, member, membership_type)
                member_ids.append(member.id)
            class_id = gym_class.id

        barrier = threading.Barrier(len(member_ids))

        def book(member_id):
            barrier.wait(timeout=10)
            try:
                with serialized_database.session_scope() as session:
                    class_service.reserve(session, class_id, member_id)
                return "booked"
            except ValidationFailed as exc:
                return exc.error_code

        with ThreadPoolExecutor(max_workers=len(member_ids)) as pool:
            results = list(pool.map(book, member_ids))

        assert sorted(results) == ["CLASS_FULL"] * 3 + ["booked"] * 2

    def test_booking_reads_are_locking(self, db, member, gym_class, active_membership):
        with locking_reads(db) as statements:
            class_service.reserve(db, gym_class.id, member.id)

        assert any("FROM classes" in sql for sql in statements)
        assert len([sql for sql in statements if "FROM reservations" in sql]) == 2
