"""
Test Case 06: Audit Trail and Background Jobs
- What gets recorded (and what never does)
- Audit endpoints and retention
- Scheduled jobs
"""
from datetime import datetime, timedelta

from config import TEST_PASSWORD, TEST_QR_CODE
from gymmaster.enums import MembershipStatus
from gymmaster.models import AuditLog, CheckIn, Membership
from gymmaster.services import audit_service
from gymmaster.tasks import build_scheduler, jobs
from gymmaster.utils.audit import REDACTED, sanitize_for_audit, write_audit_log
from utils import create_member, create_membership, create_user, error_code


def audit_logs(db, **filters):
    db.expire_all()
    return db.query(AuditLog).filter_by(**filters).order_by(AuditLog.id).all()


class TestAuditRecording:
    def test_register_stores_only_whitelisted_fields(self, api, db):
        response = api.post(
            "/api/auth/register",
            {"email": "new@gymmaster.com", "password": "supersecret1", "first_name": "New", "last_name": "Person"},
        )

        log = audit_logs(db, action="REGISTER")[0]
        assert log.entity == "User"
        assert log.user_id == response.json()["data"]["user"]["id"]
        assert log.new_values == {"email": "new@gymmaster.com"}

    def test_login_records_email_and_user(self, api, db, member_user):
        api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        log = audit_logs(db, action="LOGIN")[0]
        assert log.user_id == member_user.id
        assert log.entity_id == str(member_user.id)
        assert log.new_values == {"email": member_user.email}

    def test_failed_login_is_not_recorded(self, api, db, member_user):
        api.post("/api/auth/login", {"email": member_user.email, "password": "wrong-password"})

        assert audit_logs(db) == []

    def test_reset_password_redacts_secrets(self, api, db, member_user, monkeypatch):
        monkeypatch.setattr("gymmaster.utils.otp.generate_otp", lambda length=6: "123456")
        monkeypatch.setattr(
            "gymmaster.services.auth_service.send_password_reset_otp_email", lambda *args, **kwargs: True
        )
        api.post("/api/auth/forgot-password", {"email": member_user.email})

        api.post(
            "/api/auth/reset-password",
            {"email": member_user.email, "otp_code": "123456", "new_password": "reset-password-1"},
        )

        assert audit_logs(db, entity="User", action="UPDATE")[0].new_values == {
            "email": member_user.email,
            "otp_code": REDACTED,
            "new_password": REDACTED,
        }
        # forgot-password opts out
        assert len(audit_logs(db)) == 1

    def test_refresh_and_reads_are_not_recorded(self, api, db, member_user):
        tokens = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD}).json()["data"]
        api.set_token(tokens["access_token"])

        api.post("/api/auth/refresh", {"refresh_token": tokens["refresh_token"]})
        api.get("/api/auth/me")

        assert [log.action for log in audit_logs(db)] == ["LOGIN"]

    def test_kiosk_check_in_is_attributed_to_member(self, api, db, member, member_user, branch, active_membership):
        checkin_id = api.post("/api/checkins", {"qr_code": TEST_QR_CODE, "branch_id": branch.id}).json()["data"]["id"]

        log = audit_logs(db, action="CHECK_IN")[0]
        assert log.entity == "CheckIn"
        assert log.entity_id == str(checkin_id)
        assert log.user_id == member_user.id
        assert log.new_values == {"qr_code": REDACTED, "branch_id": branch.id}

    def test_update_keeps_old_values(self, admin_api, db, branch):
        admin_api.put(f"/api/branches/{branch.id}", {"city": "Shelbyville"})

        log = audit_logs(db, entity="Branch", action="UPDATE")[0]
        assert log.entity_id == str(branch.id)
        assert log.old_values["city"] == "Springfield"
        assert log.new_values == {"city": "Shelbyville"}

    def test_failed_request_is_not_recorded(self, staff_api, db):
        staff_api.patch("/api/payments/999/confirm", {})

        assert audit_logs(db, entity="Payment") == []

    def test_write_failure_is_swallowed(self, database, db, monkeypatch):
        def broken(db, **entry):
            raise RuntimeError("disk full")

        monkeypatch.setattr(audit_service, "create_log", broken)

        write_audit_log(database, {"action": "CREATE", "entity": "Branch"})

        assert audit_logs(db) == []

    def test_sanitize_nested(self):
        data = {"user": {"password": "x", "name": "n"}, "items": [{"token": "t"}], "when": datetime(2030, 1, 1)}

        assert sanitize_for_audit(data) == {
            "user": {"password": REDACTED, "name": "n"},
            "items": [{"token": REDACTED}],
            "when": "2030-01-01T00:00:00",
        }


class TestAuditEndpoints:
    def test_logs_admin_only(self, admin_api, staff_api):
        assert admin_api.get("/api/audit/logs").status_code == 200
        assert staff_api.get("/api/audit/logs").status_code == 403

    def test_filter_and_entity_history(self, admin_api, branch):
        admin_api.put(f"/api/branches/{branch.id}", {"city": "Shelbyville"})
        admin_api.put(f"/api/branches/{branch.id}", {"city": "Capital City"})

        logs = admin_api.get("/api/audit/logs", {"entity": "Branch"}).json()
        history = admin_api.get(f"/api/audit/entity/Branch/{branch.id}").json()

        assert logs["pagination"]["total"] == 2
        assert logs["data"][0]["user_email"] == "admin@gymmaster.com"
        assert [h["new_values"]["city"] for h in history["data"]] == ["Shelbyville", "Capital City"]

    def test_user_activity_self_or_admin(self, member_api, admin_user, member_user):
        assert member_api.get(f"/api/audit/user/{member_user.id}").status_code == 200
        assert member_api.get(f"/api/audit/user/{admin_user.id}").status_code == 403

    def test_stats(self, admin_api, db):
        audit_service.create_log(db, action="CREATE", entity="Branch")
        db.commit()

        stats = admin_api.get("/api/audit/stats").json()["data"]

        assert stats["by_entity"]["Branch"] >= 1
        assert stats["top_users"][0]["email"] == "admin@gymmaster.com"

    def test_cleanup(self, admin_api, db):
        audit_service.create_log(db, action="CREATE", entity="Branch")
        db.query(AuditLog).update({AuditLog.timestamp: datetime.now() - timedelta(days=100)})
        db.commit()

        response = admin_api.delete("/api/audit/cleanup", {"days": 90})

        assert response.status_code == 200
        assert response.json()["data"]["deleted"] >= 1
        # the cleanup itself is recorded
        assert [log.action for log in audit_logs(db, entity="AuditLog")] == ["DELETE"]

    def test_cleanup_rejects_zero_days(self, admin_api):
        response = admin_api.delete("/api/audit/cleanup", {"days": 0})

        assert response.status_code == 400
        assert error_code(response) == "INVALID_RETENTION_DAYS"


class TestJobs:
    def test_auto_close_visits(self, database, db, member, branch):
        db.add(CheckIn(member_id=member.id, branch_id=branch.id, check_in_at=datetime.now() - timedelta(hours=30)))
        db.commit()

        assert jobs.job_auto_close_visits(database) == 1
        assert jobs.job_auto_close_visits(database) == 0

    def test_expire_memberships(self, database, db, member, membership_type):
        now = datetime.now()
        ended = create_membership(db, member, membership_type, start_date=now - timedelta(days=40), end_date=now - timedelta(days=10))

        assert jobs.job_expire_memberships(database) == 1

        db.expire_all()
        assert db.get(Membership, ended.id).status == MembershipStatus.EXPIRED

    def test_expiry_reminders(self, database, db, member, membership_type, monkeypatch):
        now = datetime(2030, 5, 1, 8, 0)
        create_membership(db, member, membership_type, start_date=now - timedelta(days=20), end_date=now + timedelta(days=7, hours=2))
        other = create_member(db, create_user(db, "other@gymmaster.com"), qr_code="QR-OTHER")
        create_membership(db, other, membership_type, start_date=now - timedelta(days=20), end_date=now + timedelta(days=5))
        sent = []

        def capture(to_email, username, expiry_date, days_remaining):
            sent.append((to_email, days_remaining))
            return True

        monkeypatch.setattr(jobs, "send_membership_expiry_reminder", capture)

        assert jobs.job_send_expiry_reminders(database, now=now) == 1
        assert sent == [("member@gymmaster.com", 7)]

    def test_job_errors_are_logged_not_raised(self, database, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(jobs.membership_service, "expire_memberships", broken)

        assert jobs.job_expire_memberships(database) == 0
        assert "job_expire_memberships" in caplog.text

    def test_cleanup(self, database, db):
        audit_service.create_log(db, action="CREATE", entity="Branch")
        db.query(AuditLog).update({AuditLog.timestamp: datetime.now() - timedelta(days=400)})
        db.commit()

        result = jobs.job_cleanup(database)

        assert result["audit_logs"] == 1
        assert audit_logs(db) == []

    def test_scheduler_registers_jobs(self, database):
        scheduler = build_scheduler(database)

        assert sorted(job.id for job in scheduler.get_jobs()) == [
            "auto_close_visits",
            "cleanup",
            "expire_memberships",
            "send_expiry_reminders",
        ]
        assert all(job.args == (database,) for job in scheduler.get_jobs())
