"""
Test Case 07: Administration
- Branches
- User and member management
- Dashboard, reports and health
"""
from config import TEST_QR_CODE
from gymmaster.enums import Role
from run import build_log_config
from utils import create_user, error_code


class TestBranches:
    def test_create_and_list(self, admin_api, member_api, branch):
        response = admin_api.post(
            "/api/branches", {"name": "Downtown", "city": "Springfield", "opening_time": "05:30"}
        )

        assert response.status_code == 201, response.text
        assert response.json()["data"]["opening_time"] == "05:30"
        listed = member_api.get("/api/branches", {"city": "Springfield"}).json()
        assert listed["count"] == 2

    def test_duplicate_name(self, admin_api, branch):
        response = admin_api.post("/api/branches", {"name": branch.name})

        assert response.status_code == 409
        assert error_code(response) == "BRANCH_ALREADY_EXISTS"

    def test_invalid_time(self, admin_api):
        response = admin_api.post("/api/branches", {"name": "Late", "closing_time": "25:00"})

        assert response.status_code == 422

    def test_staff_cannot_create(self, staff_api):
        response = staff_api.post("/api/branches", {"name": "Nope"})

        assert response.status_code == 403

    def test_deactivate_and_detail(self, admin_api, staff_user, branch):
        response = admin_api.patch(f"/api/branches/{branch.id}/deactivate")
        detail = admin_api.get(f"/api/branches/{branch.id}").json()["data"]

        assert response.json()["data"]["is_active"] is False
        assert detail["employees"] == 1
        assert admin_api.get("/api/branches", {"is_active": True}).json()["count"] == 0

    def test_stats(self, staff_api, branch):
        response = staff_api.get(f"/api/branches/{branch.id}/stats")

        assert response.status_code == 200
        assert response.json()["data"]["branch_name"] == "B1"
        assert response.json()["data"]["total_checkins"] == 0

    def test_unknown_branch(self, admin_api):
        response = admin_api.get("/api/branches/999")

        assert response.status_code == 404
        assert error_code(response) == "BRANCH_NOT_FOUND"


class TestUsers:
    def test_list_filters_by_role(self, staff_api, member_user, trainer):
        response = staff_api.get("/api/users", {"role": "TRAINER"})

        assert response.status_code == 200
        assert [u["email"] for u in response.json()["data"]] == ["trainer@gymmaster.com"]

    def test_member_cannot_list(self, member_api):
        assert member_api.get("/api/users").status_code == 403

    def test_read_own_account_only(self, member_api, member_user, staff_user):
        assert member_api.get(f"/api/users/{member_user.id}").status_code == 200
        assert member_api.get(f"/api/users/{staff_user.id}").status_code == 403

    def test_password_never_returned(self, admin_api, member_user):
        data = admin_api.get(f"/api/users/{member_user.id}").json()["data"]

        assert "password" not in data

    def test_update_user(self, admin_api, member_user):
        response = admin_api.put(f"/api/users/{member_user.id}", {"phone": "555-0199"})

        assert response.status_code == 200
        assert response.json()["data"]["phone"] == "555-0199"

    def test_cannot_deactivate_self(self, admin_api, admin_user):
        response = admin_api.patch(f"/api/users/{admin_user.id}/deactivate")

        assert response.status_code == 400
        assert error_code(response) == "CANNOT_DEACTIVATE_SELF"

    def test_deactivate_revokes_tokens(self, admin_api, member_api, member_user):
        assert admin_api.patch(f"/api/users/{member_user.id}/deactivate").status_code == 200

        assert member_api.get("/api/auth/me").status_code == 401

        admin_api.patch(f"/api/users/{member_user.id}/activate")
        assert member_api.get("/api/auth/me").status_code == 401


class TestMembers:
    def test_create_profile(self, staff_api, db):
        user = create_user(db, "walkin@gymmaster.com")

        response = staff_api.post("/api/members", {"user_id": user.id, "emergency_contact": "Mom"})

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["user_id"] == user.id
        assert data["membership_number"].startswith("GM")
        assert data["qr_code"]

    def test_create_for_staff_account(self, staff_api, staff_user):
        response = staff_api.post("/api/members", {"user_id": staff_user.id})

        assert response.status_code == 400
        assert error_code(response) == "INVALID_ROLE"

    def test_create_twice(self, staff_api, member, member_user):
        response = staff_api.post("/api/members", {"user_id": member_user.id})

        assert response.status_code == 409
        assert error_code(response) == "MEMBER_ALREADY_EXISTS"

    def test_lookup_by_qr(self, staff_api, member):
        response = staff_api.get(f"/api/members/qr/{TEST_QR_CODE}")

        assert response.status_code == 200
        assert response.json()["data"]["id"] == member.id

    def test_search(self, staff_api, member):
        data = staff_api.get("/api/members/search", {"q": "Max"}).json()["data"]

        assert [m["id"] for m in data] == [member.id]

    def test_member_reads_own_profile_only(self, db, member_api, member):
        other = create_user(db, "other@gymmaster.com")

        assert member_api.get(f"/api/members/{member.id}").status_code == 200
        assert member_api.get(f"/api/members/user/{other.id}").status_code == 403

    def test_staff_regenerates_qr(self, staff_api, member):
        response = staff_api.post(f"/api/members/{member.id}/qr")

        assert response.status_code == 200
        assert response.json()["data"]["qr_code"] != TEST_QR_CODE
        assert staff_api.get(f"/api/members/qr/{TEST_QR_CODE}").status_code == 404


class TestDashboard:
    def test_staff_dashboard(self, staff_api, active_membership):
        data = staff_api.get("/api/dashboard/stats").json()["data"]

        assert data["role"] == Role.EMPLOYEE.value
        assert data["total_members"] == 1
        assert data["active_memberships"] == 1

    def test_member_dashboard(self, member_api, active_membership):
        data = member_api.get("/api/dashboard/stats").json()["data"]

        assert data["role"] == "MEMBER"
        assert data["membership"]["type"] == "Monthly"

    def test_trainer_dashboard(self, trainer_api):
        data = trainer_api.get("/api/dashboard/stats").json()["data"]

        assert data["role"] == "TRAINER"
        assert data["classes_today"] == 0

    def test_requires_token(self, api):
        response = api.get("/api/dashboard/stats")

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_REQUIRED"


class TestReports:
    def test_reports(self, staff_api, active_membership):
        for name in ("memberships", "attendance", "revenue"):
            response = staff_api.get(f"/api/reports/{name}")
            assert response.status_code == 200, name
            assert "summary" in response.json()["data"]

    def test_membership_report_counts(self, staff_api, active_membership):
        summary = staff_api.get("/api/reports/memberships").json()["data"]["summary"]

        assert summary["total"] == 1
        assert summary["active"] == 1

    def test_invalid_range(self, staff_api):
        response = staff_api.get(
            "/api/reports/revenue", {"start_date": "2030-02-01T00:00:00", "end_date": "2030-01-01T00:00:00"}
        )

        assert response.status_code == 400
        assert error_code(response) == "INVALID_DATE_RANGE"

    def test_member_cannot_read_reports(self, member_api):
        assert member_api.get("/api/reports/revenue").status_code == 403


class TestService:
    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_root(self, api):
        response = api.get("/")

        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"

    def test_log_config_writes_to_file(self, tmp_path):
        log_path = str(tmp_path / "gymmaster.log")

        config = build_log_config(log_path)

        assert config["handlers"]["file"]["filename"] == log_path
        assert "file" in config["loggers"]["gymmaster"]["handlers"]
