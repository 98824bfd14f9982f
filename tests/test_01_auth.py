"""
Test Case 01: Authentication
- Registration (member, privileged roles)
- Login / refresh / logout
- Profile and password management
- Password reset with OTP
- Two-factor login with an emailed code
"""
from config import TEST_PASSWORD
from gymmaster.models import Member, User
from gymmaster.services import auth_service
from utils import APIClient, create_user, error_code


def register_payload(email="new@gymmaster.com", **fields):
    payload = {
        "email": email,
        "password": "supersecret1",
        "first_name": "New",
        "last_name": "Person",
    }
    payload.update(fields)
    return payload


class TestRegister:
    def test_register_member_creates_profile_and_tokens(self, api, db):
        response = api.post("/api/auth/register", register_payload())

        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["user"]["role"] == "MEMBER"
        assert data["access_token"] and data["refresh_token"]
        assert "password" not in data["user"]

        member = db.query(Member).filter(Member.user_id == data["user"]["id"]).one()
        assert member.qr_code
        assert member.membership_number.startswith("GM")

    def test_register_duplicate_email(self, api):
        api.post("/api/auth/register", register_payload())
        response = api.post("/api/auth/register", register_payload(first_name="Again"))

        assert response.status_code == 409
        assert error_code(response) == "EMAIL_ALREADY_REGISTERED"

    def test_register_staff_requires_admin(self, api, branch):
        response = api.post("/api/auth/register", register_payload(role="EMPLOYEE"))

        assert response.status_code == 403
        assert error_code(response) == "PERMISSION_DENIED"

    def test_admin_registers_employee_in_default_branch(self, admin_api, branch):
        response = admin_api.post("/api/auth/register", register_payload(role="EMPLOYEE"))

        assert response.status_code == 201, response.text
        assert response.json()["data"]["user"]["branch_id"] == branch.id

    def test_short_password_is_rejected(self, api):
        response = api.post("/api/auth/register", register_payload(password="short"))

        assert response.status_code == 422
        assert error_code(response) == "VALIDATION_ERROR"
        assert "password" in response.json()["detail"]["message"]


class TestLogin:
    def test_login_success(self, api, member_user):
        response = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == member_user.email
        assert response.json()["requires_2fa"] is False

    def test_login_wrong_password(self, api, member_user):
        response = api.post("/api/auth/login", {"email": member_user.email, "password": "wrong-password"})

        assert response.status_code == 401
        assert error_code(response) == "INVALID_CREDENTIALS"

    def test_login_inactive_account(self, api, db):
        create_user(db, "sleepy@gymmaster.com", is_active=False)
        response = api.post("/api/auth/login", {"email": "sleepy@gymmaster.com", "password": TEST_PASSWORD})

        assert response.status_code == 403
        assert error_code(response) == "INACTIVE_ACCOUNT"

    def test_me_requires_token(self, api):
        response = api.get("/api/auth/me")

        assert response.status_code == 401
        assert error_code(response) == "TOKEN_REQUIRED"

    def test_me_with_garbage_token(self, api):
        api.set_token("not-a-jwt")
        response = api.get("/api/auth/me")

        assert response.status_code == 401
        assert error_code(response) == "INVALID_TOKEN"

    def test_me_returns_member_profile(self, member_api, member):
        response = member_api.get("/api/auth/me")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["member"]["id"] == member.id
        assert data["trainer"] is None


class TestSessions:
    def test_refresh_issues_new_access_token(self, api, member_user):
        login = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD}).json()["data"]

        response = api.post("/api/auth/refresh", {"refresh_token": login["refresh_token"]})

        assert response.status_code == 200
        api.set_token(response.json()["data"]["access_token"])
        assert api.get("/api/auth/me").status_code == 200

    def test_refresh_with_access_token_fails(self, api, member_user):
        login = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD}).json()["data"]

        response = api.post("/api/auth/refresh", {"refresh_token": login["access_token"]})

        assert response.status_code == 401
        assert error_code(response) == "INVALID_REFRESH_TOKEN"

    def test_logout_revokes_refresh_token(self, client, member_user):
        api = APIClient(client)
        login = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD}).json()["data"]
        api.set_token(login["access_token"])

        assert api.post("/api/auth/logout", {"refresh_token": login["refresh_token"]}).status_code == 200

        response = api.post("/api/auth/refresh", {"refresh_token": login["refresh_token"]})
        assert response.status_code == 401
        assert error_code(response) == "INVALID_REFRESH_TOKEN"

    def test_logout_all_invalidates_access_tokens(self, member_api):
        assert member_api.post("/api/auth/logout-all").status_code == 200

        response = member_api.get("/api/auth/me")
        assert response.status_code == 401
        assert error_code(response) == "TOKEN_REVOKED"


class TestProfile:
    def test_update_profile(self, member_api):
        response = member_api.put("/api/auth/me", {"first_name": "Maximilian"})

        assert response.status_code == 200
        assert response.json()["data"]["full_name"] == "Maximilian Member"

    def test_change_password(self, client, member_api, member_user):
        response = member_api.put(
            "/api/auth/change-password",
            {"current_password": TEST_PASSWORD, "new_password": "a-new-password"},
        )
        assert response.status_code == 200

        APIClient(client).login(member_user.email, "a-new-password")

    def test_change_password_wrong_current(self, member_api):
        response = member_api.put(
            "/api/auth/change-password",
            {"current_password": "not-my-password", "new_password": "a-new-password"},
        )

        assert response.status_code == 400
        assert error_code(response) == "INVALID_CURRENT_PASSWORD"

    def test_check_email(self, api, member_user):
        taken = api.get("/api/auth/check-email", {"email": member_user.email}).json()["data"]
        free = api.get("/api/auth/check-email", {"email": "free@gymmaster.com"}).json()["data"]

        assert taken["available"] is False
        assert free["available"] is True

    def test_regenerate_own_qr(self, member_api, member):
        old_code = member.qr_code

        response = member_api.post("/api/auth/qr")

        assert response.status_code == 200
        assert response.json()["data"]["qr_code"] != old_code


class TestPasswordReset:
    def test_forgot_password_does_not_reveal_unknown_email(self, api):
        response = api.post("/api/auth/forgot-password", {"email": "nobody@gymmaster.com"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_reset_password_with_otp(self, api, client, member_user, monkeypatch):
        sent = {}

        def capture(to_email, otp_code, username):
            sent["code"] = otp_code
            return True

        monkeypatch.setattr("gymmaster.services.auth_service.send_password_reset_otp_email", capture)

        assert api.post("/api/auth/forgot-password", {"email": member_user.email}).status_code == 200
        response = api.post(
            "/api/auth/reset-password",
            {"email": member_user.email, "otp_code": sent["code"], "new_password": "reset-password-1"},
        )

        assert response.status_code == 200, response.text
        APIClient(client).login(member_user.email, "reset-password-1")

    def test_reset_password_wrong_otp(self, api, member_user, monkeypatch):
        monkeypatch.setattr("gymmaster.utils.otp.generate_otp", lambda length=6: "123456")
        monkeypatch.setattr(
            "gymmaster.services.auth_service.send_password_reset_otp_email", lambda *args, **kwargs: True
        )
        api.post("/api/auth/forgot-password", {"email": member_user.email})

        response = api.post(
            "/api/auth/reset-password",
            {"email": member_user.email, "otp_code": "000000", "new_password": "reset-password-1"},
        )

        assert response.status_code == 400
        assert error_code(response) == "INVALID_OTP"


class TestTwoFactor:
    def _capture_codes(self, monkeypatch):
        sent = []

        def capture(to_email, otp_code, username):
            sent.append(otp_code)
            return True

        monkeypatch.setattr("gymmaster.services.auth_service.send_login_otp_email", capture)
        return sent

    def _enable(self, db, user):
        user.is_2fa_enabled = True
        db.commit()

    def test_login_sends_code_instead_of_tokens(self, api, db, member_user, monkeypatch):
        sent = self._capture_codes(monkeypatch)
        self._enable(db, member_user)

        response = api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["requires_2fa"] is True
        assert body["data"] == {"user_id": member_user.id, "email": member_user.email}
        assert len(sent) == 1

        verified = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": sent[0]})

        assert verified.status_code == 200, verified.text
        api.set_token(verified.json()["data"]["access_token"])
        assert api.get("/api/auth/me").json()["data"]["email"] == member_user.email

    def test_code_works_once(self, api, db, member_user, monkeypatch):
        sent = self._capture_codes(monkeypatch)
        self._enable(db, member_user)
        api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        payload = {"email": member_user.email, "otp_code": sent[0]}
        assert api.post("/api/auth/verify-otp", payload).status_code == 200
        response = api.post("/api/auth/verify-otp", payload)

        assert response.status_code == 401
        assert error_code(response) == "INVALID_OTP"

    def test_wrong_code(self, api, db, member_user, monkeypatch):
        self._capture_codes(monkeypatch)
        monkeypatch.setattr("gymmaster.utils.otp.generate_otp", lambda length=6: "123456")
        self._enable(db, member_user)
        api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        response = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": "000000"})

        assert response.status_code == 401
        assert error_code(response) == "INVALID_OTP"

    def test_resend_replaces_pending_code(self, api, db, member_user, monkeypatch):
        sent = self._capture_codes(monkeypatch)
        codes = iter(["111111", "222222"])
        monkeypatch.setattr("gymmaster.utils.otp.generate_otp", lambda length=6: next(codes))
        self._enable(db, member_user)

        api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})
        resent = api.post("/api/auth/resend-otp", {"email": member_user.email})

        assert resent.status_code == 200
        assert "expires_at" in resent.json()["data"]
        assert sent == ["111111", "222222"]
        stale = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": "111111"})
        assert stale.status_code == 401
        fresh = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": "222222"})
        assert fresh.status_code == 200

    def test_disabling_drops_pending_code(self, api, db, member_user, monkeypatch):
        sent = self._capture_codes(monkeypatch)
        self._enable(db, member_user)
        api.post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})

        auth_service.set_two_factor(db, member_user.id, False)
        auth_service.set_two_factor(db, member_user.id, True)
        response = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": sent[0]})

        assert response.status_code == 401
        assert error_code(response) == "INVALID_OTP"

    def test_verify_without_two_factor(self, api, member_user):
        response = api.post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": "123456"})

        assert response.status_code == 400
        assert error_code(response) == "TWO_FACTOR_NOT_ENABLED"

    def test_self_service_toggle(self, client, member_api, member_user, monkeypatch):
        sent = self._capture_codes(monkeypatch)

        enabled = member_api.post("/api/auth/enable-2fa")
        assert enabled.status_code == 200
        assert enabled.json()["data"]["is_2fa_enabled"] is True

        pending = APIClient(client).post("/api/auth/login", {"email": member_user.email, "password": TEST_PASSWORD})
        assert pending.json()["requires_2fa"] is True
        assert len(sent) == 1

        disabled = member_api.post("/api/auth/disable-2fa")
        assert disabled.json()["data"]["is_2fa_enabled"] is False
        response = APIClient(client).post("/api/auth/verify-otp", {"email": member_user.email, "otp_code": sent[0]})
        assert error_code(response) == "TWO_FACTOR_NOT_ENABLED"
        APIClient(client).login(member_user.email)

    def test_admin_toggle(self, admin_api, staff_api, member_user):
        payload = {"user_id": member_user.id}

        assert staff_api.post("/api/auth/enable-2fa-admin", payload).status_code == 403

        enabled = admin_api.post("/api/auth/enable-2fa-admin", payload)
        assert enabled.status_code == 200
        assert enabled.json()["data"]["is_2fa_enabled"] is True
        again = admin_api.post("/api/auth/enable-2fa-admin", payload)
        assert again.status_code == 400
        assert error_code(again) == "TWO_FACTOR_ALREADY_ENABLED"

        assert admin_api.post("/api/auth/disable-2fa-admin", payload).status_code == 200
        again = admin_api.post("/api/auth/disable-2fa-admin", payload)
        assert error_code(again) == "TWO_FACTOR_NOT_ENABLED"

    def test_admin_toggle_unknown_user(self, admin_api):
        response = admin_api.post("/api/auth/enable-2fa-admin", {"user_id": 9999})

        assert response.status_code == 404
        assert error_code(response) == "USER_NOT_FOUND"
