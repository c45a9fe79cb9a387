"""Service-level tests for the registration / OTP / login lifecycle."""

from datetime import datetime, timedelta

import pytest

from app.core.errors import (
    AlreadyActivated,
    Conflict,
    InvalidOrExpired,
    NotFound,
    NotificationError,
    Unauthorized,
)
from app.models.access_token import AccessToken
from app.models.otp import UserOtp
from app.models.user import User
from app.schemas.user import RegisterRequest
from app.services import accounts
from app.services.security import generate_otp, verify_password


def _payload(email="a@x.com", password="secret1", first_name="Ada", company=None) -> RegisterRequest:
    return RegisterRequest(
        first_name=first_name,
        last_name="Lovelace",
        company=company,
        email=email,
        password=password,
    )


def _otps(db, user_id):
    db.expire_all()
    return db.query(UserOtp).filter(UserOtp.user_id == user_id).all()


class TestRegister:
    def test_creates_pending_user_and_sends_code(self, db, mailer):
        message = accounts.register(db, mailer, _payload(company="ACME"))

        assert "check your email" in message
        user = accounts.find_user_by_email(db, "a@x.com")
        assert user is not None
        assert user.is_activated is False
        assert user.company == "ACME"
        assert verify_password("secret1", user.hashed_password)

        otps = _otps(db, user.id)
        assert len(otps) == 1
        assert otps[0].otp_code == mailer.last_code("a@x.com")
        assert mailer.sent[-1]["name"] == "Ada Lovelace"
        assert len(otps[0].otp_code) == 6
        assert otps[0].expires_at > datetime.utcnow() + timedelta(minutes=9)

    def test_reregister_overwrites_profile_and_invalidates_old_code(self, db, mailer):
        accounts.register(db, mailer, _payload(password="secret1"))
        first_code = mailer.last_code("a@x.com")

        accounts.register(db, mailer, _payload(password="another2", first_name="Augusta"))
        second_code = mailer.last_code("a@x.com")

        db.expire_all()
        user = accounts.find_user_by_email(db, "a@x.com")
        assert user.first_name == "Augusta"
        assert verify_password("another2", user.hashed_password)
        assert len(_otps(db, user.id)) == 1
        assert db.query(User).count() == 1

        if first_code != second_code:
            with pytest.raises(InvalidOrExpired):
                accounts.verify_otp(db, "a@x.com", first_code)
        assert accounts.verify_otp(db, "a@x.com", second_code) == "Account activated successfully."

    def test_activated_email_conflicts_without_mutation(self, db, mailer, make_user):
        user = make_user(email="a@x.com", password="original")
        original_hash = user.hashed_password

        with pytest.raises(Conflict):
            accounts.register(db, mailer, _payload(password="hijack1"))

        db.expire_all()
        user = accounts.find_user_by_email(db, "a@x.com")
        assert user.hashed_password == original_hash
        assert user.first_name == "Test"
        assert _otps(db, user.id) == []
        assert mailer.sent == []

    def test_mail_failure_rolls_back_new_registration(self, db, mailer):
        mailer.fail = True

        with pytest.raises(NotificationError):
            accounts.register(db, mailer, _payload())

        db.expire_all()
        assert db.query(User).count() == 0
        assert db.query(UserOtp).count() == 0

    def test_mail_failure_keeps_previous_state_on_reregister(self, db, mailer):
        accounts.register(db, mailer, _payload(password="secret1"))
        code = mailer.last_code("a@x.com")

        mailer.fail = True
        with pytest.raises(NotificationError):
            accounts.register(db, mailer, _payload(password="changed9", first_name="Mallory"))

        db.expire_all()
        user = accounts.find_user_by_email(db, "a@x.com")
        assert user.first_name == "Ada"
        assert verify_password("secret1", user.hashed_password)
        assert [o.otp_code for o in _otps(db, user.id)] == [code]

    def test_mail_transport_exception_is_a_notification_error(self, db):
        class ExplodingMailer:
            def send_otp_email(self, *args, **kwargs):
                raise RuntimeError("smtp down")

        with pytest.raises(NotificationError):
            accounts.register(db, ExplodingMailer(), _payload())
        assert db.query(User).count() == 0


class TestVerifyOtp:
    def test_code_verifies_once(self, db, mailer):
        accounts.register(db, mailer, _payload())
        code = mailer.last_code("a@x.com")

        accounts.verify_otp(db, "a@x.com", code)

        user = accounts.find_user_by_email(db, "a@x.com")
        assert user.is_activated is True
        assert _otps(db, user.id) == []
        with pytest.raises(InvalidOrExpired):
            accounts.verify_otp(db, "a@x.com", code)

    def test_wrong_code_is_rejected(self, db, mailer):
        accounts.register(db, mailer, _payload())
        code = mailer.last_code("a@x.com")
        wrong = "100000" if code != "100000" else "100001"

        with pytest.raises(InvalidOrExpired):
            accounts.verify_otp(db, "a@x.com", wrong)
        assert accounts.find_user_by_email(db, "a@x.com").is_activated is False

    def test_expired_code_is_rejected(self, db, mailer):
        accounts.register(db, mailer, _payload())
        code = mailer.last_code("a@x.com")
        db.query(UserOtp).update({UserOtp.expires_at: datetime.utcnow() - timedelta(seconds=1)})
        db.commit()

        with pytest.raises(InvalidOrExpired):
            accounts.verify_otp(db, "a@x.com", code)
        # the global sweep removed the expired row
        assert db.query(UserOtp).count() == 0

    def test_unknown_email(self, db):
        with pytest.raises(NotFound):
            accounts.verify_otp(db, "nobody@x.com", "123456")

    def test_sweep_removes_expired_challenges_of_every_user(self, db, make_user):
        alice = make_user(email="alice@x.com", activated=False)
        bob = make_user(email="bob@x.com", activated=False)
        past = datetime.utcnow() - timedelta(minutes=1)
        future = datetime.utcnow() + timedelta(minutes=5)
        db.add_all(
            [
                UserOtp(user_id=alice.id, otp_code="111111", expires_at=past, is_verified=False),
                UserOtp(user_id=bob.id, otp_code="222222", expires_at=past, is_verified=True),
                UserOtp(user_id=bob.id, otp_code="333333", expires_at=future, is_verified=False),
            ]
        )
        db.commit()

        assert accounts.sweep_expired_otps(db) == 2
        db.commit()
        assert [o.otp_code for o in db.query(UserOtp).all()] == ["333333"]


class TestResendOtp:
    def test_replaces_pending_code(self, db, mailer):
        accounts.register(db, mailer, _payload())
        user = accounts.find_user_by_email(db, "a@x.com")

        accounts.resend_otp(db, mailer, "a@x.com")

        otps = _otps(db, user.id)
        assert len(otps) == 1
        assert otps[0].otp_code == mailer.last_code("a@x.com")
        assert len(mailer.sent) == 2

    def test_activated_account_gets_no_new_challenge(self, db, mailer, make_user):
        user = make_user(email="a@x.com")

        with pytest.raises(AlreadyActivated):
            accounts.resend_otp(db, mailer, "a@x.com")
        assert _otps(db, user.id) == []
        assert mailer.sent == []

    def test_unknown_email(self, db, mailer):
        with pytest.raises(NotFound):
            accounts.resend_otp(db, mailer, "nobody@x.com")

    def test_mail_failure_keeps_previous_code(self, db, mailer):
        accounts.register(db, mailer, _payload())
        code = mailer.last_code("a@x.com")
        user = accounts.find_user_by_email(db, "a@x.com")

        mailer.fail = True
        with pytest.raises(NotificationError):
            accounts.resend_otp(db, mailer, "a@x.com")

        assert [o.otp_code for o in _otps(db, user.id)] == [code]


class TestLogin:
    def test_success_returns_single_token(self, db, make_user):
        user = make_user(email="a@x.com", password="secret1")

        first, _ = accounts.login(db, "a@x.com", "secret1")
        second, logged_in = accounts.login(db, "a@x.com", "secret1")

        assert logged_in.id == user.id
        assert first != second
        tokens = db.query(AccessToken).filter(AccessToken.user_id == user.id).all()
        assert len(tokens) == 1

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, db, make_user):
        make_user(email="a@x.com", password="secret1")

        with pytest.raises(Unauthorized) as unknown:
            accounts.login(db, "nobody@x.com", "secret1")
        with pytest.raises(Unauthorized) as wrong:
            accounts.login(db, "a@x.com", "wrong-password")

        assert unknown.value.detail == wrong.value.detail == "Invalid credentials."

    def test_not_activated_has_its_own_message(self, db, make_user):
        make_user(email="a@x.com", password="secret1", activated=False)

        with pytest.raises(Unauthorized) as exc:
            accounts.login(db, "a@x.com", "secret1")
        assert "not activated" in exc.value.detail


class TestLogout:
    def test_revokes_only_the_presented_token(self, db, make_user):
        user = make_user(email="a@x.com")
        token, _ = accounts.login(db, "a@x.com", "secret1")

        accounts.logout(db, token)

        assert db.query(AccessToken).filter(AccessToken.user_id == user.id).count() == 0

    def test_missing_session_is_a_noop(self, db):
        assert accounts.logout(db, None) == "Logged out successfully."
        assert accounts.logout(db, "not-a-real-token") == "Logged out successfully."


def test_generate_otp_stays_in_range():
    codes = {generate_otp(100000, 999999) for _ in range(200)}
    assert all(100000 <= int(code) <= 999999 for code in codes)
    assert all(len(code) == 6 for code in codes)
    assert generate_otp(5, 5) == "5"
