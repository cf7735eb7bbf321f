"""Unit tests for auth/policy.py -- LoginGate admission order and attempt recording."""

from datetime import timedelta

import pytest

from auth.errors import AuthenticationError, ConflictError, RateLimitError, ValidationError
from auth.policy import ERR_ALREADY_LOGGED_IN, ERR_EMAIL_LOCKED, ERR_IP_LOCKED
from auth.service import ERR_EMAIL_REQUIRED, ERR_INVALID_CREDENTIALS
from conftest import TEST_PASSWORD, make_verified_user

IP = "10.0.0.1"


def _fail(gate, service, email, ip=IP, password="wrongpassword"):
    with pytest.raises(AuthenticationError):
        gate.attempt(email, password, ip, service.login)


def _failed_since(ledger, clock, email=None, ip=None):
    since = clock() - timedelta(minutes=15)
    if email is not None:
        return ledger.count_failed_for_email(email, since)
    return ledger.count_failed_for_ip(ip, since)


class TestCheckOrder:
    def test_missing_email_checked_first(self, gate):
        with pytest.raises(ValidationError) as excinfo:
            gate.check(None, IP)
        assert excinfo.value.message == ERR_EMAIL_REQUIRED

    def test_returns_normalized_email(self, gate):
        assert gate.check(" A@X.com ", IP) == "a@x.com"

    def test_active_session_is_conflict(self, gate, service, user_store, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)

        with pytest.raises(ConflictError) as excinfo:
            gate.check("a@x.com", IP)
        assert excinfo.value.status_code == 409
        assert excinfo.value.message == ERR_ALREADY_LOGGED_IN

    def test_conflict_precedes_password_check(self, gate, service, user_store, ledger, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)

        with pytest.raises(ConflictError):
            gate.attempt("a@x.com", "wrongpassword", IP, service.login)
        assert _failed_since(ledger, clock, email="a@x.com") == 0

    def test_lockout_precedes_conflict(self, gate, service, user_store, ledger, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)
        for _ in range(5):
            ledger.record("a@x.com", "10.9.9.9", successful=False)

        with pytest.raises(RateLimitError) as excinfo:
            gate.check("a@x.com", IP)
        assert excinfo.value.message == ERR_EMAIL_LOCKED

    def test_expired_session_no_longer_conflicts(self, gate, service, user_store, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)
        clock.advance(hours=24, seconds=1)
        assert gate.check("a@x.com", IP) == "a@x.com"


class TestLockouts:
    def test_email_locked_after_five_failures(self, gate, service, user_store, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        for _ in range(5):
            _fail(gate, service, "a@x.com")

        # Correct password, still locked.
        with pytest.raises(RateLimitError) as excinfo:
            gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)
        assert excinfo.value.status_code == 429
        assert excinfo.value.message == ERR_EMAIL_LOCKED

    def test_email_lock_applies_from_any_ip(self, gate, service):
        for i in range(5):
            _fail(gate, service, "a@x.com", ip=f"10.0.0.{i}")
        with pytest.raises(RateLimitError) as excinfo:
            gate.check("a@x.com", "192.168.1.1")
        assert excinfo.value.message == ERR_EMAIL_LOCKED

    def test_ip_locked_after_ten_failures(self, gate, service):
        for i in range(10):
            _fail(gate, service, f"user{i}@x.com")
        with pytest.raises(RateLimitError) as excinfo:
            gate.check("fresh@x.com", IP)
        assert excinfo.value.message == ERR_IP_LOCKED
        # Another address is unaffected.
        assert gate.check("fresh@x.com", "10.0.0.2") == "fresh@x.com"

    def test_lock_lifts_when_window_slides(self, gate, service, user_store, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        for _ in range(5):
            _fail(gate, service, "a@x.com")

        clock.advance(minutes=14)
        with pytest.raises(RateLimitError):
            gate.check("a@x.com", IP)

        clock.advance(minutes=1, seconds=1)
        result = gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)
        assert result.status_code == 200

    def test_window_is_trailing_not_fixed(self, gate, service, clock):
        for _ in range(3):
            _fail(gate, service, "a@x.com")
        clock.advance(minutes=10)
        for _ in range(2):
            _fail(gate, service, "a@x.com")

        # Ten minutes later the first three have aged out; two remain.
        clock.advance(minutes=6)
        assert gate.check("a@x.com", IP) == "a@x.com"


class TestRecording:
    def test_failure_and_success_recorded(self, gate, service, user_store, ledger, clock):
        make_verified_user(user_store, "a@x.com", clock=clock)
        with pytest.raises(AuthenticationError) as excinfo:
            gate.attempt("a@x.com", "wrongpassword", IP, service.login)
        assert excinfo.value.message == ERR_INVALID_CREDENTIALS
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)

        assert _failed_since(ledger, clock, email="a@x.com") == 1
        assert _failed_since(ledger, clock, ip=IP) == 1

    def test_missing_password_counts_as_failure(self, gate, service, ledger, clock):
        with pytest.raises(ValidationError):
            gate.attempt("a@x.com", None, IP, service.login)
        assert _failed_since(ledger, clock, email="a@x.com") == 1

    def test_unknown_email_counts_as_failure(self, gate, service, ledger, clock):
        _fail(gate, service, "ghost@x.com")
        assert _failed_since(ledger, clock, email="ghost@x.com") == 1

    def test_rejected_by_check_not_recorded(self, gate, service, ledger, clock):
        with pytest.raises(ValidationError):
            gate.attempt(None, "x", IP, service.login)
        assert _failed_since(ledger, clock, ip=IP) == 0

    def test_success_does_not_reset_failures(self, gate, service, user_store, ledger, clock):
        user = make_verified_user(user_store, "a@x.com", clock=clock)
        for _ in range(4):
            _fail(gate, service, "a@x.com")
        gate.attempt("a@x.com", TEST_PASSWORD, IP, service.login)
        service.logout(user)

        assert _failed_since(ledger, clock, email="a@x.com") == 4
        _fail(gate, service, "a@x.com")
        with pytest.raises(RateLimitError):
            gate.check("a@x.com", IP)
