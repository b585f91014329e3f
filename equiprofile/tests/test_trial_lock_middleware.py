"""
Tests for the gateway entitlement middleware.

An unguarded route (/api/horses) is added to the full app so these tests
observe the gateway alone: whatever reaches the handler got past it.
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from equiprofile.platform.auth import SESSION_COOKIE_NAME, issue_session_token


@pytest.fixture
def handler_calls():
    return []


@pytest.fixture
def gated_client(app, handler_calls):
    """Full app plus one route that declares no guard at all."""

    @app.get("/api/horses")
    def list_horses():
        handler_calls.append("list_horses")
        return {"horses": []}

    return TestClient(app)


def db_down(*args, **kwargs):
    raise OperationalError("SELECT users", {}, Exception("connection refused"))


# =============================================================================
# Pass-through cases
# =============================================================================

class TestPassThrough:

    def test_no_session_is_forwarded(self, gated_client, handler_calls):
        response = gated_client.get("/api/horses")

        assert response.status_code == 200
        assert handler_calls == ["list_horses"]

    def test_invalid_token_is_forwarded(self, gated_client, handler_calls):
        response = gated_client.get("/api/horses", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 200

    def test_unknown_user_is_forwarded(self, gated_client, auth_headers):
        response = gated_client.get("/api/horses", headers=auth_headers("deleted-user"))

        assert response.status_code == 200

    def test_entitled_user_is_forwarded(self, gated_client, make_user, auth_headers, handler_calls):
        user = make_user(subscription_status="active")

        response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 200
        assert handler_calls == ["list_horses"]

    def test_session_cookie_is_read(self, gated_client, make_user, clock, settings, handler_calls):
        user = make_user(subscription_status="trial", created_at=clock.now - timedelta(days=8))
        gated_client.cookies.set(SESSION_COOKIE_NAME, issue_session_token(user.id, settings.jwt_secret))

        response = gated_client.get("/api/horses")

        assert response.status_code == 402
        assert handler_calls == []


# =============================================================================
# Denials
# =============================================================================

class TestDenials:

    def test_expired_trial_is_blocked_before_handler(
        self, gated_client, make_user, auth_headers, clock, handler_calls
    ):
        user = make_user(subscription_status="trial", created_at=clock.now - timedelta(days=8))

        response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 402
        assert response.json() == {
            "error": "Trial expired",
            "message": "Your 7-day trial has ended. Please upgrade to continue using EquiProfile.",
            "code": "TRIAL_EXPIRED",
            "trialEndedAt": (clock.now - timedelta(days=1)).isoformat(),
        }
        assert handler_calls == []

    def test_suspended_is_403(self, gated_client, make_user, auth_headers, handler_calls):
        user = make_user(
            subscription_status="active", is_suspended=True, suspended_reason="Chargeback"
        )

        response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 403
        assert response.json()["code"] == "ACCOUNT_SUSPENDED"
        assert response.json()["message"] == "Chargeback"
        assert handler_calls == []

    @pytest.mark.parametrize("status", ["expired", "overdue"])
    def test_lapsed_subscription_is_402(self, gated_client, make_user, auth_headers, status):
        user = make_user(subscription_status=status)

        response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 402
        assert response.json()["code"] == "SUBSCRIPTION_EXPIRED"

    def test_cancelled_past_end_is_402(self, gated_client, make_user, auth_headers, clock):
        user = make_user(
            subscription_status="cancelled",
            subscription_ends_at=clock.now - timedelta(days=1),
        )

        response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 402
        assert response.json()["code"] == "SUBSCRIPTION_ENDED"

    def test_denial_logged_at_info(self, gated_client, make_user, auth_headers, caplog):
        user = make_user(subscription_status="expired")

        with caplog.at_level(logging.INFO, logger="equiprofile.entitlements.audit"):
            gated_client.get("/api/horses", headers=auth_headers(user.id))

        records = [r for r in caplog.records if r.message == "Entitlement denied"]
        assert len(records) == 1
        assert records[0].levelno == logging.INFO
        assert records[0].code == "SUBSCRIPTION_EXPIRED"
        assert records[0].surface == "gateway"


# =============================================================================
# Exempt paths
# =============================================================================

class TestExemptPaths:

    def test_locked_user_can_reach_exempt_routes(self, client, make_user, auth_headers, clock):
        user = make_user(subscription_status="trial", created_at=clock.now - timedelta(days=30))
        headers = auth_headers(user.id)

        assert client.get("/api/health", headers=headers).status_code == 200
        assert client.get("/api/build", headers=headers).status_code == 200
        assert client.get("/api/auth/session", headers=headers).status_code == 200
        assert client.get("/api/billing/plans", headers=headers).status_code == 200
        assert client.get("/trpc/billing.getStatus", headers=headers).status_code == 200
        assert client.get("/trpc/user.getProfile", headers=headers).status_code == 200


# =============================================================================
# Fail-open
# =============================================================================

class TestFailOpen:

    def test_storage_error_forwards_request(
        self, gated_client, make_user, auth_headers, handler_calls, caplog
    ):
        user = make_user(subscription_status="expired")

        with patch(
            "equiprofile.entitlements.middleware.AccountSnapshotReader.load",
            side_effect=db_down,
        ):
            with caplog.at_level(logging.ERROR, logger="equiprofile.entitlements.audit"):
                response = gated_client.get("/api/horses", headers=auth_headers(user.id))

        assert response.status_code == 200
        assert handler_calls == ["list_horses"]
        failures = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert failures and failures[0].fail_open is True

    def test_changes_apply_on_next_request(
        self, gated_client, make_user, auth_headers, db_session, clock
    ):
        user = make_user(subscription_status="trial", created_at=clock.now - timedelta(days=8))
        headers = auth_headers(user.id)
        assert gated_client.get("/api/horses", headers=headers).status_code == 402

        user.subscription_status = "active"
        db_session.commit()

        assert gated_client.get("/api/horses", headers=headers).status_code == 200
