"""
Integration tests for the second factor.

Covers the gate in front of session issuance (pending tokens, trusted devices)
and the /api/auth/2fa setup endpoints.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.core.security import PENDING_TOKEN, create_session_token, decode_token
from household_auth.models.trusted_device import TrustedDevice
from household_auth.services.codes import CodePurpose
from tests.factories import TrustedDeviceFactory, UserFactory


async def primary_login(client: AsyncClient, delivery, email: str, headers=None):
    """Request and verify a login code; returns the verify response."""
    await client.post("/api/auth/login-code", json={"email": email})
    code = delivery.last(CodePurpose.LOGIN).code
    return await client.post(
        "/api/auth/verify-login-code",
        json={"email": email, "code": code},
        headers=headers or {},
    )


@pytest.mark.asyncio
class TestSecondFactorGate:
    """Primary authentication for users with 2FA enabled."""

    async def test_returns_pending_token(self, client: AsyncClient, two_fa_user, delivery):
        response = await primary_login(client, delivery, "secure@example.com")

        assert response.status_code == 200
        data = response.json()
        assert data["requiresTwoFactor"] is True
        assert data["twoFAMethod"] == "email"
        assert "token" not in data

        claims = decode_token(data["tempToken"], expected_type=PENDING_TOKEN)
        assert claims["sub"] == str(two_fa_user.id)
        assert claims["exp"] - claims["iat"] <= 5 * 60

        sent = delivery.last(CodePurpose.SECOND_FACTOR)
        assert sent.user_id == two_fa_user.id
        assert two_fa_user.two_fa_code is not None

    async def test_login_code_consumed_before_second_factor(self, client: AsyncClient, two_fa_user, delivery):
        await primary_login(client, delivery, "secure@example.com")

        assert two_fa_user.login_code is None
        assert two_fa_user.two_fa_code is not None

    async def test_sms_user_gets_sms_code(self, client: AsyncClient, db_session: AsyncSession, delivery):
        user = await UserFactory.create_async(
            db_session,
            email="sms@example.com",
            phone_number="+15550002222",
            two_fa_enabled=True,
            two_fa_method="sms",
        )
        await db_session.commit()

        response = await primary_login(client, delivery, "sms@example.com")

        assert response.json()["twoFAMethod"] == "sms"
        sent = delivery.last(CodePurpose.SECOND_FACTOR)
        assert sent.user_id == user.id
        assert sent.channel == "sms"

    async def test_verify_second_factor_issues_session(self, client: AsyncClient, two_fa_user, delivery):
        pending = await primary_login(client, delivery, "secure@example.com")
        code = delivery.last(CodePurpose.SECOND_FACTOR).code

        response = await client.post(
            "/api/auth/2fa/verify",
            json={"tempToken": pending.json()["tempToken"], "code": code},
        )

        assert response.status_code == 200
        data = response.json()
        claims = decode_token(data["token"])
        assert claims["sub"] == str(two_fa_user.id)
        assert claims["twoFAVerified"] is True
        assert data["user"]["twoFAVerified"] is True
        assert data.get("deviceToken") is None
        assert "set-cookie" not in response.headers
        assert two_fa_user.two_fa_code is None

    async def test_wrong_second_factor_code(self, client: AsyncClient, two_fa_user, delivery):
        pending = await primary_login(client, delivery, "secure@example.com")
        code = delivery.last(CodePurpose.SECOND_FACTOR).code
        wrong = "100000" if code != "100000" else "100001"

        response = await client.post(
            "/api/auth/2fa/verify",
            json={"tempToken": pending.json()["tempToken"], "code": wrong},
        )

        assert response.status_code == 400
        assert response.json()["attemptsRemaining"] == 2

    async def test_resend_second_factor_code(self, client: AsyncClient, two_fa_user, delivery):
        pending = await primary_login(client, delivery, "secure@example.com")
        temp_token = pending.json()["tempToken"]

        response = await client.post("/api/auth/2fa/resend-code", json={"tempToken": temp_token})

        assert response.status_code == 200
        assert response.json()["method"] == "email"
        assert len(delivery.codes_for(CodePurpose.SECOND_FACTOR)) == 2

        code = delivery.last(CodePurpose.SECOND_FACTOR).code
        verify = await client.post("/api/auth/2fa/verify", json={"tempToken": temp_token, "code": code})
        assert verify.status_code == 200

    async def test_pending_token_rejected_on_protected_route(self, client: AsyncClient, two_fa_user, delivery):
        pending = await primary_login(client, delivery, "secure@example.com")

        response = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {pending.json()['tempToken']}"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_token"

    async def test_session_token_rejected_as_pending_token(self, client: AsyncClient, two_fa_user):
        session = create_session_token(two_fa_user.id, token_version=two_fa_user.token_version)

        response = await client.post("/api/auth/2fa/verify", json={"tempToken": session, "code": "123456"})

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_token"

    async def test_pending_token_for_user_without_2fa(self, client: AsyncClient, user):
        from household_auth.core.security import create_pending_token
        temp_token = create_pending_token(user.id, user.email)

        response = await client.post("/api/auth/2fa/verify", json={"tempToken": temp_token, "code": "123456"})

        assert response.status_code == 401


@pytest.mark.asyncio
class TestTrustedDeviceBypass:
    """Trusted devices skip the second factor."""

    async def test_trust_device_sets_cookie_and_returns_token(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery
    ):
        pending = await primary_login(client, delivery, "secure@example.com")
        code = delivery.last(CodePurpose.SECOND_FACTOR).code

        response = await client.post(
            "/api/auth/2fa/verify",
            json={"tempToken": pending.json()["tempToken"], "code": code, "trustDevice": True},
            headers={"User-Agent": "Budget iOS/2.1"},
        )

        assert response.status_code == 200
        device_token = response.json()["deviceToken"]
        assert device_token
        cookie = response.headers["set-cookie"]
        assert f"trusted_device={device_token}" in cookie
        assert "HttpOnly" in cookie
        assert "Max-Age=2592000" in cookie

        result = await db_session.execute(select(TrustedDevice).where(TrustedDevice.token == device_token))
        device = result.scalar_one()
        assert device.user_id == two_fa_user.id
        assert device.user_agent == "Budget iOS/2.1"
        assert device.expires_at > datetime.now(timezone.utc) + timedelta(days=29)

    async def test_trusted_device_header_skips_second_factor(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery
    ):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await primary_login(
            client, delivery, "secure@example.com", headers={"X-Device-Token": device.token}
        )

        assert response.status_code == 200
        data = response.json()
        assert "token" in data
        assert "tempToken" not in data
        assert delivery.codes_for(CodePurpose.SECOND_FACTOR) == []
        assert two_fa_user.two_fa_code is None

    async def test_trusted_device_cookie_skips_second_factor(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery
    ):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await primary_login(
            client, delivery, "secure@example.com", headers={"Cookie": f"trusted_device={device.token}"}
        )

        assert "token" in response.json()
        assert delivery.codes_for(CodePurpose.SECOND_FACTOR) == []

    async def test_expired_device_still_requires_second_factor(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery
    ):
        device = await TrustedDeviceFactory.create_async(
            db_session,
            user_id=two_fa_user.id,
            expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
        )
        await db_session.commit()

        response = await primary_login(
            client, delivery, "secure@example.com", headers={"X-Device-Token": device.token}
        )

        assert response.json()["requiresTwoFactor"] is True
        assert len(delivery.codes_for(CodePurpose.SECOND_FACTOR)) == 1

    async def test_other_users_device_is_not_trusted(
        self, client: AsyncClient, db_session: AsyncSession, user, two_fa_user, delivery
    ):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=user.id)
        await db_session.commit()

        response = await primary_login(
            client, delivery, "secure@example.com", headers={"X-Device-Token": device.token}
        )

        assert response.json()["requiresTwoFactor"] is True

    async def test_device_use_refreshes_last_used(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery
    ):
        old = datetime.now(timezone.utc) - timedelta(days=3)
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id, last_used_at=old)
        await db_session.commit()

        await primary_login(client, delivery, "secure@example.com", headers={"X-Device-Token": device.token})

        assert device.last_used_at > old + timedelta(days=2)


@pytest.mark.asyncio
class TestTwoFactorSetup:
    """Test /api/auth/2fa/configure, /confirm, /cancel-setup and /status."""

    async def test_enable_requires_confirmation(self, client: AsyncClient, user, auth_headers, delivery):
        response = await client.post("/api/auth/2fa/configure", json={"enabled": True}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["requiresVerification"] is True
        assert data["method"] == "email"
        assert data["user"]["twoFAEnabled"] is False
        assert user.two_fa_pending is True
        assert user.two_fa_enabled is False
        assert delivery.last(CodePurpose.SECOND_FACTOR).user_id == user.id

    async def test_confirm_enables_two_factor(self, client: AsyncClient, user, auth_headers, delivery):
        await client.post("/api/auth/2fa/configure", json={"enabled": True}, headers=auth_headers)
        code = delivery.last(CodePurpose.SECOND_FACTOR).code

        response = await client.post("/api/auth/2fa/confirm", json={"code": code}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["twoFAEnabled"] is True
        assert user.two_fa_enabled is True
        assert user.two_fa_pending is False

    async def test_confirm_with_wrong_code(self, client: AsyncClient, user, auth_headers, delivery):
        await client.post("/api/auth/2fa/configure", json={"enabled": True}, headers=auth_headers)
        code = delivery.last(CodePurpose.SECOND_FACTOR).code
        wrong = "100000" if code != "100000" else "100001"

        response = await client.post("/api/auth/2fa/confirm", json={"code": wrong}, headers=auth_headers)

        assert response.status_code == 400
        assert user.two_fa_enabled is False

    async def test_confirm_without_setup(self, client: AsyncClient, auth_headers):
        response = await client.post("/api/auth/2fa/confirm", json={"code": "123456"}, headers=auth_headers)

        assert response.status_code == 400

    async def test_sms_requires_phone(self, client: AsyncClient, auth_headers):
        response = await client.post(
            "/api/auth/2fa/configure", json={"enabled": True, "method": "sms"}, headers=auth_headers
        )

        assert response.status_code == 400

    async def test_sms_with_new_phone(self, client: AsyncClient, user, auth_headers, delivery):
        response = await client.post(
            "/api/auth/2fa/configure",
            json={"enabled": True, "method": "sms", "phoneNumber": "+15550003333"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["method"] == "sms"
        assert user.phone_number == "+15550003333"
        assert delivery.last(CodePurpose.SECOND_FACTOR).channel == "sms"

    async def test_sms_phone_taken(self, client: AsyncClient, db_session: AsyncSession, user, auth_headers):
        await UserFactory.create_async(db_session, phone_number="+15550004444")
        await db_session.commit()

        response = await client.post(
            "/api/auth/2fa/configure",
            json={"enabled": True, "method": "sms", "phoneNumber": "+15550004444"},
            headers=auth_headers,
        )

        assert response.status_code == 409

    async def test_invalid_method_is_422(self, client: AsyncClient, auth_headers):
        response = await client.post(
            "/api/auth/2fa/configure", json={"enabled": True, "method": "totp"}, headers=auth_headers
        )

        assert response.status_code == 422

    async def test_cancel_setup(self, client: AsyncClient, user, auth_headers):
        await client.post("/api/auth/2fa/configure", json={"enabled": True}, headers=auth_headers)

        response = await client.post("/api/auth/2fa/cancel-setup", headers=auth_headers)

        assert response.status_code == 200
        assert user.two_fa_pending is False
        assert user.two_fa_code is None

    async def test_disable_ends_sessions_and_forgets_devices(
        self, client: AsyncClient, db_session: AsyncSession, two_fa_user, make_auth_headers
    ):
        await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()
        old_headers = make_auth_headers(two_fa_user)
        old_version = two_fa_user.token_version

        response = await client.post("/api/auth/2fa/configure", json={"enabled": False}, headers=old_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["requiresVerification"] is False
        assert data["user"]["twoFAEnabled"] is False
        assert two_fa_user.token_version == old_version + 1

        count = await db_session.execute(
            select(func.count(TrustedDevice.id)).where(TrustedDevice.user_id == two_fa_user.id)
        )
        assert count.scalar_one() == 0

        stale = await client.get("/api/auth/me", headers=old_headers)
        assert stale.status_code == 401
        assert stale.json()["code"] == "revoked"

        fresh = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert fresh.status_code == 200

    async def test_status(self, client: AsyncClient, db_session: AsyncSession, two_fa_user, make_auth_headers):
        await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await TrustedDeviceFactory.create_async(
            db_session,
            user_id=two_fa_user.id,
            expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        await db_session.commit()

        response = await client.get("/api/auth/2fa/status", headers=make_auth_headers(two_fa_user))

        assert response.status_code == 200
        assert response.json() == {
            "enabled": True,
            "pending": False,
            "method": "email",
            "phoneNumber": None,
            "trustedDevices": 1,
        }

    async def test_status_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/auth/2fa/status")

        assert response.status_code == 401


@pytest.mark.asyncio
class TestSecondFactorDeliveryFailure:
    """A second-factor code that could not be sent can still be resent."""

    async def test_failed_send_returns_pending_token(self, client: AsyncClient, db_session: AsyncSession, two_fa_user, delivery):
        await client.post("/api/auth/login-code", json={"email": "secure@example.com"})
        login_code = delivery.last(CodePurpose.LOGIN).code
        delivery.fail = True

        response = await client.post(
            "/api/auth/verify-login-code", json={"email": "secure@example.com", "code": login_code}
        )

        assert response.status_code == 424
        data = response.json()
        assert data["code"] == "delivery_failed"
        assert data["retryable"] is True
        assert data["requiresTwoFactor"] is True
        assert data["twoFAMethod"] == "email"
        claims = decode_token(data["tempToken"], expected_type=PENDING_TOKEN)
        assert claims["sub"] == str(two_fa_user.id)
        await db_session.refresh(two_fa_user)
        assert two_fa_user.two_fa_code is not None

    async def test_resend_after_failed_send_completes_login(self, client: AsyncClient, two_fa_user, delivery):
        await client.post("/api/auth/login-code", json={"email": "secure@example.com"})
        login_code = delivery.last(CodePurpose.LOGIN).code
        delivery.fail = True
        failed = await client.post(
            "/api/auth/verify-login-code", json={"email": "secure@example.com", "code": login_code}
        )
        temp_token = failed.json()["tempToken"]

        delivery.fail = False
        resend = await client.post("/api/auth/2fa/resend-code", json={"tempToken": temp_token})
        assert resend.status_code == 200

        response = await client.post(
            "/api/auth/2fa/verify",
            json={"tempToken": temp_token, "code": delivery.last(CodePurpose.SECOND_FACTOR).code},
        )

        assert response.status_code == 200
        assert decode_token(response.json()["token"])["sub"] == str(two_fa_user.id)
