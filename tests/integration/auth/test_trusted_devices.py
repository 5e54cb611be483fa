"""
Integration tests for trusted-device management endpoints.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.models.trusted_device import TrustedDevice
from tests.factories import TrustedDeviceFactory


@pytest.mark.asyncio
class TestListTrustedDevices:
    """Test GET /api/auth/trusted-devices."""

    async def test_lists_live_devices(self, client: AsyncClient, db_session: AsyncSession, two_fa_user, make_auth_headers):
        live = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id, user_agent="Laptop")
        await TrustedDeviceFactory.create_async(
            db_session, user_id=two_fa_user.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
        )
        await db_session.commit()

        response = await client.get("/api/auth/trusted-devices", headers=make_auth_headers(two_fa_user))

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["id"] == live.id
        assert data[0]["userAgent"] == "Laptop"
        assert data[0]["current"] is False
        assert "token" not in data[0]

    async def test_marks_current_device(self, client: AsyncClient, db_session: AsyncSession, two_fa_user, make_auth_headers):
        current = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        headers = {**make_auth_headers(two_fa_user), "X-Device-Token": current.token}
        response = await client.get("/api/auth/trusted-devices", headers=headers)

        flags = {item["id"]: item["current"] for item in response.json()}
        assert flags[current.id] is True
        assert sum(flags.values()) == 1

    async def test_does_not_list_other_users_devices(
        self, client: AsyncClient, db_session: AsyncSession, user, two_fa_user, auth_headers
    ):
        await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await client.get("/api/auth/trusted-devices", headers=auth_headers)

        assert response.json() == []


@pytest.mark.asyncio
class TestForgetTrustedDevices:
    """Test DELETE /api/auth/trusted-devices[/{device_id}]."""

    async def test_forget_one(self, client: AsyncClient, db_session: AsyncSession, two_fa_user, make_auth_headers):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()
        device_id = device.id

        response = await client.delete(f"/api/auth/trusted-devices/{device_id}", headers=make_auth_headers(two_fa_user))

        assert response.status_code == 204
        result = await db_session.execute(select(TrustedDevice).where(TrustedDevice.id == device_id))
        assert result.scalar_one_or_none() is None

    async def test_forget_unknown_device(self, client: AsyncClient, auth_headers):
        response = await client.delete("/api/auth/trusted-devices/9999", headers=auth_headers)

        assert response.status_code == 404

    async def test_cannot_forget_other_users_device(
        self, client: AsyncClient, db_session: AsyncSession, user, two_fa_user, auth_headers
    ):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await client.delete(f"/api/auth/trusted-devices/{device.id}", headers=auth_headers)

        assert response.status_code == 404

    async def test_forget_all(self, client: AsyncClient, db_session: AsyncSession, user, two_fa_user, make_auth_headers):
        for _ in range(3):
            await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await TrustedDeviceFactory.create_async(db_session, user_id=user.id)
        await db_session.commit()

        response = await client.delete("/api/auth/trusted-devices", headers=make_auth_headers(two_fa_user))

        assert response.status_code == 200
        assert response.json()["message"].startswith("3 ")
        remaining = await db_session.execute(select(func.count(TrustedDevice.id)))
        assert remaining.scalar_one() == 1

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.delete("/api/auth/trusted-devices")

        assert response.status_code == 401


@pytest.mark.asyncio
class TestTrustedDeviceCheck:
    """Test GET /api/auth/trusted-device-check."""

    async def test_valid_device(self, client: AsyncClient, db_session: AsyncSession, two_fa_user):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await client.get(
            "/api/auth/trusted-device-check",
            params={"userId": two_fa_user.id, "deviceToken": device.token},
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True}

    async def test_expired_device(self, client: AsyncClient, db_session: AsyncSession, two_fa_user):
        device = await TrustedDeviceFactory.create_async(
            db_session, user_id=two_fa_user.id, expires_at=datetime.now(timezone.utc) - timedelta(seconds=1)
        )
        await db_session.commit()

        response = await client.get(
            "/api/auth/trusted-device-check",
            params={"userId": two_fa_user.id, "deviceToken": device.token},
        )

        assert response.json() == {"valid": False}

    async def test_token_of_another_user(self, client: AsyncClient, db_session: AsyncSession, user, two_fa_user):
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id)
        await db_session.commit()

        response = await client.get(
            "/api/auth/trusted-device-check",
            params={"userId": user.id, "deviceToken": device.token},
        )

        assert response.json() == {"valid": False}

    async def test_check_does_not_touch_last_used(self, client: AsyncClient, db_session: AsyncSession, two_fa_user):
        old = datetime.now(timezone.utc) - timedelta(days=5)
        device = await TrustedDeviceFactory.create_async(db_session, user_id=two_fa_user.id, last_used_at=old)
        await db_session.commit()

        await client.get(
            "/api/auth/trusted-device-check",
            params={"userId": two_fa_user.id, "deviceToken": device.token},
        )

        assert device.last_used_at == old

    async def test_missing_params(self, client: AsyncClient):
        response = await client.get("/api/auth/trusted-device-check")

        assert response.status_code == 422
