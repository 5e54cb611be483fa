"""
Data factories for test data generation.

Factories use factory-boy to create realistic test data with sensible defaults.
All factories support async creation via create_async() method.

Usage:
    from tests.factories import UserFactory, TrustedDeviceFactory

    # Create user
    user = await UserFactory.create_async(db_session, email="custom@test.com")

    # Trust a device for that user
    device = await TrustedDeviceFactory.create_async(db_session, user_id=user.id)
"""

from tests.factories.user import UserFactory
from tests.factories.trusted_device import TrustedDeviceFactory

__all__ = [
    "UserFactory",
    "TrustedDeviceFactory",
]
