"""
User factory for test data generation.
"""

import factory
from sqlalchemy.ext.asyncio import AsyncSession

from household_auth.models.user import User


class UserFactory(factory.Factory):
    """
    Factory for User model.

    Users are created verified, with 2FA off and email as the login method.
    """

    class Meta:
        model = User

    name = factory.Faker("name")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    phone_number = None
    email_verified = True
    preferred_login_method = "email"
    allow_account_linking = True
    login_code_attempts = 0
    two_fa_enabled = False
    two_fa_pending = False
    two_fa_method = "email"
    two_fa_attempts = 0
    token_version = 1

    @classmethod
    async def create_async(
        cls,
        db_session: AsyncSession,
        **kwargs
    ) -> User:
        """
        Create user in database asynchronously.

        Args:
            db_session: AsyncSession instance
            **kwargs: Override factory attributes

        Returns:
            User instance (flushed, not committed)

        Usage:
            user = await UserFactory.create_async(
                db_session,
                email="custom@test.com",
                two_fa_enabled=True
            )
        """
        instance = cls.build(**kwargs)
        db_session.add(instance)
        await db_session.flush()  # Get ID without committing transaction
        return instance
