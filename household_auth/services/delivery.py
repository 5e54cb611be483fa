"""
Out-of-band delivery of one-time codes.

Codes are handed to Celery tasks; the worker owns retries. Enqueueing is the
only part done inline: if the broker refuses the message the caller gets
DeliveryFailed while the already-committed code stays valid.
"""

from typing import Optional

from kombu.exceptions import KombuError

from household_auth.core.errors import DeliveryFailed
from household_auth.core.logging import capture_error
from household_auth.helpers.getters import isDebugMode
from household_auth.logging import get_logger
from household_auth.models.user import User
from household_auth.mycelery.worker import (
    send_code_email,
    send_code_email_local,
    send_code_sms,
    send_code_sms_local,
)
from household_auth.services.codes import CodePurpose

logger = get_logger(__name__)

EMAIL = "email"
SMS = "sms"


def resolve_channel(user: User, preferred: Optional[str]) -> str:
    """SMS only when asked for and a phone number is on file; email otherwise."""
    if preferred == SMS and user.phone_number:
        return SMS
    return EMAIL


class CodeDelivery:

    def __init__(self, local: Optional[bool] = None):
        self.local = isDebugMode() if local is None else local

    async def send(self, user: User, code: str, purpose: CodePurpose, preferred: Optional[str] = None) -> str:
        """
        Queue the code for delivery.

        Returns:
            The channel used ("email" or "sms").

        Raises:
            DeliveryFailed: the message could not be queued
        """
        channel = resolve_channel(user, preferred)
        try:
            if channel == SMS:
                task = send_code_sms_local if self.local else send_code_sms
                task.delay(user.phone_number, code, purpose.value)
            else:
                task = send_code_email_local if self.local else send_code_email
                task.delay(user.email, user.name or "", code, purpose.value)
        except (KombuError, OSError) as e:
            capture_error(e, context={"delivery": {"channel": channel, "purpose": purpose.value}}, user={"id": user.id})
            logger.error("Could not queue code delivery", exc_info=True, user_id=user.id, channel=channel)
            raise DeliveryFailed(channel=channel) from e

        logger.info("Code queued for delivery", user_id=user.id, channel=channel, purpose=purpose.value)
        return channel
