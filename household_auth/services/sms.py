import httpx

from household_auth.logging import get_logger

logger = get_logger(__name__)


class SmsService:
    """Minimal Twilio Messages API client."""

    def __init__(self, api_url: str, account_sid: str, auth_token: str, from_number: str):
        self.api_url = api_url.rstrip("/")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    async def send_message(self, phone: str, text: str) -> str:
        data = {
            "To": phone,
            "From": self.from_number,
            "Body": text,
        }
        uri = f"{self.api_url}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(uri, data=data, auth=(self.account_sid, self.auth_token))
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Error sending SMS", exc_info=True, error=str(e))
            raise
        return response.json().get("sid", "")
