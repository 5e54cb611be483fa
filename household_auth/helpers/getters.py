from household_auth.core.config import settings


def isDebugMode() -> bool:
    """True outside production (development and test runs)."""
    return settings.MODE != "production"


def get_client_ip(request) -> str:
    """First hop of X-Forwarded-For, else the peer address."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"
