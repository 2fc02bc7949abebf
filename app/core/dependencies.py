import hmac

from fastapi import Header, Request

from app.core.config import settings
from app.core.exceptions import UnauthorizedError
from app.tutor.service import TutorService

DEMO_USER = "demo"


async def get_current_user(
    authorization: str | None = Header(None, description="Bearer <token>"),
) -> str:
    """Check the bearer token against API_TOKENS.

    With no tokens configured the API runs in demo mode and every caller is
    treated as the demo user.
    """
    tokens = settings.api_token_set
    if not tokens:
        return DEMO_USER

    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Invalid authorization header")

    token = authorization[7:].strip()
    if not any(hmac.compare_digest(token, t) for t in tokens):
        raise UnauthorizedError("Invalid or expired token")

    return f"token:{token[:4]}"


def get_tutor_service(request: Request) -> TutorService:
    """Tutor service built in the application lifespan."""
    return request.app.state.tutor_service
