"""Security utilities: admin tokens, shared secrets, webhook signatures."""

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# JWT Token handling
class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # Operator identifier
    role: str = "viewer"
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    subject: str,
    role: str = "admin",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": subject,
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.PyJWTError as e:
        logger.debug(f"Token decode failed: {e}")
        return None


def verify_shared_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison of a shared secret (cron trigger)."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def compute_twilio_signature(auth_token: str, url: str, params: dict[str, str]) -> str:
    """
    Compute the X-Twilio-Signature for a form-encoded webhook.

    The signed string is the full request URL followed by every POST
    parameter name and value, sorted by name.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def verify_twilio_signature(
    url: str,
    params: dict[str, str],
    signature: str | None,
) -> bool:
    """Verify an inbound Twilio webhook signature."""
    if not settings.twilio_auth_token:
        logger.warning("Twilio auth token not configured")
        return False
    if not signature:
        return False

    expected = compute_twilio_signature(settings.twilio_auth_token, url, params)
    return hmac.compare_digest(expected, signature)
