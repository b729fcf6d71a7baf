"""
Request signing and acting-user resolution.
"""
import hmac
import hashlib
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from pingchat.core.config import get_settings, Settings
from pingchat.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"
ACTOR_HEADER = "X-Username"


def compute_signature(secret: str, body: bytes) -> str:
    """
    Compute HMAC-SHA256 signature for the given body.

    Args:
        secret: The shared signing secret
        body: Raw request body bytes

    Returns:
        Hex-encoded HMAC-SHA256 signature
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256
    ).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Verify HMAC-SHA256 signature using constant-time comparison."""
    expected_signature = compute_signature(secret, body)
    return hmac.compare_digest(expected_signature, signature)


class SignatureValidator:
    """
    Dependency that checks X-Signature against the raw body of a write request.

    Settings are read per request so test overrides of get_settings apply.
    """

    async def __call__(self, request: Request, settings: Settings = Depends(get_settings)) -> bytes:
        signature: Optional[str] = request.headers.get(SIGNATURE_HEADER)

        if not signature:
            logger.warning(
                "Write request missing X-Signature header",
                extra={"extra_data": {"path": request.url.path}}
            )
            raise HTTPException(status_code=401, detail="invalid signature")

        if not settings.is_webhook_secret_configured:
            logger.error("WEBHOOK_SECRET environment variable not configured")
            raise HTTPException(status_code=401, detail="invalid signature")

        body = await request.body()

        if not verify_signature(settings.webhook_secret, body, signature):
            logger.warning(
                "Request signature verification failed",
                extra={
                    "extra_data": {
                        "path": request.url.path,
                        "received_signature": signature[:16] + "...",  # Log partial for debugging
                    }
                }
            )
            raise HTTPException(status_code=401, detail="invalid signature")

        logger.debug("Request signature verified successfully")
        return body


# Dependency instance
validate_signature = SignatureValidator()


async def get_validated_body(
    body: bytes = Depends(validate_signature)
) -> bytes:
    """FastAPI dependency to get validated request body."""
    return body


async def get_actor(x_username: Optional[str] = Header(default=None, alias=ACTOR_HEADER)) -> str:
    """Username of the user making the request."""
    if not x_username or not x_username.strip():
        raise HTTPException(status_code=401, detail="missing X-Username header")
    return x_username.strip()
