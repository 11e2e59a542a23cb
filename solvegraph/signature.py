"""Queue-delivery signature verification.

The queue service signs every delivery with an HS256 JWT carried in the
``Upstash-Signature`` header. The token's ``body`` claim is the base64url
SHA-256 of the raw request body. Two keys are accepted (current, then next)
so a signing-key rollover never rejects in-flight messages.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from jose import JWTError, jwt

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Upstash-Signature"
ISSUER = "Upstash"
ALGORITHM = "HS256"


def body_digest(body: bytes) -> str:
    """base64url SHA-256 of the body, without padding."""
    return base64.urlsafe_b64encode(hashlib.sha256(body).digest()).decode("ascii").rstrip("=")


class SignatureVerifier:

    def __init__(self, current_key: Optional[str], next_key: Optional[str], clock_tolerance: int = 0):
        self.keys = [k for k in (current_key, next_key) if k]
        if not self.keys:
            logger.warning("No queue signing keys configured; every delivery will be rejected")
        self.clock_tolerance = clock_tolerance

    def _verify_with_key(self, key: str, body: bytes, signature: str, url: Optional[str]) -> bool:
        try:
            claims = jwt.decode(
                signature,
                key,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                subject=url,
                options={"verify_aud": False, "leeway": self.clock_tolerance},
            )
        except JWTError as e:
            logger.debug(f"Signature rejected by key: {e}")
            return False

        claimed = str(claims.get("body", "")).rstrip("=")
        return hmac.compare_digest(claimed, body_digest(body))

    def verify(self, body: bytes, signature: Optional[str], url: Optional[str] = None) -> bool:
        """True when either key validates the token and the body hash matches."""
        if not signature or not self.keys:
            return False
        return any(self._verify_with_key(key, body, signature, url) for key in self.keys)

    def require(self, body: bytes, signature: Optional[str], url: Optional[str] = None) -> None:
        if not self.verify(body, signature, url):
            raise AuthenticationError("Invalid queue signature", public_message="Invalid signature")


def sign_body(key: str, body: bytes, url: str, issued_at: int, ttl: int = 300) -> str:
    """Produce a delivery signature the way the queue service does (dev tooling, tests)."""
    claims = {
        "iss": ISSUER,
        "sub": url,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": issued_at + ttl,
        "body": body_digest(body),
    }
    return jwt.encode(claims, key, algorithm=ALGORITHM)
