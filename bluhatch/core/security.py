"""Bearer-token verification for the function-invocation boundary.

Tokens are ``<user_uuid>.<hmac_sha256(secret, user_uuid)>``. They are minted
by the identity provider; ``issue_access_token`` exists for that collaborator
and for tests.
"""

from __future__ import annotations

import uuid

from bluhatch.core.config import settings
from bluhatch.core.errors import Unauthorized
from bluhatch.services.hashing import hmac_sha256, verify_hmac_sha256


def issue_access_token(user_id: uuid.UUID, secret: str | None = None) -> str:
    secret = secret or settings.auth_token_secret
    subject = str(user_id)
    return f"{subject}.{hmac_sha256(secret, subject)}"


def verify_access_token(token: str, secret: str | None = None) -> uuid.UUID:
    """Return the caller's user id, or raise Unauthorized."""
    secret = secret or settings.auth_token_secret
    subject, sep, signature = token.strip().partition(".")
    if not sep or not signature:
        raise Unauthorized("Authentication error: malformed token")
    if not verify_hmac_sha256(secret, subject, signature):
        raise Unauthorized("Authentication error: invalid token signature")
    try:
        return uuid.UUID(subject)
    except ValueError:
        raise Unauthorized("Authentication error: invalid token subject") from None


def parse_authorization_header(header: str | None) -> uuid.UUID:
    if not header:
        raise Unauthorized("No authorization header provided")
    if not header.startswith("Bearer "):
        raise Unauthorized("Authorization header must use the Bearer scheme")
    return verify_access_token(header[7:])
