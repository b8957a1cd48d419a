from __future__ import annotations

import base64
import hashlib
import hmac
import logging

import jwt

from shortlinks.core.config import Settings

logger = logging.getLogger(__name__)

QSTASH_ISSUER = "Upstash"
SIGNATURE_HEADER = "Upstash-Signature"


class SignatureVerificationError(Exception):
    """Raised when a queue message signature is missing or invalid."""


def verify_qstash_signature(*, raw_body: bytes, signature: str | None, settings: Settings) -> None:
    """Verify an Upstash-Signature JWT against the current, then the next, signing key.

    Without signing keys, messages are refused unless SL_QSTASH_ALLOW_UNSIGNED
    is set, which is meant for local development against a queue emulator.
    """
    signing_keys = [
        key for key in (settings.qstash_current_signing_key, settings.qstash_next_signing_key) if key
    ]
    if not signing_keys:
        if settings.qstash_allow_unsigned:
            logger.warning("QStash signing keys not configured and unsigned messages allowed; skipping verification")
            return
        raise SignatureVerificationError("QStash signing keys are not configured")

    if not signature:
        raise SignatureVerificationError(f"missing {SIGNATURE_HEADER} header")

    last_error: Exception | None = None
    for key in signing_keys:
        try:
            claims = jwt.decode(
                signature,
                key,
                algorithms=["HS256"],
                issuer=QSTASH_ISSUER,
                options={"require": ["iss", "exp", "nbf"]},
                leeway=1,
            )
        except jwt.PyJWTError as exc:
            last_error = exc
            continue
        _verify_body_hash(claims, raw_body)
        return

    raise SignatureVerificationError(f"invalid signature: {last_error}")


def _verify_body_hash(claims: dict, raw_body: bytes) -> None:
    claimed = claims.get("body")
    if not isinstance(claimed, str):
        raise SignatureVerificationError("signature is missing the body hash claim")

    digest = base64.urlsafe_b64encode(hashlib.sha256(raw_body).digest()).decode("ascii").rstrip("=")
    if not hmac.compare_digest(claimed.rstrip("="), digest):
        raise SignatureVerificationError("body hash does not match signature")
