import hashlib
import hmac
from typing import Optional

from app.errors import SignatureError


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: Optional[bytes],
    signature_header: Optional[str],
    signing_secret: Optional[str],
    *,
    prefix: str = "",
) -> None:
    """Check a hex HMAC-SHA256 signature of the untouched request body.

    Raises SignatureError with a machine-readable reason; returns None on success.
    Must run before the body is parsed as JSON.
    """
    if not signing_secret:
        raise SignatureError("missing_signing_secret")
    if not signature_header:
        raise SignatureError("missing_signature_header")
    if not raw_body:
        raise SignatureError("missing_raw_body")

    provided = signature_header.strip()
    if prefix and provided.startswith(prefix):
        provided = provided[len(prefix) :]

    expected = compute_signature(signing_secret, raw_body).encode("utf-8")
    candidate = provided.encode("utf-8")
    if len(expected) != len(candidate):
        raise SignatureError("length_mismatch")
    if not hmac.compare_digest(expected, candidate):
        raise SignatureError("mismatch")
