"""AES-256-GCM sealing for inbound message text while it waits in the queue."""

import base64
import binascii
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import Settings, settings as default_settings
from app.errors import ConfigurationError, PermanentEventError

ENVELOPE_VERSION = 1
NONCE_BYTES = 12
TAG_BYTES = 16


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def load_key(config: Settings = default_settings) -> Optional[bytes]:
    """The configured 32-byte key, or None when text is not encrypted at rest."""
    if not config.text_enc_key_b64:
        return None
    return base64.b64decode(config.text_enc_key_b64)


def encrypt_text(plaintext: str, key: bytes) -> dict[str, Any]:
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return {
        "v": ENVELOPE_VERSION,
        "iv_b64": _b64(nonce),
        "tag_b64": _b64(sealed[-TAG_BYTES:]),
        "ct_b64": _b64(sealed[:-TAG_BYTES]),
    }


def decrypt_text(envelope: dict[str, Any], key: bytes) -> str:
    """Open an envelope from encrypt_text. Raises PermanentEventError if it was tampered with."""
    try:
        nonce = base64.b64decode(envelope["iv_b64"], validate=True)
        tag = base64.b64decode(envelope["tag_b64"], validate=True)
        ciphertext = base64.b64decode(envelope["ct_b64"], validate=True)
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except (KeyError, TypeError, binascii.Error, ValueError, InvalidTag) as exc:
        raise PermanentEventError("Stored message text cannot be decrypted") from exc
    return plaintext.decode("utf-8")


def read_event_text(meta: dict[str, Any], config: Settings = default_settings) -> str:
    """Plain message text for a queued chat event, decrypting it when sealed."""
    envelope = meta.get("text_enc")
    if not envelope:
        return meta.get("text") or ""
    key = load_key(config)
    if key is None:
        raise ConfigurationError("TEXT_ENC_KEY_B64 is required to read encrypted message text")
    return decrypt_text(envelope, key)
