"""
Sensitive data vault

AES-256-GCM envelopes for the contact details attached to network referrals.
Envelope layout is base64(nonce[12] | tag[16] | ciphertext).

The key is the SHA-256 digest of REFERRAL_ENCRYPTION_KEY. Rotating that secret
makes every stored envelope unreadable; there is no re-encryption path.

The vault performs no access control. Callers must check that the requester is
the referrer, the referred-to member or a privileged reviewer before decrypting.
"""

from typing import Any, Optional
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
import base64
import binascii
import hashlib
import json
import logging
import os

from app.core.config import settings
from app.core.exceptions import ConfigurationError, EncryptionFailure

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16

class SensitiveDataVault:
    """Encrypts and decrypts JSON payloads"""

    def __init__(self, secret: Optional[str] = None):
        secret = secret if secret is not None else settings.REFERRAL_ENCRYPTION_KEY
        if not secret:
            raise ConfigurationError("REFERRAL_ENCRYPTION_KEY is not configured")
        self._aead = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, obj: Any) -> Optional[str]:
        """Seal a JSON-serializable object into an opaque envelope"""
        if obj is None:
            return None

        plaintext = json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, None)

        # AESGCM appends the tag; store it ahead of the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, envelope: Optional[str]) -> Optional[Any]:
        """Open an envelope; any tampering or corruption yields None"""
        if not envelope:
            return None

        try:
            raw = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError):
            logger.error("Sensitive payload envelope is not valid base64")
            return None

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            logger.error("Sensitive payload envelope is truncated")
            return None

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE:]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.error("Sensitive payload failed authentication")
            return None

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.error("Sensitive payload is not valid JSON")
            return None

    def decrypt_or_raise(self, envelope: str) -> Any:
        """Like decrypt, but a failure raises EncryptionFailure"""
        result = self.decrypt(envelope)
        if result is None:
            raise EncryptionFailure()
        return result
