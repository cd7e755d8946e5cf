"""
Token vault for OAuth credentials at rest.

AES-256-GCM with a per-operation key derived from the master key by
PBKDF2-HMAC-SHA512. Stored format:

    base64(salt[64] + iv[16] + auth_tag[16] + ciphertext)

Nothing is cached between calls; every operation derives its own key.
"""
import base64
import binascii
import logging
import secrets
import time
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gymledger.config import settings
from gymledger.accounting.errors import ConfigurationError, InvalidInput, TamperedOrCorrupt

logger = logging.getLogger(__name__)


IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000

TAG_POSITION = SALT_LENGTH + IV_LENGTH
ENCRYPTED_POSITION = TAG_POSITION + TAG_LENGTH


def _parse_master_key(value: Optional[str]) -> bytes:
    if not value:
        raise ConfigurationError("ACCOUNTING_ENCRYPTION_KEY is not set")
    try:
        key = bytes.fromhex(value)
    except ValueError:
        key = b""
    # fromhex skips whitespace, so check the decoded length
    if len(value) != KEY_LENGTH * 2 or len(key) != KEY_LENGTH:
        raise ConfigurationError("ACCOUNTING_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
    return key


def _derive_key(master_key: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_key)


class TokenVault:
    """
    Encrypts and decrypts provider tokens.

    The master key comes from settings on every call unless one is passed
    in explicitly (tests, key rotation tooling).
    """

    def __init__(self, master_key: Optional[str] = None):
        self._master_key = master_key

    def _get_master_key(self) -> bytes:
        if self._master_key is not None:
            return _parse_master_key(self._master_key)
        return _parse_master_key(settings.ACCOUNTING_ENCRYPTION_KEY)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise InvalidInput("Cannot encrypt empty token")

        master_key = self._get_master_key()
        salt = secrets.token_bytes(SALT_LENGTH)
        iv = secrets.token_bytes(IV_LENGTH)

        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(_derive_key(master_key, salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        encrypted, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return base64.b64encode(salt + iv + tag + encrypted).decode("ascii")

    def decrypt(self, blob: str) -> str:
        if not blob:
            raise InvalidInput("Cannot decrypt empty token")

        master_key = self._get_master_key()

        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            raise TamperedOrCorrupt("Invalid encrypted token format")

        if len(combined) < ENCRYPTED_POSITION:
            raise TamperedOrCorrupt("Invalid encrypted token format")

        salt = combined[:SALT_LENGTH]
        iv = combined[SALT_LENGTH:TAG_POSITION]
        tag = combined[TAG_POSITION:ENCRYPTED_POSITION]
        encrypted = combined[ENCRYPTED_POSITION:]

        try:
            plaintext = AESGCM(_derive_key(master_key, salt)).decrypt(iv, encrypted + tag, None)
        except InvalidTag:
            raise TamperedOrCorrupt("Failed to decrypt token: authentication failed")

        return plaintext.decode("utf-8")


# ============================================================================
# KEY MANAGEMENT HELPERS
# ============================================================================

def generate_master_key() -> str:
    """Generate a new master key (64 hex characters) for ACCOUNTING_ENCRYPTION_KEY."""
    return secrets.token_hex(KEY_LENGTH)


def verify_encryption(vault: Optional[TokenVault] = None) -> bool:
    """
    Round-trip self check, run after setting up a key.

    Raises ConfigurationError if the round trip or IV uniqueness fails.
    """
    vault = vault or TokenVault()
    test_token = f"test_token_{int(time.time() * 1000)}"

    encrypted = vault.encrypt(test_token)
    if vault.decrypt(encrypted) != test_token:
        raise ConfigurationError("Encryption verification failed: roundtrip mismatch")

    if vault.encrypt(test_token) == encrypted:
        raise ConfigurationError("Encryption verification failed: IV not unique")

    return True


def is_encryption_configured() -> bool:
    """True if ACCOUNTING_ENCRYPTION_KEY is set and well formed."""
    try:
        _parse_master_key(settings.ACCOUNTING_ENCRYPTION_KEY)
        return True
    except ConfigurationError:
        logger.warning("Accounting token encryption is not configured")
        return False
