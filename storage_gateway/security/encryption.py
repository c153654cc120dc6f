# storage_gateway/security/encryption.py
"""
Encryption of provider credentials stored in the catalog.

Uses AES-256-GCM (authenticated encryption). A fresh key is derived from the
secret with scrypt for every blob, using a random 16-byte salt, and a random
12-byte nonce is generated per encryption. Tokens are text so they fit a
plain column:

    v1:<salt hex>:<nonce hex>:<ciphertext+tag hex>

Decrypting with a different secret fails the GCM tag check and raises
`EncryptionError`; the plaintext is never returned.
"""
import json
import os
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from storage_gateway.errors import EncryptionError
from storage_gateway.monitoring.logger import log

TOKEN_VERSION = "v1"
SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32


def _derive_key(secret: str, salt: bytes) -> bytes:
    if not secret:
        raise EncryptionError("Encryption secret must not be empty")
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def encrypt(data: Union[str, bytes], secret: str) -> str:
    """Encrypt `data` and return a self-describing text token."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    key = _derive_key(secret, salt)
    ciphertext = AESGCM(key).encrypt(nonce, data, None)
    return ":".join([TOKEN_VERSION, salt.hex(), nonce.hex(), ciphertext.hex()])


def decrypt(token: str, secret: str) -> bytes:
    """Decrypt a token produced by `encrypt`.

    Raises:
        EncryptionError: malformed token, unknown version or wrong secret
    """
    parts = token.split(":") if isinstance(token, str) else []
    if len(parts) != 4 or parts[0] != TOKEN_VERSION:
        raise EncryptionError("Malformed encrypted credential blob")
    try:
        salt, nonce, ciphertext = (bytes.fromhex(p) for p in parts[1:])
    except ValueError as exc:
        raise EncryptionError("Malformed encrypted credential blob") from exc
    if len(salt) != SALT_BYTES or len(nonce) != NONCE_BYTES:
        raise EncryptionError("Malformed encrypted credential blob")

    key = _derive_key(secret, salt)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        log("WARNING", "Credential decryption failed: authentication tag mismatch", module="encryption")
        raise EncryptionError("Failed to decrypt credentials: wrong secret or corrupted data") from exc


def encrypt_json(obj: Any, secret: str) -> str:
    return encrypt(json.dumps(obj, sort_keys=True), secret)


def decrypt_json(token: str, secret: str) -> Any:
    raw = decrypt(token, secret)
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EncryptionError("Decrypted credentials are not valid JSON") from exc
