import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.errors import CipherError

ENVELOPE_PREFIX = "v1:"
NONCE_BYTES = 12


def derive_key(secret: str) -> bytes:
    """AES key from the first 32 bytes of the UTF-8 encoded secret."""
    if not secret:
        raise CipherError("Missing required environment variable: ENCRYPTION_KEY")
    raw_bytes = secret.encode("utf-8")[:32]
    if len(raw_bytes) not in (16, 24, 32):
        raise CipherError("Invalid ENCRYPTION_KEY length")
    return raw_bytes


def encrypt_token(plaintext: str, secret: str) -> str:
    """Return base64(nonce || ciphertext) with a fresh random 96-bit nonce."""
    if plaintext is None:
        raise CipherError("token is required")
    aesgcm = AESGCM(derive_key(secret))
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("utf-8")


def decrypt_token(ciphertext: str, secret: str) -> str:
    """Inverse of encrypt_token. Accepts the sealed form too. Raises CipherError on any failure."""
    if ciphertext is None:
        raise CipherError("token is required")
    raw = str(ciphertext)
    if raw.startswith(ENVELOPE_PREFIX):
        raw = raw[len(ENVELOPE_PREFIX):]
    try:
        blob = base64.b64decode(raw.encode("utf-8"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CipherError("Invalid token encoding") from exc
    # 12-byte nonce plus the 16-byte GCM tag at minimum.
    if len(blob) < NONCE_BYTES + 16:
        raise CipherError("Invalid token payload")
    nonce = blob[:NONCE_BYTES]
    aesgcm = AESGCM(derive_key(secret))
    try:
        plaintext = aesgcm.decrypt(nonce, blob[NONCE_BYTES:], None)
    except InvalidTag as exc:
        raise CipherError("Token authentication failed") from exc
    return plaintext.decode("utf-8")


def seal_token(plaintext: str, secret: str) -> str:
    """Encrypt and tag the value so stored rows say whether they are ciphertext."""
    return f"{ENVELOPE_PREFIX}{encrypt_token(plaintext, secret)}"


def is_sealed(value: str) -> bool:
    return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX)
