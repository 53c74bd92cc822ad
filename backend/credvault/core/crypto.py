import base64
import binascii
import secrets
from typing import Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from credvault.core.errors import DecryptionError, KeyProvisionError

# --- Parameters ---
KDF_ITERS = 100_000
KEY_LEN = 32
SALT_LEN = 64
IV_LEN = 16
TAG_LEN = 16
HEADER_LEN = SALT_LEN + IV_LEN + TAG_LEN


def derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA512(), length=KEY_LEN, salt=salt, iterations=KDF_ITERS)
    return kdf.derive(passphrase.encode("utf-8"))


def generate_master_key() -> bytes:
    return secrets.token_bytes(KEY_LEN)


def _seal(aes_key: bytes, plaintext: bytes) -> Tuple[bytes, bytes, bytes]:
    iv = secrets.token_bytes(IV_LEN)
    out = AESGCM(aes_key).encrypt(iv, plaintext, None)  # ciphertext || tag
    return iv, out[-TAG_LEN:], out[:-TAG_LEN]


def _open(aes_key: bytes, iv: bytes, tag: bytes, ct: bytes) -> bytes:
    try:
        return AESGCM(aes_key).decrypt(iv, ct + tag, None)
    except Exception as exc:
        raise DecryptionError("decryption failed") from exc


def seal_blob(plaintext: str, passphrase: str) -> str:
    """
    Password-derived vault blob: base64(salt || iv || tag || ciphertext).
    A fresh salt and IV are drawn on every call, so sealing the same text
    twice never yields the same blob.
    """
    salt = secrets.token_bytes(SALT_LEN)
    iv, tag, ct = _seal(derive_key(passphrase, salt), plaintext.encode("utf-8"))
    return base64.b64encode(salt + iv + tag + ct).decode("ascii")


def open_blob(blob: str, passphrase: str) -> str:
    try:
        raw = base64.b64decode(blob.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("decryption failed") from exc
    if len(raw) < HEADER_LEN:
        raise DecryptionError("decryption failed")
    salt = raw[:SALT_LEN]
    iv = raw[SALT_LEN:SALT_LEN + IV_LEN]
    tag = raw[SALT_LEN + IV_LEN:HEADER_LEN]
    pt = _open(derive_key(passphrase, salt), iv, tag, raw[HEADER_LEN:])
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("decryption failed") from exc


def encrypt_field(plaintext: str, master_key: bytes) -> Tuple[str, str, str]:
    """
    Per-field encryption for the legacy record store with a raw 32-byte key.
    Returns (ciphertext hex, iv base64, tag base64).
    """
    if len(master_key) != KEY_LEN:
        raise KeyProvisionError("invalid master key length")
    iv, tag, ct = _seal(master_key, plaintext.encode("utf-8"))
    return ct.hex(), base64.b64encode(iv).decode("ascii"), base64.b64encode(tag).decode("ascii")


def decrypt_field(ct_hex: str, iv_b64: str, tag_b64: str, master_key: bytes) -> str:
    try:
        ct = bytes.fromhex(ct_hex)
        iv = base64.b64decode(iv_b64, validate=True)
        tag = base64.b64decode(tag_b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionError("decryption failed") from exc
    if len(master_key) != KEY_LEN or len(tag) != TAG_LEN or not iv:
        raise DecryptionError("decryption failed")
    try:
        return _open(master_key, iv, tag, ct).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("decryption failed") from exc
