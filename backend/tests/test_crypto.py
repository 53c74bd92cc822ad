import base64
import os
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from credvault.core.crypto import (
    HEADER_LEN,
    KEY_LEN,
    SALT_LEN,
    decrypt_field,
    encrypt_field,
    open_blob,
    seal_blob,
)
from credvault.core.errors import DecryptionError, KeyProvisionError


def _flip(blob: str, index: int) -> str:
    raw = bytearray(base64.b64decode(blob))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


def test_blob_round_trip():
    blob = seal_blob('{"a": "b"}', "hunter2hunter2")
    assert open_blob(blob, "hunter2hunter2") == '{"a": "b"}'


def test_blob_layout_is_salt_iv_tag_ciphertext():
    blob = seal_blob("xyz", "passphrase")
    raw = base64.b64decode(blob)
    assert len(raw) == HEADER_LEN + len("xyz")


def test_resealing_same_text_differs():
    a = seal_blob("same", "passphrase")
    b = seal_blob("same", "passphrase")
    assert a != b
    assert base64.b64decode(a)[:SALT_LEN] != base64.b64decode(b)[:SALT_LEN]
    assert open_blob(a, "passphrase") == open_blob(b, "passphrase") == "same"


def test_wrong_passphrase_fails_generically():
    blob = seal_blob("secret", "right-passphrase")
    with pytest.raises(DecryptionError) as exc:
        open_blob(blob, "wrong-passphrase")
    assert str(exc.value) == "decryption failed"


def test_any_flipped_byte_after_salt_fails():
    blob = seal_blob("tamper me", "passphrase")
    size = len(base64.b64decode(blob))
    for index in range(SALT_LEN, size):
        with pytest.raises(DecryptionError):
            open_blob(_flip(blob, index), "passphrase")


def test_flipped_salt_byte_fails():
    blob = seal_blob("tamper me", "passphrase")
    with pytest.raises(DecryptionError):
        open_blob(_flip(blob, 0), "passphrase")


@pytest.mark.parametrize("blob", ["", "not base64!!", base64.b64encode(b"short").decode()])
def test_malformed_blob_fails(blob):
    with pytest.raises(DecryptionError):
        open_blob(blob, "passphrase")


def test_field_round_trip():
    master = os.urandom(KEY_LEN)
    ct, iv, tag = encrypt_field("s3cr3t", master)
    assert bytes.fromhex(ct) != b"s3cr3t"
    assert decrypt_field(ct, iv, tag, master) == "s3cr3t"


def test_field_wrong_key_fails():
    ct, iv, tag = encrypt_field("s3cr3t", os.urandom(KEY_LEN))
    with pytest.raises(DecryptionError):
        decrypt_field(ct, iv, tag, os.urandom(KEY_LEN))


def test_field_rejects_short_key():
    with pytest.raises(KeyProvisionError):
        encrypt_field("s3cr3t", b"short")
