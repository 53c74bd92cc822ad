import asyncio
import base64
import json
import stat
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from credvault.core.crypto import open_blob
from credvault.core.errors import (
    CredentialNotFound,
    DecryptionError,
    NoKeyAvailable,
    ValidationError,
    VaultNotInitialized,
)
from credvault.core.keystore import KeyProvider, MemoryKeyStore, NullKeyStore
from credvault.core.vault import CredentialVault

PASSWORD = "correct horse battery"

SPECIAL_VALUES = {
    "simple": "password123",
    "with_quotes": "pass\"word'123",
    "with_backslash": "pass\\word\\123",
    "with_dollar": "pass$word$123",
    "with_backtick": "pass`word`123",
    "with_spaces": "pass word 123",
    "with_unicode": "pāss🔐wörd123",
    "complex": "!@#$%^&*()_+-=[]{}|;:\",.<>?/~`'",
    "placeholder_lookalike": "${{vault:other}}",
}


@pytest.fixture
def vault(tmp_path: Path) -> CredentialVault:
    v = CredentialVault(tmp_path / "vault" / "vault.enc", KeyProvider(MemoryKeyStore(), env={}))
    assert asyncio.run(v.initialize(PASSWORD)) is True
    return v


def test_initialize_creates_private_sealed_file(vault: CredentialVault):
    assert vault.exists()
    mode = vault.path.stat().st_mode
    assert mode & (stat.S_IRWXG | stat.S_IRWXO) == 0
    dir_mode = vault.path.parent.stat().st_mode
    assert dir_mode & (stat.S_IRWXG | stat.S_IRWXO) == 0
    assert json.loads(open_blob(vault.path.read_text(), PASSWORD)) == {}


def test_initialize_refuses_existing_vault(vault: CredentialVault):
    with pytest.raises(ValidationError):
        asyncio.run(vault.initialize(PASSWORD))
    asyncio.run(vault.initialize("another password", overwrite=True))


def test_initialize_rejects_short_password(tmp_path: Path):
    v = CredentialVault(tmp_path / "vault.enc", KeyProvider(MemoryKeyStore(), env={}))
    with pytest.raises(ValidationError, match="8 characters"):
        asyncio.run(v.initialize("short"))
    assert not v.exists()


def test_initialize_without_keychain_still_creates_vault(tmp_path: Path):
    v = CredentialVault(tmp_path / "vault.enc", KeyProvider(NullKeyStore("svc", "acct"), env={}))
    assert asyncio.run(v.initialize(PASSWORD)) is False
    assert v.exists()


def test_special_character_round_trip(vault: CredentialVault):
    async def run():
        for name, value in SPECIAL_VALUES.items():
            await vault.set_credential(name, value)
        return {name: await vault.get_credential(name) for name in SPECIAL_VALUES}

    assert asyncio.run(run()) == SPECIAL_VALUES


def test_plaintext_never_written(vault: CredentialVault):
    asyncio.run(vault.set_credential("token", "ghp_plaintext_marker"))
    raw = vault.path.read_bytes()
    assert b"ghp_plaintext_marker" not in raw
    assert b"ghp_plaintext_marker" not in base64.b64decode(raw)


def test_value_is_trimmed(vault: CredentialVault):
    asyncio.run(vault.set_credential(" token ", "  abc\n"))
    assert asyncio.run(vault.get_credential("token")) == "abc"


def test_set_requires_name(vault: CredentialVault):
    with pytest.raises(ValidationError):
        asyncio.run(vault.set_credential("  ", "abc"))


def test_missing_credential(vault: CredentialVault):
    with pytest.raises(CredentialNotFound):
        asyncio.run(vault.get_credential("nope"))


def test_delete_semantics(vault: CredentialVault):
    with pytest.raises(CredentialNotFound):
        asyncio.run(vault.delete_credential("x"))
    asyncio.run(vault.set_credential("x", "1"))
    assert asyncio.run(vault.has_credential("x")) is True
    asyncio.run(vault.delete_credential("x"))
    assert asyncio.run(vault.has_credential("x")) is False
    with pytest.raises(CredentialNotFound):
        asyncio.run(vault.get_credential("x"))


def test_list_is_sorted(vault: CredentialVault):
    asyncio.run(vault.set_credential("b", "2"))
    asyncio.run(vault.set_credential("a", "1"))
    assert asyncio.run(vault.list_credentials()) == ["a", "b"]


def test_resave_changes_blob_not_contents(vault: CredentialVault):
    asyncio.run(vault.set_credential("k", "v"))
    first = vault.path.read_text()
    asyncio.run(vault.set_credential("k", "v"))
    second = vault.path.read_text()
    assert first != second
    assert json.loads(open_blob(first, PASSWORD)) == json.loads(open_blob(second, PASSWORD)) == {"k": "v"}


def test_tampered_blob_fails_closed(vault: CredentialVault):
    asyncio.run(vault.set_credential("k", "v"))
    raw = bytearray(base64.b64decode(vault.path.read_text()))
    raw[-1] ^= 0xFF
    vault.path.write_text(base64.b64encode(bytes(raw)).decode())
    with pytest.raises(DecryptionError):
        asyncio.run(vault.get_credential("k"))
    assert asyncio.run(vault.has_credential("k")) is False


def test_has_credential_swallows_key_failures(tmp_path: Path):
    v = CredentialVault(tmp_path / "vault.enc", KeyProvider(NullKeyStore("svc", "acct"), env={}))
    assert asyncio.run(v.has_credential("anything")) is False
    with pytest.raises(NoKeyAvailable):
        asyncio.run(v.get_credential("anything"))


def test_uninitialized_vault(tmp_path: Path):
    v = CredentialVault(tmp_path / "vault.enc", KeyProvider(MemoryKeyStore(secret=PASSWORD), env={}))
    with pytest.raises(VaultNotInitialized):
        asyncio.run(v.get_credential("x"))


def test_sequential_writers_leave_parseable_blob(vault: CredentialVault):
    other = CredentialVault(vault.path, KeyProvider(MemoryKeyStore(secret=PASSWORD), env={}))
    asyncio.run(vault.set_credential("from_a", "1"))
    asyncio.run(other.set_credential("from_b", "2"))
    data = json.loads(open_blob(vault.path.read_text(), PASSWORD))
    assert data == {"from_a": "1", "from_b": "2"}
    assert not list(vault.path.parent.glob("*.tmp"))


def test_session_reads_key_once(vault: CredentialVault):
    calls = []
    store = vault.key_provider.store
    original = store.get

    def counting_get():
        calls.append(1)
        return original()

    store.get = counting_get

    async def run():
        async with vault.session():
            await vault.set_credential("a", "1")
            await vault.get_credential("a")
            await vault.has_credential("b")

    asyncio.run(run())
    assert len(calls) == 1
    asyncio.run(vault.get_credential("a"))
    assert len(calls) == 2


def test_import_credentials_keeps_values_verbatim(vault: CredentialVault):
    count = asyncio.run(vault.import_credentials({"x/y": "1", " x/z ": " 2 "}))
    assert count == 2
    assert asyncio.run(vault.get_credential("x/z")) == " 2 "


def test_use_credential_sync_and_async_callbacks(vault: CredentialVault):
    asyncio.run(vault.set_credential("token", "abc"))
    assert asyncio.run(vault.use_credential("token", len)) == 3

    async def upper(value):
        return value.upper()

    assert asyncio.run(vault.use_credential("token", upper)) == "ABC"


def test_names_are_trimmed_on_every_call(vault: CredentialVault):
    asyncio.run(vault.set_credential(" x ", "1"))
    assert asyncio.run(vault.get_credential(" x ")) == "1"
    assert asyncio.run(vault.has_credential("x ")) is True
    asyncio.run(vault.delete_credential(" x "))
    assert asyncio.run(vault.list_credentials()) == []


def _count_key_reads(vault: CredentialVault) -> list:
    calls = []
    store = vault.key_provider.store
    original = store.get

    def counting_get():
        calls.append(1)
        return original()

    store.get = counting_get
    return calls


def test_overlapping_sessions_do_not_share_a_key(vault: CredentialVault):
    asyncio.run(vault.set_credential("a", "1"))
    calls = _count_key_reads(vault)

    async def run():
        first_in = asyncio.Event()
        second_in = asyncio.Event()
        first_out = asyncio.Event()

        async def first():
            async with vault.session():
                first_in.set()
                await second_in.wait()
            first_out.set()

        async def second():
            await first_in.wait()
            async with vault.session():
                second_in.set()
                await first_out.wait()
                return [await vault.get_credential("a"), await vault.get_credential("a")]

        _, values = await asyncio.gather(first(), second())
        return values

    assert asyncio.run(run()) == ["1", "1"]
    assert len(calls) == 2
