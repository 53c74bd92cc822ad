import asyncio
import inspect
import json
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from credvault.core.crypto import open_blob, seal_blob
from credvault.core.errors import (
    CredentialNotFound,
    DecryptionError,
    KeyProvisionError,
    ValidationError,
    VaultNotInitialized,
)
from credvault.core.keystore import KeyProvider
from credvault.core.storage import atomic_write, read_text

logger = logging.getLogger(__name__)

MIN_PASSWORD_LEN = 8


class CredentialVault:
    """
    Flat name -> value store sealed in a single password-derived blob.

    Every call derives the key and decrypts the blob afresh; mutations rewrite
    the whole file. Wrap a batch of calls in `session()` to ask the key
    provider (and so the keychain challenge) only once. The session key is
    held per task, so concurrent callers sharing one vault never see each
    other's session.
    """

    def __init__(self, path: Path, key_provider: KeyProvider):
        self.path = Path(path)
        self.key_provider = key_provider
        self._session_key: ContextVar[Optional[str]] = ContextVar(f"credvault_session_{id(self)}", default=None)

    def exists(self) -> bool:
        return self.path.exists()

    async def _key(self) -> str:
        key = self._session_key.get()
        if key is not None:
            return key
        return await self.key_provider.get_key()

    @asynccontextmanager
    async def session(self):
        if self._session_key.get() is not None:
            yield self
            return
        token = self._session_key.set(await self.key_provider.get_key())
        try:
            yield self
        finally:
            self._session_key.reset(token)

    def _read(self, passphrase: str) -> Dict[str, str]:
        if not self.path.exists():
            raise VaultNotInitialized("Vault not found. Run: credvault init")
        plaintext = open_blob(read_text(self.path), passphrase)
        try:
            data = json.loads(plaintext)
        except ValueError as exc:
            raise DecryptionError("decryption failed") from exc
        if not isinstance(data, dict):
            raise DecryptionError("decryption failed")
        return data

    def _write(self, credentials: Mapping[str, str], passphrase: str):
        atomic_write(self.path, seal_blob(json.dumps(dict(credentials)), passphrase))

    # PBKDF2 and file IO run in a worker thread
    async def _load(self, passphrase: str) -> Dict[str, str]:
        return await asyncio.to_thread(self._read, passphrase)

    async def _save(self, credentials: Mapping[str, str], passphrase: str):
        await asyncio.to_thread(self._write, credentials, passphrase)

    async def initialize(self, master_password: str, overwrite: bool = False) -> bool:
        """
        Create an empty vault sealed with `master_password` and provision the
        password into the secure store. Returns False when the store refused the
        password; the vault is created either way.
        """
        if self.exists() and not overwrite:
            raise ValidationError(f"Vault already exists at {self.path}")
        if len(master_password) < MIN_PASSWORD_LEN:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LEN} characters")

        stored = True
        try:
            await self.key_provider.set_key(master_password)
        except KeyProvisionError as exc:
            logger.warning("Master password not stored in keychain: %s", exc)
            stored = False

        await self._save({}, master_password)
        logger.info("Vault initialized at %s", self.path)
        return stored

    async def get_credential(self, name: str) -> str:
        name = _normalize(name)
        credentials = await self._load(await self._key())
        if name not in credentials:
            raise CredentialNotFound(f'Credential "{name}" not found')
        return credentials[name]

    async def has_credential(self, name: str) -> bool:
        try:
            credentials = await self._load(await self._key())
        except Exception as exc:
            logger.debug("Credential probe for %r failed: %s", name, type(exc).__name__)
            return False
        return _normalize(name) in credentials

    async def list_credentials(self) -> List[str]:
        return sorted(await self._load(await self._key()))

    async def set_credential(self, name: str, value: str):
        """Store `value` under `name`, both trimmed. import_credentials keeps values verbatim."""
        name = _required(name)
        passphrase = await self._key()
        credentials = await self._load(passphrase)
        credentials[name] = value.strip()
        await self._save(credentials, passphrase)
        logger.info("Stored credential %s", name)

    async def import_credentials(self, items: Mapping[str, str]) -> int:
        """Store many values with one rewrite. Values are kept byte for byte."""
        names = {_required(name): value for name, value in items.items()}
        passphrase = await self._key()
        credentials = await self._load(passphrase)
        credentials.update(names)
        await self._save(credentials, passphrase)
        return len(names)

    async def delete_credential(self, name: str):
        name = _normalize(name)
        passphrase = await self._key()
        credentials = await self._load(passphrase)
        if name not in credentials:
            raise CredentialNotFound(f'Credential "{name}" not found')
        del credentials[name]
        await self._save(credentials, passphrase)
        logger.info("Deleted credential %s", name)

    async def use_credential(self, name: str, callback: Callable[[str], Union[Any, Awaitable[Any]]]) -> Any:
        """Hand the value to `callback` without returning it to the caller."""
        result = callback(await self.get_credential(name))
        if inspect.isawaitable(result):
            result = await result
        return result


def _normalize(name: str) -> str:
    return (name or "").strip()


def _required(name: str) -> str:
    name = _normalize(name)
    if not name:
        raise ValidationError("Credential name is required")
    return name
