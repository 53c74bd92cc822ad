"""
Master key sources.

The secure store is tried first, then a value handed in by the caller, then the
VAULT_MASTER_PASSWORD environment variable, then (CLI only) an interactive
prompt. Secure-store reads can block on an OS authentication challenge, so they
run in a worker thread.
"""

import asyncio
import base64
import binascii
import logging
import os
import subprocess
import sys
from typing import Callable, Dict, Mapping, Optional

import keyring
from keyring.errors import KeyringError, KeyringLocked

from credvault.config import LEGACY_SERVICE, MASTER_PASSWORD_ENV, VAULT_SERVICE, Settings
from credvault.core.crypto import KEY_LEN, generate_master_key
from credvault.core.errors import AuthCancelled, KeyProvisionError, NoKeyAvailable

logger = logging.getLogger(__name__)


class KeyStore:
    """get / set / has over one secret, identified by (service, account)."""

    def __init__(self, service: str, account: str):
        self.service = service
        self.account = account

    def get(self) -> Optional[str]:
        raise NotImplementedError

    def set(self, secret: str) -> None:
        raise NotImplementedError

    def has(self) -> bool:
        raise NotImplementedError


class MemoryKeyStore(KeyStore):
    def __init__(self, service: str = "memory", account: str = "memory", secret: Optional[str] = None):
        super().__init__(service, account)
        self._secret = secret

    def get(self) -> Optional[str]:
        return self._secret

    def set(self, secret: str) -> None:
        self._secret = secret

    def has(self) -> bool:
        return self._secret is not None


class NullKeyStore(KeyStore):
    def get(self) -> Optional[str]:
        return None

    def set(self, secret: str) -> None:
        raise KeyProvisionError("no secure key store configured")

    def has(self) -> bool:
        return False


class KeyringStore(KeyStore):
    """Backed by the `keyring` library: Keychain, Credential Manager or Secret Service."""

    def get(self) -> Optional[str]:
        try:
            return keyring.get_password(self.service, self.account)
        except KeyringLocked as exc:
            raise AuthCancelled("keychain access was not granted") from exc
        except KeyringError as exc:
            logger.warning("Key store read failed for %s: %s", self.service, exc)
            return None

    def set(self, secret: str) -> None:
        try:
            keyring.set_password(self.service, self.account, secret)
        except KeyringError as exc:
            raise KeyProvisionError(f"failed to store key in keychain: {exc}") from exc

    def has(self) -> bool:
        """
        keyring has no metadata-only lookup, so this reads the secret itself.
        On a locked Secret Service collection that read may show an unlock
        prompt; only MacKeychainStore checks without one.
        """
        try:
            return keyring.get_password(self.service, self.account) is not None
        except KeyringError:
            return False


class MacKeychainStore(KeyringStore):
    """
    macOS Keychain via the `security` tool for reads.
    `has` omits -w so no Touch ID / password prompt is shown; `get` inherits
    stdin so the interactive challenge can run. Writes go through keyring so
    the secret never appears in process arguments.
    """

    CANCELLED = 128

    def _find(self, reveal: bool) -> subprocess.CompletedProcess:
        cmd = ["security", "find-generic-password", "-a", self.account, "-s", self.service]
        if reveal:
            cmd.append("-w")
        return subprocess.run(
            cmd,
            stdin=None if reveal else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )

    def get(self) -> Optional[str]:
        try:
            result = self._find(reveal=True)
        except OSError as exc:
            logger.warning("security tool unavailable: %s", exc)
            return None
        if result.returncode == self.CANCELLED:
            raise AuthCancelled("Authentication cancelled")
        if result.returncode != 0:
            return None
        return result.stdout.rstrip("\n")

    def has(self) -> bool:
        try:
            return self._find(reveal=False).returncode == 0
        except OSError:
            return False


def default_key_store(service: str, account: str, backend: str = "system") -> KeyStore:
    if backend == "none":
        return NullKeyStore(service, account)
    if sys.platform == "darwin":
        return MacKeychainStore(service, account)
    return KeyringStore(service, account)


class KeyProvider:
    def __init__(
        self,
        store: KeyStore,
        explicit_key: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        env_var: str = MASTER_PASSWORD_ENV,
        prompt: Optional[Callable[[str], str]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.explicit_key = explicit_key
        self.env = os.environ if env is None else env
        self.env_var = env_var
        self.prompt = prompt
        self.on_status = on_status

    def _status(self, message: str):
        if self.on_status:
            self.on_status(message)

    async def has_key(self) -> bool:
        return await asyncio.to_thread(self.store.has)

    async def set_key(self, key: str) -> None:
        await asyncio.to_thread(self.store.set, key)

    async def get_key(self) -> str:
        """Master password for the password-derived vault."""
        cancelled: Optional[AuthCancelled] = None
        if await self.has_key():
            self._status("Authenticating via system keychain...")
            try:
                key = await asyncio.to_thread(self.store.get)
            except AuthCancelled as exc:
                self._status(f"Keychain authentication failed: {exc}")
                cancelled = exc
            else:
                if key:
                    self._status("Authenticated")
                    return key

        if self.explicit_key:
            return self.explicit_key
        if self.env.get(self.env_var):
            logger.debug("Using master password from %s", self.env_var)
            return self.env[self.env_var]
        if self.prompt is not None:
            key = self.prompt("Enter master password: ")
            if key:
                return key

        if cancelled is not None:
            raise cancelled
        raise NoKeyAvailable(
            f"Master password not available. Set {self.env_var}, use the keychain, or provide it explicitly."
        )

    async def get_or_create_key(self) -> bytes:
        """Raw 32-byte key for the legacy record store, generated on first use."""
        stored = await asyncio.to_thread(self.store.get)
        if stored:
            return _decode_master_key(stored)
        key = generate_master_key()
        await self.set_key(base64.b64encode(key).decode("ascii"))
        logger.info("Provisioned new master key under %s", self.store.service)
        return key


def _decode_master_key(stored: str) -> bytes:
    try:
        key = base64.b64decode(stored, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyProvisionError("stored master key is not valid base64") from exc
    if len(key) != KEY_LEN:
        raise KeyProvisionError(f"stored master key must be {KEY_LEN} bytes, got {len(key)}")
    return key


def build_providers(settings: Settings, **kwargs) -> Dict[str, KeyProvider]:
    return {
        "vault": KeyProvider(default_key_store(VAULT_SERVICE, settings.account, settings.keystore), **kwargs),
        "legacy": KeyProvider(default_key_store(LEGACY_SERVICE, settings.account, settings.keystore)),
    }
