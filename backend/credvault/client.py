"""
Consumer contract for automation scripts.

    client = VaultClient.from_settings()
    missing = (await client.validate_credentials(config)).unwrap()
    resolved = (await client.resolve(config)).unwrap()
    env = (await client.load_credentials({"GMAIL_PASS": "gmail_password"})).unwrap().credentials

Every call returns a Result instead of raising, except has_credential which
answers a plain bool.
"""

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import BaseModel

from credvault.config import Settings, get_settings
from credvault.core.errors import ERROR_KINDS, CredentialNotFound, VaultError
from credvault.core.keystore import KeyProvider, build_providers
from credvault.core.legacy_store import PasswordStore
from credvault.core.placeholders import PlaceholderResolver
from credvault.core.vault import CredentialVault
from credvault.models import LoadedCredentials

logger = logging.getLogger(__name__)


class Result(BaseModel):
    ok: bool
    value: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: Exception) -> "Result":
        if isinstance(exc, VaultError):
            return cls(ok=False, error=str(exc) or exc.kind, kind=exc.kind)
        return cls(ok=False, error="unexpected vault failure", kind=VaultError.kind)

    def unwrap(self) -> Any:
        if self.ok:
            return self.value
        raise ERROR_KINDS.get(self.kind or "", VaultError)(self.error or "")


async def _capture(call: Callable[[], Awaitable[Any]]) -> Result:
    try:
        return Result.success(await call())
    except VaultError as exc:
        return Result.failure(exc)
    except Exception as exc:
        logger.exception("Unexpected error in vault call")
        return Result.failure(exc)


class _UnavailableVault:
    async def get_credential(self, name: str) -> str:
        raise VaultError("vault unavailable")

    async def has_credential(self, name: str) -> bool:
        return False


class VaultClient:
    def __init__(self, vault: CredentialVault, env=None, legacy: Optional[PasswordStore] = None):
        self.vault = vault
        self.legacy = legacy
        self.resolver = PlaceholderResolver(vault, env)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, master_password: Optional[str] = None, **kwargs) -> "VaultClient":
        settings = settings or get_settings()
        providers = build_providers(settings, explicit_key=master_password, **kwargs)
        return cls(
            CredentialVault(settings.vault_path, providers["vault"]),
            legacy=PasswordStore(settings.legacy_path, providers["legacy"]),
        )

    @classmethod
    def for_path(cls, path: Path, key_provider: KeyProvider, env=None) -> "VaultClient":
        return cls(CredentialVault(path, key_provider), env=env)

    async def get_credential(self, name: str) -> Result:
        return await _capture(lambda: self.vault.get_credential(name))

    async def has_credential(self, name: str) -> bool:
        return await self.vault.has_credential(name)

    async def extract_placeholders(self, config: Any) -> Result:
        async def run():
            return self.resolver.extract_placeholders(config)

        return await _capture(run)

    def _needs_vault(self, config: Any) -> bool:
        return any(p.startswith("vault:") for p in self.resolver.extract_placeholders(config))

    async def validate_credentials(self, config: Any) -> Result:
        async def run():
            if not self._needs_vault(config):
                return await self.resolver.validate_credentials(config)
            try:
                async with self.vault.session():
                    return await self.resolver.validate_credentials(config)
            except VaultError as exc:
                # vault cannot be opened: every vault requirement is unmet
                logger.debug("Vault unavailable during validation: %s", exc.kind)
                offline = PlaceholderResolver(_UnavailableVault(), self.resolver.env)
                return await offline.validate_credentials(config)

        return await _capture(run)

    async def load_credentials(self, mapping: Mapping[str, str]) -> Result:
        """
        Read {ENV_NAME: credential name} in one key session and return
        LoadedCredentials keyed by ENV_NAME. Absent names are listed in
        `missing`; nothing is written to the process environment.
        """

        async def run():
            loaded = LoadedCredentials()
            if not mapping:
                return loaded
            async with self.vault.session():
                for env_name, name in mapping.items():
                    try:
                        loaded.credentials[env_name] = await self.vault.get_credential(name)
                    except CredentialNotFound:
                        loaded.missing.append(name)
                        loaded.logs.append(f"{env_name}: not found in vault")
                    else:
                        loaded.logs.append(f"{env_name}: loaded")
            return loaded

        return await _capture(run)

    async def resolve(self, config: Any) -> Result:
        async def run():
            if not self._needs_vault(config):
                return await self.resolver.resolve(config)
            async with self.vault.session():
                return await self.resolver.resolve(config)

        return await _capture(run)
