"""
Legacy (service, username) record store.

Each password is sealed separately with a random 32-byte key that only lives
in the secure store. New code should use CredentialVault; `migrate_to` copies
these records over as "<service>/<username>".
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from pydantic import ValidationError as ModelValidationError

from credvault.core.crypto import decrypt_field, encrypt_field
from credvault.core.errors import DecryptionError, NotFound, ValidationError
from credvault.core.keystore import KeyProvider
from credvault.core.storage import atomic_write, read_text
from credvault.core.vault import CredentialVault
from credvault.models import EntryMetadata, PasswordEntry, PasswordFile

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PasswordStore:
    def __init__(self, path: Path, key_provider: KeyProvider):
        self.path = Path(path)
        self.key_provider = key_provider

    def _load(self) -> PasswordFile:
        if not self.path.exists():
            return PasswordFile()
        try:
            return PasswordFile.model_validate(json.loads(read_text(self.path)))
        except (ValueError, ModelValidationError) as exc:
            raise DecryptionError("vault file is malformed") from exc

    def _save(self, vault: PasswordFile):
        atomic_write(self.path, json.dumps(vault.model_dump(by_alias=True), indent=2))

    def _find(self, vault: PasswordFile, service: str, username: str) -> int:
        for i, entry in enumerate(vault.entries):
            if entry.service == service and entry.username == username:
                return i
        return -1

    async def init(self) -> bytes:
        return await self.key_provider.get_or_create_key()

    async def add_or_update(self, service: str, username: str, password: str) -> EntryMetadata:
        if not service or not username or not password:
            raise ValidationError("Service, username, and password are required")
        master_key = await self.init()
        vault = self._load()
        encrypted, iv, tag = encrypt_field(password, master_key)
        now = _now()
        idx = self._find(vault, service, username)
        entry = PasswordEntry(
            service=service,
            username=username,
            encrypted_password=encrypted,
            iv=iv,
            auth_tag=tag,
            created_at=vault.entries[idx].created_at if idx != -1 else now,
            last_modified=now,
        )
        if idx != -1:
            vault.entries[idx] = entry
        else:
            vault.entries.append(entry)
        self._save(vault)
        return entry.metadata()

    async def get(self, service: str, username: str) -> str:
        if not service or not username:
            raise ValidationError("Service and username are required")
        master_key = await self.init()
        vault = self._load()
        idx = self._find(vault, service, username)
        if idx == -1:
            raise NotFound(f"Credential not found for {service}/{username}")
        entry = vault.entries[idx]
        return decrypt_field(entry.encrypted_password, entry.iv, entry.auth_tag, master_key)

    def list(self) -> List[EntryMetadata]:
        return [entry.metadata() for entry in self._load().entries]

    def delete(self, service: str, username: str):
        if not service or not username:
            raise ValidationError("Service and username are required")
        vault = self._load()
        idx = self._find(vault, service, username)
        if idx == -1:
            raise NotFound(f"Credential not found for {service}/{username}")
        del vault.entries[idx]
        self._save(vault)

    def clear(self):
        self._save(PasswordFile())

    async def migrate_to(self, vault: CredentialVault) -> int:
        entries = self._load().entries
        if not entries:
            return 0
        master_key = await self.init()
        items = {
            f"{e.service}/{e.username}": decrypt_field(e.encrypted_password, e.iv, e.auth_tag, master_key)
            for e in entries
        }
        count = await vault.import_credentials(items)
        logger.info("Migrated %d legacy entries into %s", count, vault.path)
        return count
