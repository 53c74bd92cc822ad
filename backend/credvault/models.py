from __future__ import annotations
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field

# --- Legacy record store (service/username keyed) ---

class EntryMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service: str
    username: str
    created_at: str = Field(alias="createdAt")
    last_modified: str = Field(alias="lastModified")

class PasswordEntry(EntryMetadata):
    encrypted_password: str  # hex
    iv: str  # base64
    auth_tag: str = Field(alias="authTag")  # base64

    def metadata(self) -> EntryMetadata:
        return EntryMetadata(
            service=self.service,
            username=self.username,
            created_at=self.created_at,
            last_modified=self.last_modified,
        )

class PasswordFile(BaseModel):
    entries: List[PasswordEntry] = []

# --- Placeholders ---

class PlaceholderToken(BaseModel):
    source: str = "vault"
    key: str

    @property
    def identifier(self) -> str:
        return f"{self.source}:{self.key}"

# --- HTTP payloads ---

class ConfigPayload(BaseModel):
    config: Any = None

class ExtractResponse(BaseModel):
    placeholders: List[str] = []

class ValidateResponse(BaseModel):
    ready: bool
    missing: List[str] = []
    placeholders: List[str] = []

class VaultStatus(BaseModel):
    initialized: bool
    keychain: bool
    path: str
    legacy_entries: Optional[int] = None

# --- Consumer ---

class LoadedCredentials(BaseModel):
    credentials: Dict[str, str] = {}
    missing: List[str] = []
    logs: List[str] = []
