import getpass
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VAULT_SERVICE = "credvault-master"
LEGACY_SERVICE = "credvault-master-key"
MASTER_PASSWORD_ENV = "VAULT_MASTER_PASSWORD"


def _default_home() -> Path:
    return Path.home() / ".config" / "credvault"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return "credvault"


class Settings(BaseSettings):
    """
    Every field can be set through a CREDVAULT_ variable, e.g. CREDVAULT_HOME
    or CREDVAULT_KEYSTORE=none. The master password is not a setting; the key
    provider reads VAULT_MASTER_PASSWORD itself.
    """

    model_config = SettingsConfigDict(
        env_prefix="CREDVAULT_",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    home: Path = Field(default_factory=_default_home)
    keystore: Literal["system", "none"] = "system"
    log_level: str = "WARNING"
    host: str = "127.0.0.1"
    port: int = Field(default=8334, ge=1, le=65535)
    account: str = Field(default_factory=_current_user)

    @field_validator("home")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("keystore", mode="before")
    @classmethod
    def _lower_keystore(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def vault_path(self) -> Path:
        return self.home / "vault.enc"

    @property
    def legacy_path(self) -> Path:
        return self.home / "passwords.json"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def swap_settings(settings: Optional[Settings]) -> Optional[Settings]:
    """Replace the process-wide settings (None re-reads the environment on next use)."""
    global _settings
    _settings = settings
    return _settings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
