"""Configuration management for pyvaultsync.

Settings are read from ``~/.config/pyvaultsync/config.json`` and may be
overridden with ``VAULTSYNC_*`` environment variables. Per-vault sync state
(operation log, identity index, cursor and the stored refresh token) lives
elsewhere, see :mod:`pyvaultsync.sync.state`.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import VaultSyncConfigError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.googleapis.com"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_PING_URL = "https://www.gstatic.com/generate_204"

# Host application settings directory inside the vault
DEFAULT_APP_DIR = ".vault"
DEFAULT_APP_INCLUDE = ["*.json", "snippets/*", "themes/*", "plugins/*"]
DEFAULT_APP_EXCLUDE = ["workspace.json", "workspace-mobile.json", "cache/*"]

DEFAULT_BATCH_SIZE = 10
DEFAULT_TIMEOUT = 30.0

ENV_PREFIX = "VAULTSYNC_"


class VaultSyncSettings(BaseSettings):
    """Settings model; environment variables win over the config file."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
    )

    api_url: str = DEFAULT_API_URL
    token_url: str = DEFAULT_TOKEN_URL
    ping_url: str = DEFAULT_PING_URL
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    vault: Optional[str] = None
    vault_name: Optional[str] = None
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    app_dir: str = DEFAULT_APP_DIR
    app_include: list[str] = Field(default_factory=lambda: list(DEFAULT_APP_INCLUDE))
    app_exclude: list[str] = Field(default_factory=lambda: list(DEFAULT_APP_EXCLUDE))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # The config file is passed as init values; the environment overrides it
        return env_settings, init_settings


class Config:
    """Configuration backed by the JSON config file and the environment."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        The file is read on first use, so a broken file surfaces as
        :class:`VaultSyncConfigError` where a setting is needed.

        Args:
            config_dir: Directory holding ``config.json``. Defaults to
                ``~/.config/pyvaultsync``.
        """
        if config_dir is None:
            config_dir = Path.home() / ".config" / "pyvaultsync"
        self.config_dir = config_dir
        self._data: Optional[dict[str, Any]] = None
        self._settings: Optional[VaultSyncSettings] = None

    def get_config_path(self) -> Path:
        return self.config_dir / "config.json"

    def _file_data(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        path = self.get_config_path()
        data: Any = {}
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise VaultSyncConfigError(f"Cannot read config file {path}: {e}") from e
            if not isinstance(data, dict):
                raise VaultSyncConfigError(f"Config file {path} must hold a JSON object")
        self._data = data
        return data

    @property
    def settings(self) -> VaultSyncSettings:
        if self._settings is None:
            try:
                self._settings = VaultSyncSettings(**self._file_data())
            except ValidationError as e:
                raise VaultSyncConfigError(f"Invalid configuration: {e}") from e
        return self._settings

    def save(self) -> Path:
        """Write the file-backed settings to disk."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._file_data(), f, indent=2)
        logger.debug("Saved configuration to %s", path)
        return path

    def set(self, key: str, value: Any) -> None:
        """Change a file-backed setting; call :meth:`save` to persist it."""
        data = self._file_data()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self._settings = None

    @property
    def api_url(self) -> str:
        return self.settings.api_url.rstrip("/")

    @property
    def token_url(self) -> str:
        return self.settings.token_url

    @property
    def ping_url(self) -> str:
        return self.settings.ping_url

    @property
    def client_id(self) -> Optional[str]:
        return self.settings.client_id

    @property
    def client_secret(self) -> Optional[str]:
        return self.settings.client_secret

    @property
    def refresh_token(self) -> Optional[str]:
        """Refresh token seeded from the environment, if any."""
        return self.settings.refresh_token or None

    @property
    def vault_path(self) -> Optional[Path]:
        value = self.settings.vault
        return Path(value).expanduser() if value else None

    @property
    def vault_name(self) -> Optional[str]:
        if self.settings.vault_name:
            return self.settings.vault_name
        vault = self.vault_path
        return vault.name if vault else None

    def vault_name_for(self, vault: Path) -> str:
        """Remote vault name: the configured name, else the directory name."""
        return self.settings.vault_name or Path(vault).name

    @property
    def batch_size(self) -> int:
        return self.settings.batch_size

    @property
    def timeout(self) -> float:
        return self.settings.timeout

    @property
    def app_dir(self) -> str:
        return self.settings.app_dir.strip("/")

    @property
    def app_include(self) -> list[str]:
        return list(self.settings.app_include)

    @property
    def app_exclude(self) -> list[str]:
        return list(self.settings.app_exclude)


config = Config()
