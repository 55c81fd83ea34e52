"""Configuration for tasksync.

Settings come from environment variables; a module-level ``config``
instance is shared by the CLI and can be used by host applications.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import ProviderConfigError


@dataclass
class ProviderConfig:
    """Selects a provider by name and carries its options."""

    name: str
    """Registered provider name (``document``, ``webdav``, ``memory``)"""

    options: dict[str, Any] = field(default_factory=dict)
    """Provider-specific options (url, credentials, ...)"""

    def require(self, *keys: str) -> None:
        """Raise ProviderConfigError unless every key has a value."""
        missing = [key for key in keys if not self.options.get(key)]
        if missing:
            raise ProviderConfigError(
                f"Provider '{self.name}' is missing option(s): {', '.join(missing)}"
            )


class Config:
    """Configuration read from the environment."""

    def __init__(self) -> None:
        self.reload()

    def reload(self) -> None:
        """Re-read all settings from the environment."""
        data_dir = os.environ.get("TASKSYNC_DATA_DIR")
        self.data_dir: Path = (
            Path(data_dir).expanduser()
            if data_dir
            else Path.home() / ".config" / "tasksync"
        )
        self.provider: Optional[str] = os.environ.get("TASKSYNC_PROVIDER")
        self.webdav_url: Optional[str] = os.environ.get("TASKSYNC_WEBDAV_URL")
        self.webdav_username: Optional[str] = os.environ.get("TASKSYNC_WEBDAV_USERNAME")
        self.webdav_password: Optional[str] = os.environ.get("TASKSYNC_WEBDAV_PASSWORD")
        self.document_url: Optional[str] = os.environ.get("TASKSYNC_DOCUMENT_URL")
        self.document_api_key: Optional[str] = os.environ.get("TASKSYNC_DOCUMENT_API_KEY")

    @property
    def store_path(self) -> Path:
        """JSON file backing the key-value store."""
        return self.data_dir / "store.json"

    def provider_config(self, name: Optional[str] = None, **overrides: Any) -> ProviderConfig:
        """Build a ProviderConfig from the environment.

        Args:
            name: Provider name (defaults to TASKSYNC_PROVIDER)
            **overrides: Options that take precedence over the environment;
                None values are ignored

        Raises:
            ProviderConfigError: If no provider name is available
        """
        name = name or self.provider
        if not name:
            raise ProviderConfigError(
                "No sync provider configured. Set TASKSYNC_PROVIDER or pass --provider."
            )

        options: dict[str, Any] = {}
        if name == "webdav":
            options = {
                "url": self.webdav_url,
                "username": self.webdav_username,
                "password": self.webdav_password,
            }
        elif name == "document":
            options = {"url": self.document_url, "api_key": self.document_api_key}

        options.update({k: v for k, v in overrides.items() if v is not None})
        return ProviderConfig(name=name, options=options)


config = Config()
