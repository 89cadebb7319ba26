"""Runtime settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

BackendName = Literal["auto", "process", "dotenv", "registry", "memory", "none"]


class Settings(BaseSettings):
    """envgroups settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``ENVGROUPS_`` prefix.  Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="ENVGROUPS_")

    data_dir: Path = Path("~/.config/envgroups")
    store_file: Path | None = None
    backend: BackendName = "auto"
    dotenv_path: Path | None = None
    path_variable: str = "PATH"
    path_separator: str = os.pathsep
    default_cleanup_days: PositiveInt = 30

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir.expanduser()

    @property
    def resolved_store_file(self) -> Path:
        if self.store_file is not None:
            return self.store_file.expanduser()
        return self.resolved_data_dir / "store.json"

    @property
    def resolved_dotenv_path(self) -> Path:
        if self.dotenv_path is not None:
            return self.dotenv_path.expanduser()
        return self.resolved_data_dir / "user.env"
