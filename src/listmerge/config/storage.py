"""Template storage location helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env

APP_DIR_NAME: Final[str] = "listmerge"
TEMPLATE_DIR_NAME: Final[str] = "headers"
TEMPLATE_DIR_ENV: Final[str] = "LISTMERGE_TEMPLATE_DIR"


@dataclass(frozen=True, slots=True)
class TemplateStorageConfig:
    """Where user-maintained template files are looked up."""

    template_dir: Path

    def resolve_template_dir(self) -> Path:
        return self.template_dir.expanduser().resolve()

    def ensure_template_dir(self) -> Path:
        template_dir = self.resolve_template_dir()
        template_dir.mkdir(parents=True, exist_ok=True)
        return template_dir


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_template_storage_config() -> TemplateStorageConfig:
    env_dir = optional_env(TEMPLATE_DIR_ENV)
    template_dir = Path(env_dir) if env_dir else _default_data_dir() / TEMPLATE_DIR_NAME
    return TemplateStorageConfig(template_dir=template_dir)
