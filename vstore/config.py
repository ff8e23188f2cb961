"""
vstore/config.py -- Store configuration.

Configuration is read from two JSON documents and merged key by key:

    1. ``config.json`` in the platform user config directory (optional,
       machine-wide defaults such as git timeouts);
    2. ``vstore.json`` at the store root (optional, per-store layout).

Both are validated by the ``StoreConfig`` pydantic model.  Relative paths
are resolved against the store root.

Usage::

    from vstore.config import load_config

    config = load_config("/srv/site")
    config.database_file(root)       # -> /srv/site/runtime/mirror.db
    config.storages["post"].path     # -> "posts"
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal, Optional

from platformdirs import user_config_dir
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from vstore.errors import ConfigError

logger = logging.getLogger(__name__)

_APP_NAME = "vstore"
CONFIG_FILENAME = "vstore.json"


class StorageSpec(BaseModel):
    """Where one entity type lives on disk.

    ``directory`` keeps one INI file per entity under *path*; ``file`` keeps
    every entity of the type in the single INI file *path*; ``embedded``
    stores the entities as child sections inside their *parent* type's files.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["directory", "file", "embedded"]
    path: Optional[str] = None
    parent: Optional[str] = None

    @model_validator(mode="after")
    def _check_location(self) -> "StorageSpec":
        if self.kind == "embedded" and not self.parent:
            raise ValueError("embedded storages need a 'parent' entity type")
        if self.kind != "embedded" and not self.path:
            raise ValueError(f"{self.kind} storages need a 'path'")
        return self


class GitSettings(BaseModel):
    """Timeouts for git subprocesses, scaled by operation weight."""

    model_config = ConfigDict(extra="forbid")

    base_timeout_ms: int = 30000
    fast_scale: float = 0.167
    slow_scale: float = 4.0
    max_timeout_ms: int = 300000


def default_storages() -> dict[str, StorageSpec]:
    return {
        "post": StorageSpec(kind="directory", path="posts"),
        "postmeta": StorageSpec(kind="embedded", parent="post"),
        "comment": StorageSpec(kind="directory", path="comments"),
        "user": StorageSpec(kind="file", path="users.ini"),
        "usermeta": StorageSpec(kind="embedded", parent="user"),
        "term": StorageSpec(kind="file", path="terms.ini"),
        "term_taxonomy": StorageSpec(kind="embedded", parent="term"),
        "option": StorageSpec(kind="file", path="options.ini"),
    }


class StoreConfig(BaseModel):
    """Validated configuration for one versioned store."""

    model_config = ConfigDict(extra="forbid")

    entities_dir: str = "db"
    database_path: str = "runtime/mirror.db"
    schema_path: Optional[str] = None
    event_log_path: Optional[str] = "runtime/revert-events.jsonl"
    storages: dict[str, StorageSpec] = Field(default_factory=default_storages)
    git: GitSettings = Field(default_factory=GitSettings)

    @model_validator(mode="after")
    def _check_embedded_parents(self) -> "StoreConfig":
        for entity_type, spec in self.storages.items():
            if spec.kind != "embedded":
                continue
            parent = self.storages.get(spec.parent)
            if parent is None:
                raise ValueError(
                    f"'{entity_type}' is embedded in unknown type '{spec.parent}'"
                )
            if parent.kind == "embedded":
                raise ValueError(
                    f"'{entity_type}' cannot be embedded in '{spec.parent}', "
                    f"which is itself embedded"
                )
        return self

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    def entities_root(self, root) -> Path:
        return _resolve(root, self.entities_dir)

    def database_file(self, root) -> Path:
        return _resolve(root, self.database_path)

    def schema_file(self, root) -> Path | None:
        if not self.schema_path:
            return None
        return _resolve(root, self.schema_path)

    def event_log_file(self, root) -> Path | None:
        if not self.event_log_path:
            return None
        return _resolve(root, self.event_log_path)


def _resolve(root, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return Path(root).resolve() / path


def user_config_path() -> Path:
    """Return the path of the optional machine-wide config file."""
    return Path(user_config_dir(_APP_NAME)) / "config.json"


def load_config(root, *, user_config: Path | None = None) -> StoreConfig:
    """Load and validate the configuration for the store at *root*.

    Parameters
    ----------
    root : str or pathlib.Path
        The store root (the git work tree).
    user_config : pathlib.Path, optional
        Override for the machine-wide config file location.  Defaults to
        ``user_config_path()``.

    Raises
    ------
    ConfigError
        If either document exists but is not valid JSON, is not a JSON
        object, or fails validation.  Missing documents are skipped.
    """
    if user_config is None:
        user_config = user_config_path()

    merged: dict = {}
    for path in (Path(user_config), Path(root) / CONFIG_FILENAME):
        if not path.is_file():
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")
        logger.debug("Loaded configuration from %s", path)
        merged.update(data)

    try:
        return StoreConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid store configuration: {exc}") from exc
