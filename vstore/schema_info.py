"""
vstore/schema_info.py -- Entity schema / reference registry.

Knows, for every entity type, which other types it points to.  One-to-many
references ("belongs to") are stored on the entity as a single id in the
field ``vp_<reference name>``; many-to-many references are stored as a list
of ids in the field ``vp_<target type>``.

The registry is read from a JSON document::

    {
      "entities": {
        "comment": {
          "references": {"comment_post_ID": "post", "user_id": "user"},
          "mn_references": {}
        },
        ...
      }
    }

When no document is configured the built-in WordPress-like schema is used.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vstore.errors import ConfigError, UnknownEntityTypeError
from vstore.utils import safe_read_json

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "vp_"


class EntityInfo(BaseModel):
    """Reference declarations of one entity type."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    entity_name: str
    references: dict[str, str] = Field(default_factory=dict)
    mn_references: dict[str, str] = Field(default_factory=dict)

    def reference_field(self, reference: str) -> str:
        """Field holding the id for the one-to-many *reference*."""
        return f"{REFERENCE_PREFIX}{reference}"

    def mn_reference_field(self, reference: str) -> str:
        """Field holding the id list for the many-to-many *reference*."""
        return f"{REFERENCE_PREFIX}{self.mn_references[reference]}"


DEFAULT_SCHEMA = {
    "entities": {
        "post": {
            "references": {"post_author": "user", "post_parent": "post"},
            "mn_references": {"term_relationships": "term_taxonomy"},
        },
        "postmeta": {"references": {"post_id": "post"}},
        "comment": {
            "references": {
                "comment_post_ID": "post",
                "user_id": "user",
                "comment_parent": "comment",
            },
        },
        "user": {},
        "usermeta": {"references": {"user_id": "user"}},
        "term": {},
        "term_taxonomy": {
            "references": {"term_id": "term", "parent": "term"},
        },
        "option": {},
    }
}


class DbSchemaInfo:
    """Read-only registry of entity types and their reference declarations.

    Parameters
    ----------
    schema : dict, optional
        A schema document (see module docstring).  Defaults to
        ``DEFAULT_SCHEMA``.
    """

    def __init__(self, schema: dict | None = None):
        if schema is None:
            schema = DEFAULT_SCHEMA
        entities = schema.get("entities") if isinstance(schema, dict) else None
        if not isinstance(entities, dict):
            raise ConfigError("Schema document must contain an 'entities' object")

        infos: dict[str, EntityInfo] = {}
        for name, declaration in entities.items():
            try:
                infos[name] = EntityInfo(entity_name=name, **(declaration or {}))
            except (TypeError, ValidationError) as exc:
                raise ConfigError(f"Invalid schema for entity '{name}': {exc}") from exc

        for info in infos.values():
            for target in list(info.references.values()) + list(info.mn_references.values()):
                if target not in infos:
                    logger.warning(
                        "Entity '%s' references undeclared type '%s'",
                        info.entity_name, target,
                    )

        self._infos = MappingProxyType(infos)

    @classmethod
    def from_file(cls, path) -> "DbSchemaInfo":
        """Load the registry from a JSON file.

        Raises
        ------
        ConfigError
            If the file is missing, unreadable or malformed.
        """
        data = safe_read_json(str(path))
        if data is None:
            raise ConfigError(f"Schema file {Path(path)} is missing or not valid JSON")
        return cls(data)

    def get_entity_info(self, entity_name: str) -> EntityInfo:
        try:
            return self._infos[entity_name]
        except KeyError:
            raise UnknownEntityTypeError(entity_name) from None

    def get_all_entity_names(self) -> list[str]:
        return list(self._infos)

    def has_entity(self, entity_name: str) -> bool:
        return entity_name in self._infos
