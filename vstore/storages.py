"""
vstore/storages.py -- Entity Store Accessors for the versioned file store.

Each entity type is persisted as INI sections inside the git work tree.  The
storage classes know where a given identity ``(entity_id, parent_id)`` lives
and translate between sections and plain ``dict`` records.

Layouts:

    DirectoryStorage   posts/0/<id>.ini        one file per entity
    FileStorage        users.ini               every entity in one file
    EmbeddedStorage    [<parent id>/<type>/<id>] sections inside the parent's
                       file (postmeta inside the post file, usermeta inside
                       users.ini, term_taxonomy inside terms.ini)

Top-level storages ignore ``parent_id``; only embedded storages are scoped by
it.

Usage::

    from vstore.storages import StorageFactory

    factory = StorageFactory(entities_root, config.storages)
    posts = factory.get_storage("post")
    posts.save({"vp_id": "abcd1234", "post_title": "Hello"})
    posts.exists("abcd1234")          # -> True
    posts.load_all()
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from vstore.config import StorageSpec
from vstore.errors import EntityNotFoundError, UnknownEntityTypeError
from vstore.utils import read_ini_sections, write_ini_sections

logger = logging.getLogger(__name__)

ID_FIELD = "vp_id"
PARENT_FIELD = "vp_parent_id"
_SECTION_SEPARATOR = "/"
_TOP_LEVEL_BUCKET = "0"


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------

class EntityStorage:
    """Common behaviour of INI-backed storages.

    Subclasses decide which file and which section hold an identity
    (``_file_for`` / ``_section_for``), which files to scan for ``load_all``
    (``_all_files``), and which sections they own (``_owns_section``).

    Loaded records always carry ``vp_id`` (and ``vp_parent_id`` for scoped
    entities) so callers can tell them apart after ``load_all()``.
    """

    scoped = False

    def __init__(self, entity_type: str):
        self.entity_type = entity_type

    # -- layout hooks ---------------------------------------------------

    def _file_for(self, entity_id: str, parent_id: str | None) -> Path | None:
        raise NotImplementedError

    def _section_for(self, entity_id: str, parent_id: str | None) -> str:
        return entity_id

    def _all_files(self) -> list[Path]:
        raise NotImplementedError

    def _owns_section(self, section: str) -> bool:
        return _SECTION_SEPARATOR not in section

    def _identity_of(self, section: str) -> tuple[str, str | None]:
        return section, None

    # -- public API -----------------------------------------------------

    def exists(self, entity_id, parent_id=None) -> bool:
        if not entity_id:
            return False
        located = self._locate(str(entity_id), parent_id)
        return located is not None

    def load_entity(self, entity_id, parent_id=None) -> dict:
        """Return the record stored under ``(entity_id, parent_id)``.

        Raises
        ------
        EntityNotFoundError
            If no such entity is stored.
        """
        located = self._locate(str(entity_id), parent_id) if entity_id else None
        if located is None:
            raise EntityNotFoundError(self.entity_type, entity_id, parent_id)
        _path, section, record = located
        return self._with_identity(section, record)

    def load_all(self) -> list[dict]:
        entities: list[dict] = []
        for path in self._all_files():
            for section, record in read_ini_sections(path).items():
                if self._owns_section(section):
                    entities.append(self._with_identity(section, record))
        return entities

    def save(self, entity: dict, parent_id=None) -> None:
        """Create or replace *entity*; its id is read from ``vp_id``."""
        entity_id = entity.get(ID_FIELD)
        if not entity_id:
            raise ValueError(f"Cannot save a {self.entity_type} without '{ID_FIELD}'")
        if self.scoped:
            parent_id = parent_id or entity.get(PARENT_FIELD)
            if not parent_id:
                raise ValueError(f"Cannot save a {self.entity_type} without a parent id")

        path = self._file_for(str(entity_id), parent_id)
        if path is None:
            raise EntityNotFoundError(self.entity_type, entity_id, parent_id)

        record = {
            key: value for key, value in entity.items()
            if key not in (ID_FIELD, PARENT_FIELD)
        }
        sections = read_ini_sections(path)
        sections[self._section_for(str(entity_id), parent_id)] = record
        write_ini_sections(path, sections)
        logger.debug("Saved %s '%s' to %s", self.entity_type, entity_id, path)

    def delete(self, entity_id, parent_id=None) -> bool:
        """Remove the entity.  Returns ``False`` if it was not stored."""
        located = self._locate(str(entity_id), parent_id) if entity_id else None
        if located is None:
            return False
        path, section, _record = located
        sections = read_ini_sections(path)
        sections.pop(section, None)
        if sections:
            write_ini_sections(path, sections)
        else:
            os.remove(path)
        logger.debug("Deleted %s '%s' from %s", self.entity_type, entity_id, path)
        return True

    # -- internals ------------------------------------------------------

    def _locate(self, entity_id: str, parent_id) -> tuple[Path, str, dict] | None:
        if self.scoped and not parent_id:
            # Scope unknown: find the entity in any parent.
            for path in self._all_files():
                for section, record in read_ini_sections(path).items():
                    if self._owns_section(section) and self._identity_of(section)[0] == entity_id:
                        return path, section, record
            return None

        path = self._file_for(entity_id, parent_id)
        if path is None or not path.is_file():
            return None
        section = self._section_for(entity_id, parent_id)
        record = read_ini_sections(path).get(section)
        if record is None:
            return None
        return path, section, record

    def _with_identity(self, section: str, record: dict) -> dict:
        entity_id, parent_id = self._identity_of(section)
        entity = {ID_FIELD: entity_id}
        if parent_id is not None:
            entity[PARENT_FIELD] = parent_id
        entity.update(record)
        return entity


# ---------------------------------------------------------------------------
# Concrete layouts
# ---------------------------------------------------------------------------

class DirectoryStorage(EntityStorage):
    """One INI file per entity at ``<directory>/0/<id>.ini``."""

    def __init__(self, entity_type: str, directory):
        super().__init__(entity_type)
        self.directory = Path(directory)

    def _file_for(self, entity_id, parent_id):
        return self.directory / _TOP_LEVEL_BUCKET / f"{entity_id}.ini"

    def _all_files(self):
        if not self.directory.exists():
            return []
        return sorted(self.directory.rglob("*.ini"))


class FileStorage(EntityStorage):
    """Every entity of the type as a section of a single INI file."""

    def __init__(self, entity_type: str, path):
        super().__init__(entity_type)
        self.path = Path(path)

    def _file_for(self, entity_id, parent_id):
        return self.path

    def _all_files(self):
        return [self.path] if self.path.is_file() else []


class EmbeddedStorage(EntityStorage):
    """Child entities stored as ``[<parent id>/<type>/<id>]`` sections inside
    the parent entity's file."""

    scoped = True

    def __init__(self, entity_type: str, parent_storage: EntityStorage):
        super().__init__(entity_type)
        self.parent_storage = parent_storage

    def _file_for(self, entity_id, parent_id):
        if not self.parent_storage.exists(parent_id):
            return None
        return self.parent_storage._file_for(str(parent_id), None)

    def _section_for(self, entity_id, parent_id):
        return _SECTION_SEPARATOR.join((str(parent_id), self.entity_type, entity_id))

    def _all_files(self):
        return self.parent_storage._all_files()

    def _owns_section(self, section):
        parts = section.split(_SECTION_SEPARATOR)
        return len(parts) == 3 and parts[1] == self.entity_type

    def _identity_of(self, section):
        parent_id, _entity_type, entity_id = section.split(_SECTION_SEPARATOR)
        return entity_id, parent_id


# ---------------------------------------------------------------------------
# StorageFactory
# ---------------------------------------------------------------------------

class StorageFactory:
    """Builds and caches one storage per entity type.

    Parameters
    ----------
    entities_root : str or pathlib.Path
        Directory (inside the git work tree) holding all entity files.
    specs : dict[str, StorageSpec]
        Layout per entity type, usually ``StoreConfig.storages``.
    """

    def __init__(self, entities_root, specs: dict[str, StorageSpec]):
        self.entities_root = Path(entities_root)
        self._specs = dict(specs)
        self._storages: dict[str, EntityStorage] = {}

    def get_storage(self, entity_type: str) -> EntityStorage:
        if entity_type in self._storages:
            return self._storages[entity_type]

        spec = self._specs.get(entity_type)
        if spec is None:
            raise UnknownEntityTypeError(entity_type)

        if spec.kind == "directory":
            storage = DirectoryStorage(entity_type, self.entities_root / spec.path)
        elif spec.kind == "file":
            storage = FileStorage(entity_type, self.entities_root / spec.path)
        else:
            storage = EmbeddedStorage(entity_type, self.get_storage(spec.parent))

        self._storages[entity_type] = storage
        return storage

    def get_entity_types(self) -> list[str]:
        return list(self._specs)
