"""
vstore/reference_checker.py -- Referential integrity checks for speculative reverts.

After a revert has been applied to the work tree (but not committed), the
reverter asks this module whether every entity the reverted commit touched is
still consistent with the rest of the graph:

    - an entity that still exists must only point at entities that exist
      (one-to-many fields ``vp_<reference>``, many-to-many fields
      ``vp_<target type>``), looked up in the same parent scope;
    - an entity that no longer exists must not be pointed at by anything.

The second question needs a reverse lookup.  There is no reverse index in the
file store, so ``ScanningReferenceLookup`` answers it by loading every entity
of every type that declares a reference to the deleted entity's type.  Any
object with an ``exists_reference_to(entity_type, entity_id)`` method can be
substituted.

Checks read the store only.  Given the same files they always return the same
answer.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class IncomingReferenceLookup(Protocol):
    def exists_reference_to(self, entity_type: str, entity_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Exhaustive reverse lookup
# ---------------------------------------------------------------------------

class ScanningReferenceLookup:
    """Finds incoming references by scanning every referencing entity.

    Cost is O(entity types x entities per type) per call.
    """

    def __init__(self, schema_info, storage_factory):
        self.schema_info = schema_info
        self.storage_factory = storage_factory

    def exists_reference_to(self, entity_type: str, entity_id: str) -> bool:
        """Return True if any stored entity references *entity_id* of *entity_type*."""
        for other_name in self.schema_info.get_all_entity_names():
            other_info = self.schema_info.get_entity_info(other_name)

            # Merged lookup: field name -> is_many_to_many
            fields: dict[str, bool] = {}
            for reference, target in other_info.references.items():
                if target == entity_type:
                    fields[other_info.reference_field(reference)] = False
            for reference, target in other_info.mn_references.items():
                if target == entity_type:
                    fields.setdefault(other_info.mn_reference_field(reference), True)

            if not fields:
                continue

            candidates = self.storage_factory.get_storage(other_name).load_all()
            for candidate in candidates:
                for field, many in fields.items():
                    value = candidate.get(field)
                    if value is None:
                        continue
                    if many:
                        if entity_id in _as_list(value):
                            self._log_hit(other_name, candidate, field, entity_type, entity_id)
                            return True
                    elif value == entity_id:
                        self._log_hit(other_name, candidate, field, entity_type, entity_id)
                        return True

        return False

    @staticmethod
    def _log_hit(other_name, candidate, field, entity_type, entity_id):
        logger.info(
            "%s '%s' still references %s '%s' via %s",
            other_name, candidate.get("vp_id"), entity_type, entity_id, field,
        )


def _as_list(value) -> list:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


# ---------------------------------------------------------------------------
# ReferenceChecker
# ---------------------------------------------------------------------------

class ReferenceChecker:
    """Decides whether the current store state is safe for a set of entity changes.

    Parameters
    ----------
    schema_info : DbSchemaInfo
        Reference declarations per entity type.
    storage_factory : StorageFactory
        Gives access to each type's storage.
    incoming_lookup : IncomingReferenceLookup, optional
        Reverse-reference lookup.  Defaults to a ``ScanningReferenceLookup``.
    """

    def __init__(self, schema_info, storage_factory, incoming_lookup: IncomingReferenceLookup | None = None):
        self.schema_info = schema_info
        self.storage_factory = storage_factory
        self.incoming_lookup = incoming_lookup or ScanningReferenceLookup(schema_info, storage_factory)

    def check_change_info(self, change_info) -> bool:
        """Check every entity named by *change_info*, in order.

        Untracked descriptions always pass, and so do sub-changes naming a
        type the schema does not describe (plugin or theme actions, for
        instance).  Stops at the first failing entity.
        """
        if change_info.kind == "untracked":
            return True

        for sub_change in change_info.get_change_info_list():
            if sub_change.kind != "entity":
                continue
            if not self.schema_info.has_entity(sub_change.entity_name):
                logger.debug("Skipping '%s' change: not a schema entity", sub_change.entity_name)
                continue
            if not self.check_entity_references(
                sub_change.entity_name, sub_change.entity_id, sub_change.parent_id
            ):
                return False
        return True

    def check_entity_references(self, entity_name: str, entity_id: str, parent_id: str | None) -> bool:
        """Return True if no reference constraint is violated by this entity."""
        entity_info = self.schema_info.get_entity_info(entity_name)
        storage = self.storage_factory.get_storage(entity_name)

        if not storage.exists(entity_id, parent_id):
            return not self.exists_some_entity_with_reference_to(entity_name, entity_id)

        entity = storage.load_entity(entity_id, parent_id)

        for reference, referenced_name in entity_info.references.items():
            field = entity_info.reference_field(reference)
            referenced_id = entity.get(field)
            if not referenced_id:
                continue
            if not self.storage_factory.get_storage(referenced_name).exists(referenced_id, parent_id):
                self._log_dangling(entity_name, entity_id, field, referenced_name, referenced_id)
                return False

        for reference, referenced_name in entity_info.mn_references.items():
            field = entity_info.mn_reference_field(reference)
            referenced_ids = entity.get(field)
            if not referenced_ids:
                continue
            referenced_storage = self.storage_factory.get_storage(referenced_name)
            for referenced_id in _as_list(referenced_ids):
                if not referenced_storage.exists(referenced_id, parent_id):
                    self._log_dangling(entity_name, entity_id, field, referenced_name, referenced_id)
                    return False

        return True

    def exists_some_entity_with_reference_to(self, entity_name: str, entity_id: str) -> bool:
        return self.incoming_lookup.exists_reference_to(entity_name, entity_id)

    @staticmethod
    def _log_dangling(entity_name, entity_id, field, referenced_name, referenced_id):
        logger.info(
            "%s '%s' points via %s to missing %s '%s'",
            entity_name, entity_id, field, referenced_name, referenced_id,
        )
