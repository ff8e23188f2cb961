"""
vstore/mirror.py -- SQLite relational mirror of the versioned file store.

The INI files in the git work tree are the authoritative source of truth.
The mirror keeps a relational copy (one row per entity plus a
cross-reference table) that the rest of the site queries.  It is always
rebuildable from the files via ``SynchronizationProcess.full_sync()``.

Usage::

    from vstore.mirror import MirrorDatabase, SynchronizationProcess

    with MirrorDatabase("/srv/site/runtime/mirror.db") as mirror:
        sync = SynchronizationProcess(storage_factory, schema_info, mirror)
        sync.synchronize(["post", "postmeta"])
        mirror.update_post_modified("abcd1234", "2025-01-01 10:00:00",
                                    "2025-01-01 09:00:00")
        mirror.query_by_type("post")
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path

from vstore.errors import UnknownEntityTypeError
from vstore.storages import ID_FIELD, PARENT_FIELD

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    entity_type TEXT NOT NULL,
    vp_id TEXT NOT NULL,
    parent_id TEXT,
    data JSON NOT NULL,
    modified TEXT,
    modified_gmt TEXT,
    PRIMARY KEY (entity_type, vp_id)
);

-- No FOREIGN KEY on target_id: a type may be synced before its targets.
CREATE TABLE IF NOT EXISTS cross_references (
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id TEXT NOT NULL,
    field TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entity_parent ON entities(parent_id);
CREATE INDEX IF NOT EXISTS idx_xref_source ON cross_references(source_type, source_id);
CREATE INDEX IF NOT EXISTS idx_xref_target ON cross_references(target_type, target_id);
"""


def _extract_cross_references(entity: dict, entity_info) -> list[tuple[str, str, str]]:
    """Return ``(target_type, target_id, field)`` for every reference set on *entity*."""
    refs: list[tuple[str, str, str]] = []

    for reference, target_type in entity_info.references.items():
        field = entity_info.reference_field(reference)
        value = entity.get(field)
        if value:
            refs.append((target_type, str(value), field))

    for reference, target_type in entity_info.mn_references.items():
        field = entity_info.mn_reference_field(reference)
        values = entity.get(field)
        if not values:
            continue
        if isinstance(values, str):
            values = [values]
        for value in values:
            if value:
                refs.append((target_type, str(value), field))

    return refs


# ---------------------------------------------------------------------------
# MirrorDatabase
# ---------------------------------------------------------------------------

class MirrorDatabase:
    """Relational mirror client backed by SQLite.

    Parameters
    ----------
    db_path : str or pathlib.Path
        Database file.  ``":memory:"`` is accepted for throwaway mirrors.
    """

    def __init__(self, db_path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            os.makedirs(str(Path(self.db_path).parent), exist_ok=True)

        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_entities(self, entity_type: str, entities: list[dict], entity_info) -> int:
        """Replace every row of *entity_type* with *entities*.

        Modification stamps of entities that survive the replacement are
        carried over.  Runs in a single transaction.

        Returns
        -------
        int
            The number of rows written.
        """
        stamps = {
            row["vp_id"]: (row["modified"], row["modified_gmt"])
            for row in self._conn.execute(
                "SELECT vp_id, modified, modified_gmt FROM entities WHERE entity_type = ?",
                (entity_type,),
            )
        }

        written = 0
        with self._conn:
            self._conn.execute(
                "DELETE FROM cross_references WHERE source_type = ?", (entity_type,)
            )
            self._conn.execute("DELETE FROM entities WHERE entity_type = ?", (entity_type,))

            for entity in entities:
                vp_id = entity.get(ID_FIELD)
                if not vp_id:
                    continue
                modified, modified_gmt = stamps.get(vp_id, (None, None))
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO entities
                        (entity_type, vp_id, parent_id, data, modified, modified_gmt)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entity_type,
                        vp_id,
                        entity.get(PARENT_FIELD),
                        json.dumps(entity, ensure_ascii=False),
                        modified,
                        modified_gmt,
                    ),
                )
                for target_type, target_id, field in _extract_cross_references(entity, entity_info):
                    self._conn.execute(
                        """
                        INSERT INTO cross_references
                            (source_type, source_id, target_type, target_id, field)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (entity_type, vp_id, target_type, target_id, field),
                    )
                written += 1

        return written

    def update_post_modified(self, vp_id: str, modified: str, modified_gmt: str) -> int:
        """Stamp the modification dates of the post *vp_id*.

        Returns the number of rows updated (0 when the post is not mirrored).
        """
        with self._conn:
            cursor = self._conn.execute(
                """
                UPDATE entities SET modified = ?, modified_gmt = ?
                WHERE entity_type = 'post' AND vp_id = ?
                """,
                (modified, modified_gmt, vp_id),
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entity(self, entity_type: str, vp_id: str) -> dict | None:
        row = self._conn.execute(
            "SELECT * FROM entities WHERE entity_type = ? AND vp_id = ?",
            (entity_type, vp_id),
        ).fetchone()
        return self._row_to_dict(row) if row is not None else None

    def query_by_type(self, entity_type: str) -> list[dict]:
        rows = self._conn.execute(
            "SELECT * FROM entities WHERE entity_type = ? ORDER BY vp_id",
            (entity_type,),
        ).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def query_cross_references(self, entity_type: str, vp_id: str) -> dict:
        """Return ``{"outgoing": [...], "incoming": [...]}`` for one entity."""
        outgoing = self._conn.execute(
            "SELECT target_type, target_id, field FROM cross_references "
            "WHERE source_type = ? AND source_id = ?",
            (entity_type, vp_id),
        ).fetchall()
        incoming = self._conn.execute(
            "SELECT source_type, source_id, field FROM cross_references "
            "WHERE target_type = ? AND target_id = ?",
            (entity_type, vp_id),
        ).fetchall()
        return {
            "outgoing": [dict(r) for r in outgoing],
            "incoming": [dict(r) for r in incoming],
        }

    def get_stats(self) -> dict:
        total = self._conn.execute("SELECT COUNT(*) AS cnt FROM entities").fetchone()["cnt"]
        by_type_rows = self._conn.execute(
            "SELECT entity_type, COUNT(*) AS cnt FROM entities "
            "GROUP BY entity_type ORDER BY cnt DESC"
        ).fetchall()
        xref_count = self._conn.execute(
            "SELECT COUNT(*) AS cnt FROM cross_references"
        ).fetchone()["cnt"]
        return {
            "total_entities": total,
            "by_type": {r["entity_type"]: r["cnt"] for r in by_type_rows},
            "total_cross_references": xref_count,
        }

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        """Convert a row to a dict, decoding the ``data`` JSON column."""
        result = dict(row)
        if isinstance(result.get("data"), str):
            result["data"] = json.loads(result["data"])
        return result


# ---------------------------------------------------------------------------
# SynchronizationProcess
# ---------------------------------------------------------------------------

class SynchronizationProcess:
    """Pushes file-store state for whole entity types into the mirror.

    Parameters
    ----------
    storage_factory : StorageFactory
    schema_info : DbSchemaInfo
    mirror : MirrorDatabase
    """

    def __init__(self, storage_factory, schema_info, mirror: MirrorDatabase):
        self.storage_factory = storage_factory
        self.schema_info = schema_info
        self.mirror = mirror

    def synchronize(self, entity_types) -> dict[str, int]:
        """Resynchronize every distinct type in *entity_types*.

        Duplicates are processed once.  Types without a schema entry or a
        storage are skipped with a warning.

        Returns
        -------
        dict[str, int]
            Rows written per synchronized type.
        """
        counts: dict[str, int] = {}
        for entity_type in dict.fromkeys(entity_types):
            try:
                entity_info = self.schema_info.get_entity_info(entity_type)
                storage = self.storage_factory.get_storage(entity_type)
            except UnknownEntityTypeError:
                logger.warning("Skipping synchronization of unknown entity type '%s'", entity_type)
                continue
            counts[entity_type] = self.mirror.replace_entities(
                entity_type, storage.load_all(), entity_info
            )
        if counts:
            logger.info("Synchronized %s", ", ".join(f"{t} ({n})" for t, n in counts.items()))
        return counts

    def full_sync(self) -> int:
        """Rebuild the mirror for every stored type the schema describes.

        Returns the row count.
        """
        entity_types = [
            entity_type for entity_type in self.storage_factory.get_entity_types()
            if self.schema_info.has_entity(entity_type)
        ]
        counts = self.synchronize(entity_types)
        return sum(counts.values())
