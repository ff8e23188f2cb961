"""
vstore/store_manager.py -- Wires the versioned store together from a root directory.

Owns one instance of every collaborator the reverter needs, created lazily on
first access from the store's configuration.  Reverts made through the
manager are serialized with a ``threading.RLock`` so a UI thread and a
worker thread cannot interleave two reverts on the same work tree.

Usage:
    from vstore.store_manager import StoreManager

    with StoreManager("/srv/site") as sm:
        sm.init_store()
        status = sm.revert("abc1234")
        sm.mirror.query_by_type("post")
"""

import logging
import threading
from pathlib import Path

from vstore.change_info import format_change_info

logger = logging.getLogger(__name__)

GITIGNORE_ENTRIES = ("runtime/",)


class StoreManager:
    """Single access point for the modules of one versioned store.

    Parameters
    ----------
    root : str or pathlib.Path
        The store root: the git work tree holding ``vstore.json`` and the
        entity files.
    config : StoreConfig, optional
        Use this configuration instead of loading it from *root*.
    clock : Clock, optional
        Passed to the reverter and the event log.
    """

    def __init__(self, root, config=None, clock=None):
        self.root = Path(root).resolve()
        self.clock = clock
        self._modules = {}
        if config is not None:
            self._modules["config"] = config
        self._init_lock = threading.RLock()
        self._revert_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Module properties (lazy-loaded)
    # ------------------------------------------------------------------

    @property
    def config(self):
        return self._get_module("config")

    @property
    def schema_info(self):
        return self._get_module("schema_info")

    @property
    def storage_factory(self):
        return self._get_module("storage_factory")

    @property
    def repository(self):
        return self._get_module("repository")

    @property
    def committer(self):
        return self._get_module("committer")

    @property
    def mirror(self):
        return self._get_module("mirror")

    @property
    def synchronization_process(self):
        return self._get_module("synchronization_process")

    @property
    def reference_checker(self):
        return self._get_module("reference_checker")

    @property
    def event_log(self):
        return self._get_module("event_log")

    @property
    def reverter(self):
        return self._get_module("reverter")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def init_store(self) -> None:
        """Create the git repository and ignore the runtime directory.

        Safe to call on an existing store.
        """
        self.repository.init()
        gitignore = self.root / ".gitignore"
        existing = gitignore.read_text(encoding="utf-8").splitlines() if gitignore.exists() else []
        missing = [entry for entry in GITIGNORE_ENTRIES if entry not in existing]
        if missing:
            with open(gitignore, "a", encoding="utf-8") as fh:
                if existing and existing[-1].strip():
                    fh.write("\n")
                fh.write("\n".join(missing) + "\n")
            logger.info("Added %s to %s", ", ".join(missing), gitignore)

    def commit_changes(self, change_info, subject=None) -> str:
        """Commit the current work tree described by *change_info*."""
        with self._revert_lock:
            return self.repository.commit(format_change_info(change_info, subject))

    def revert(self, commit_hash: str):
        """Undo one commit.  See ``Reverter.revert``."""
        with self._revert_lock:
            return self.reverter.revert(commit_hash)

    def revert_all(self, commit_hash: str):
        """Roll the store back to *commit_hash*.  See ``Reverter.revert_all``."""
        with self._revert_lock:
            return self.reverter.revert_all(commit_hash)

    def rebuild_mirror(self) -> int:
        """Resynchronize every entity type.  Returns the row count."""
        with self._revert_lock:
            return self.synchronization_process.full_sync()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the mirror connection if it was opened."""
        mirror = self._modules.pop("mirror", None)
        if mirror is not None:
            mirror.close()
        for name in ("synchronization_process", "reverter"):
            self._modules.pop(name, None)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_module(self, name):
        """Lazily create and return the named module instance."""
        if name in self._modules:
            return self._modules[name]

        with self._init_lock:
            if name in self._modules:
                return self._modules[name]
            instance = self._create_module(name)
            self._modules[name] = instance
            return instance

    def _create_module(self, name):
        if name == "config":
            from vstore.config import load_config
            return load_config(self.root)

        if name == "schema_info":
            from vstore.schema_info import DbSchemaInfo
            schema_file = self.config.schema_file(self.root)
            if schema_file is None:
                return DbSchemaInfo()
            return DbSchemaInfo.from_file(schema_file)

        if name == "storage_factory":
            from vstore.storages import StorageFactory
            return StorageFactory(self.config.entities_root(self.root), self.config.storages)

        if name == "repository":
            from vstore.git_repository import GitRepository
            return GitRepository(self.root, self.config.git)

        if name == "committer":
            from vstore.committer import Committer
            return Committer(self.repository)

        if name == "mirror":
            from vstore.mirror import MirrorDatabase
            return MirrorDatabase(self.config.database_file(self.root))

        if name == "synchronization_process":
            from vstore.mirror import SynchronizationProcess
            return SynchronizationProcess(self.storage_factory, self.schema_info, self.mirror)

        if name == "reference_checker":
            from vstore.reference_checker import ReferenceChecker
            return ReferenceChecker(self.schema_info, self.storage_factory)

        if name == "event_log":
            from vstore.event_log import RevertEventLog
            path = self.config.event_log_file(self.root)
            return RevertEventLog(path, self.clock) if path is not None else None

        if name == "reverter":
            from vstore.reverter import Reverter
            return Reverter(
                self.synchronization_process,
                self.mirror,
                self.committer,
                self.repository,
                self.schema_info,
                self.storage_factory,
                clock=self.clock,
                reference_checker=self.reference_checker,
                event_log=self.event_log,
            )

        raise KeyError(f"Unknown module: {name}")
