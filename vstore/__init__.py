"""
vstore/ -- Versioned entity store with referentially safe reverts.

Submodules:
    storages           INI-backed entity storages and the storage factory.
    schema_info        Reference declarations per entity type.
    change_info        Change descriptions carried in commit messages.
    git_repository     Git backend (status, diff, revert, reset, commit).
    committer          Commits with a forced change description.
    reference_checker  Dangling / orphaned reference detection.
    change_set         Modified paths -> entity types and posts to refresh.
    mirror             SQLite relational mirror and synchronization.
    reverter           Single-commit revert and bulk rollback.
    store_manager      Lazily wires everything from a store root.
"""

from vstore.reverter import Reverter, RevertStatus
from vstore.store_manager import StoreManager

__all__ = ["Reverter", "RevertStatus", "StoreManager"]
