"""
Shared pytest fixtures for the versioned entity store test suite.

Provides:
    - store_root: an empty temporary store root
    - store_config: the default StoreConfig
    - schema_info / storage_factory: the default schema and storages
    - populated_store: a small WordPress-like site written through storages
    - git_store: a StoreManager over a real git repository whose first
      commit holds the populated site (skipped when git is unavailable)
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure vstore/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from vstore.change_info import EntityChangeInfo  # noqa: E402
from vstore.clock import FixedClock  # noqa: E402
from vstore.config import StoreConfig  # noqa: E402
from vstore.git_repository import check_git_available  # noqa: E402
from vstore.schema_info import DbSchemaInfo  # noqa: E402
from vstore.storages import StorageFactory  # noqa: E402
from vstore.store_manager import StoreManager  # noqa: E402

FIXED_NOW = datetime(2025, 3, 14, 9, 26, 53)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def populate_site(factory):
    """Write the sample site through *factory*'s storages.

    Entities:
        user     u1     (usermeta um1)
        term     t1     (term_taxonomy tt1)
        post     p1     by u1, tagged tt1 (postmeta pm1)
        comment  c1     on p1 by u1
        option   o1
    """
    factory.get_storage("user").save({"vp_id": "u1", "user_login": "admin"})
    factory.get_storage("usermeta").save(
        {"vp_id": "um1", "meta_key": "nickname", "meta_value": "Admin", "vp_user_id": "u1"},
        parent_id="u1",
    )
    factory.get_storage("term").save({"vp_id": "t1", "name": "News", "slug": "news"})
    factory.get_storage("term_taxonomy").save(
        {"vp_id": "tt1", "taxonomy": "category", "vp_term_id": "t1"},
        parent_id="t1",
    )
    factory.get_storage("post").save({
        "vp_id": "p1",
        "post_title": "Hello world",
        "post_status": "publish",
        "vp_post_author": "u1",
        "vp_term_taxonomy": ["tt1"],
    })
    factory.get_storage("postmeta").save(
        {"vp_id": "pm1", "meta_key": "_edit_lock", "meta_value": "1", "vp_post_id": "p1"},
        parent_id="p1",
    )
    factory.get_storage("comment").save({
        "vp_id": "c1",
        "comment_content": "First!",
        "vp_comment_post_ID": "p1",
        "vp_user_id": "u1",
    })
    factory.get_storage("option").save({"vp_id": "o1", "option_name": "blogname", "option_value": "Site"})


def _commit_entity(manager, entity_name, action, entity_id, parent_id=None):
    """Commit the work tree with a single entity change description."""
    change_info = EntityChangeInfo(
        entity_name=entity_name, action=action, entity_id=entity_id, parent_id=parent_id
    )
    return manager.commit_changes(change_info)


def _snapshot_tree(root):
    """Return ``{relative path: bytes}`` for every tracked-area file under *root*."""
    root = Path(root)
    snapshot = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if not path.is_file() or relative.parts[0] in (".git", "runtime"):
            continue
        snapshot[str(relative)] = path.read_bytes()
    return snapshot


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store_root(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    return root


@pytest.fixture
def store_config():
    return StoreConfig()


@pytest.fixture
def schema_info():
    return DbSchemaInfo()


@pytest.fixture
def storage_factory(store_root, store_config):
    return StorageFactory(store_config.entities_root(store_root), store_config.storages)


@pytest.fixture
def populated_store(storage_factory):
    """Return the storage factory after writing the sample site."""
    populate_site(storage_factory)
    return storage_factory


@pytest.fixture
def fixed_clock():
    return FixedClock(FIXED_NOW, local_offset_hours=2)


@pytest.fixture
def git_store(store_root, store_config, fixed_clock):
    """A StoreManager over an initialized git repository.

    The first commit contains the sample site; the mirror is fully synced.
    """
    if not check_git_available():
        pytest.skip("git executable not found")

    manager = StoreManager(store_root, config=store_config, clock=fixed_clock)
    manager.init_store()
    manager.repository.run(["config", "commit.gpgsign", "false"])
    populate_site(manager.storage_factory)
    manager.repository.commit("Initial site")
    manager.rebuild_mirror()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def commit_entity():
    """Return a helper ``commit_entity(manager, entity_name, action, entity_id, parent_id=None)``."""
    return _commit_entity


@pytest.fixture
def snapshot_tree():
    """Return a helper that maps every non-git file under a root to its bytes."""
    return _snapshot_tree
