"""
Tests for vstore/store_manager.py -- StoreManager wiring and lifecycle.

Covers:
    - lazy creation and caching of modules
    - configuration loaded from the store root
    - custom schema files
    - init_store (.gitignore handling)
    - serialized reverts
    - close / context manager
"""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from vstore.config import CONFIG_FILENAME, StoreConfig
from vstore.git_repository import check_git_available
from vstore.mirror import MirrorDatabase
from vstore.reverter import Reverter
from vstore.store_manager import StoreManager


@pytest.fixture
def manager(store_root, store_config):
    sm = StoreManager(store_root, config=store_config)
    yield sm
    sm.close()


class TestLazyModules:

    def test_modules_created_on_first_access(self, manager):
        assert manager._modules.keys() == {"config"}
        reverter = manager.reverter
        assert isinstance(reverter, Reverter)
        assert {"mirror", "committer", "repository", "reference_checker"} <= manager._modules.keys()

    def test_modules_are_cached(self, manager):
        assert manager.storage_factory is manager.storage_factory
        assert manager.reverter.database is manager.mirror
        assert manager.reverter.reference_checker is manager.reference_checker

    def test_paths_follow_config(self, manager, store_root):
        assert manager.storage_factory.entities_root == store_root.resolve() / "db"
        assert manager.mirror.db_path == str(store_root.resolve() / "runtime" / "mirror.db")

    def test_event_log_disabled(self, store_root):
        sm = StoreManager(store_root, config=StoreConfig(event_log_path=None))
        assert sm.event_log is None
        assert sm.reverter.event_log is None
        sm.close()

    def test_unknown_module(self, manager):
        with pytest.raises(KeyError, match="Unknown module"):
            manager._get_module("widgets")


class TestConfiguration:

    def test_config_loaded_from_root(self, store_root, tmp_path):
        (store_root / CONFIG_FILENAME).write_text(
            json.dumps({"entities_dir": "content"}), encoding="utf-8"
        )
        with patch("vstore.config.user_config_path", return_value=tmp_path / "absent.json"):
            sm = StoreManager(store_root)
            assert sm.config.entities_dir == "content"
            assert sm.storage_factory.entities_root.name == "content"

    def test_custom_schema_file(self, store_root):
        schema_path = store_root / "schema.json"
        schema_path.write_text(json.dumps({"entities": {"book": {}}}), encoding="utf-8")
        sm = StoreManager(store_root, config=StoreConfig(schema_path="schema.json"))
        assert sm.schema_info.get_all_entity_names() == ["book"]


@pytest.mark.skipif(not check_git_available(), reason="git executable not found")
class TestInitStore:

    def test_creates_repository_and_gitignore(self, manager, store_root):
        manager.init_store()
        assert manager.repository.is_repository()
        assert (store_root / ".gitignore").read_text(encoding="utf-8") == "runtime/\n"

    def test_is_idempotent(self, manager, store_root):
        (store_root / ".gitignore").write_text("*.tmp", encoding="utf-8")
        manager.init_store()
        manager.init_store()
        assert (store_root / ".gitignore").read_text(encoding="utf-8") == "*.tmp\nruntime/\n"

    def test_runtime_files_do_not_dirty_the_tree(self, git_store):
        git_store.mirror.get_stats()
        assert (git_store.root / "runtime" / "mirror.db").exists()
        assert git_store.repository.is_clean_working_directory()


class TestSerializedReverts:

    def test_reverts_hold_the_lock(self, manager):
        seen = []

        def fake_revert(commit_hash):
            seen.append(manager._revert_lock._is_owned())
            return "OK"

        manager._modules["reverter"] = MagicMock(revert=fake_revert, revert_all=fake_revert)
        manager.revert("abc")
        manager.revert_all("abc")
        assert seen == [True, True]

    def test_concurrent_reverts_do_not_overlap(self, manager):
        active = []
        overlaps = []

        def slow_revert(commit_hash):
            active.append(commit_hash)
            if len(active) > 1:
                overlaps.append(commit_hash)
            threading.Event().wait(0.05)
            active.remove(commit_hash)

        manager._modules["reverter"] = MagicMock(revert=slow_revert)
        threads = [threading.Thread(target=manager.revert, args=(str(i),)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []


class TestLifecycle:

    def test_close_closes_mirror(self, store_root, store_config):
        sm = StoreManager(store_root, config=store_config)
        mirror = sm.mirror
        sm.close()
        assert mirror._conn is None
        assert "mirror" not in sm._modules

    def test_context_manager(self, store_root, store_config):
        with StoreManager(store_root, config=store_config) as sm:
            mirror = sm.mirror
            assert isinstance(mirror, MirrorDatabase)
        assert mirror._conn is None

    def test_close_without_mirror(self, store_root, store_config):
        StoreManager(store_root, config=store_config).close()
