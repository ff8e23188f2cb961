"""
vstore/reverter.py -- Revert Orchestrator for the versioned entity store.

Undoes a single commit (``revert``) or rolls the whole store back to an
earlier commit (``revert_all``) and then brings the relational mirror up to
date.

Single-commit revert:

    1. Refuse to run on a dirty work tree.
    2. Record the files the commit touched and read its change description.
    3. Apply the inverse of the commit to the work tree (not committed).
    4. Check every entity named by the change description for dangling or
       orphaned references.  A failed check, or an exception raised while
       checking, aborts the revert and leaves the work tree exactly as it was.
    5. Commit with an "undo" change description.
    6. Resynchronize the affected entity types and stamp affected posts.

Bulk revert follows the same shape without step 4: it restores a historical
state, and no reference check runs before it is committed.

Expected failures are reported as ``RevertStatus`` values.  Failures after
the commit (mirror synchronization, post stamping) are logged and re-raised;
the commit itself stands and the attempt is still recorded in the event
log with an ``error`` detail.

Usage::

    from vstore.reverter import Reverter, RevertStatus

    status = reverter.revert("abc1234")
    if status is RevertStatus.VIOLATED_REFERENTIAL_INTEGRITY:
        ...
"""

from __future__ import annotations

import logging
from enum import Enum

from vstore.change_info import RevertChangeInfo, build_change_info
from vstore.change_set import detect_entities_to_synchronize, get_affected_posts
from vstore.clock import SystemClock, format_timestamp
from vstore.reference_checker import ReferenceChecker

logger = logging.getLogger(__name__)


class RevertStatus(str, Enum):
    OK = "OK"
    NOT_CLEAN_WORKING_DIRECTORY = "NOT_CLEAN_WORKING_DIRECTORY"
    MERGE_CONFLICT = "MERGE_CONFLICT"
    VIOLATED_REFERENTIAL_INTEGRITY = "VIOLATED_REFERENTIAL_INTEGRITY"
    NOTHING_TO_COMMIT = "NOTHING_TO_COMMIT"


class Reverter:
    """Reverts commits in the versioned store without breaking references.

    Parameters
    ----------
    synchronization_process : SynchronizationProcess
        Pushes file-store state for given entity types into the mirror.
    database : MirrorDatabase
        Relational mirror client used to stamp post modification dates.
    committer : Committer
        Attaches the revert change description and commits.
    repository : GitRepository
        Version-control backend.
    schema_info : DbSchemaInfo
        Reference declarations per entity type.
    storage_factory : StorageFactory
        Entity storages.
    clock : Clock, optional
        Source of "now" for post stamps.  Defaults to ``SystemClock()``.
    reference_checker : ReferenceChecker, optional
        Defaults to a ``ReferenceChecker`` over *schema_info* and
        *storage_factory*.
    event_log : RevertEventLog, optional
        Receives one record per attempt.
    change_info_parser : callable, optional
        Turns a commit message into a change description.  Defaults to
        ``build_change_info``.
    """

    def __init__(
        self,
        synchronization_process,
        database,
        committer,
        repository,
        schema_info,
        storage_factory,
        clock=None,
        reference_checker: ReferenceChecker | None = None,
        event_log=None,
        change_info_parser=build_change_info,
    ):
        self.synchronization_process = synchronization_process
        self.database = database
        self.committer = committer
        self.repository = repository
        self.schema_info = schema_info
        self.storage_factory = storage_factory
        self.clock = clock or SystemClock()
        self.reference_checker = reference_checker or ReferenceChecker(schema_info, storage_factory)
        self.event_log = event_log
        self.change_info_parser = change_info_parser

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def revert(self, commit_hash: str) -> RevertStatus:
        """Undo the single commit *commit_hash*."""
        if not self.repository.is_clean_working_directory():
            return self._finish(RevertChangeInfo.ACTION_UNDO, commit_hash,
                                RevertStatus.NOT_CLEAN_WORKING_DIRECTORY)

        modified_files = self.repository.get_modified_files(f"{commit_hash}~1..{commit_hash}")
        reverted_commit = self.repository.get_commit(commit_hash)
        reverted_change_info = self.change_info_parser(reverted_commit.message)

        if not self.repository.revert(commit_hash):
            return self._finish(RevertChangeInfo.ACTION_UNDO, commit_hash,
                                RevertStatus.MERGE_CONFLICT)

        if not self._check_references(reverted_change_info):
            self.repository.abort_revert()
            return self._finish(RevertChangeInfo.ACTION_UNDO, commit_hash,
                                RevertStatus.VIOLATED_REFERENTIAL_INTEGRITY)

        change_info = RevertChangeInfo(action=RevertChangeInfo.ACTION_UNDO, commit_hash=commit_hash)
        new_commit = self._commit(change_info)
        self._after_commit(RevertChangeInfo.ACTION_UNDO, commit_hash, modified_files, new_commit)

        return self._finish(RevertChangeInfo.ACTION_UNDO, commit_hash, RevertStatus.OK,
                            modified_files=len(modified_files), new_commit=new_commit)

    def revert_all(self, commit_hash: str) -> RevertStatus:
        """Restore the store to the state of *commit_hash* with a new commit.

        No reference check is made before committing.
        """
        if not self.repository.is_clean_working_directory():
            return self._finish(RevertChangeInfo.ACTION_ROLLBACK, commit_hash,
                                RevertStatus.NOT_CLEAN_WORKING_DIRECTORY)

        modified_files = self.repository.get_modified_files(f"{commit_hash}..HEAD")

        self.repository.revert_all(commit_hash)

        if not self.repository.will_commit():
            return self._finish(RevertChangeInfo.ACTION_ROLLBACK, commit_hash,
                                RevertStatus.NOTHING_TO_COMMIT)

        change_info = RevertChangeInfo(action=RevertChangeInfo.ACTION_ROLLBACK, commit_hash=commit_hash)
        new_commit = self._commit(change_info)
        self._after_commit(RevertChangeInfo.ACTION_ROLLBACK, commit_hash, modified_files, new_commit)

        return self._finish(RevertChangeInfo.ACTION_ROLLBACK, commit_hash, RevertStatus.OK,
                            modified_files=len(modified_files), new_commit=new_commit)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _check_references(self, change_info) -> bool:
        # The inverse is applied but not committed; any failure must restore HEAD.
        try:
            return self.reference_checker.check_change_info(change_info)
        except Exception:
            logger.exception("Reference check failed; aborting the revert")
            self.repository.abort_revert()
            raise

    def _commit(self, change_info):
        self.committer.force_change_info(change_info)
        return self.committer.commit()

    def _after_commit(self, operation: str, commit_hash: str, modified_files: list[str], new_commit) -> None:
        entities_to_synchronize = detect_entities_to_synchronize(modified_files)
        try:
            self.synchronization_process.synchronize(entities_to_synchronize)
            self._update_change_date_for_posts(get_affected_posts(modified_files))
        except Exception as exc:
            logger.exception("Mirror update failed after the revert was committed")
            if self.event_log is not None:
                self.event_log.record(operation, commit_hash, RevertStatus.OK.value,
                                      modified_files=len(modified_files), new_commit=new_commit,
                                      error=str(exc))
            raise

    def _update_change_date_for_posts(self, vp_ids: list[str]) -> None:
        date = format_timestamp(self.clock.now_local())
        date_gmt = format_timestamp(self.clock.now_utc())
        for vp_id in vp_ids:
            self.database.update_post_modified(vp_id, date, date_gmt)

    def _finish(self, operation: str, commit_hash: str, status: RevertStatus, **details) -> RevertStatus:
        if status is RevertStatus.OK:
            logger.info("%s of %s committed", operation, commit_hash)
        else:
            logger.info("%s of %s stopped: %s", operation, commit_hash, status.value)
        if self.event_log is not None:
            self.event_log.record(operation, commit_hash, status.value, **details)
        return status
