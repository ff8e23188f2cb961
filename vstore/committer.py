"""
vstore/committer.py -- Attaches a change description to the next commit.

The reverter does not write commit messages itself: it forces a change
description onto the committer and asks it to commit.  The committer renders
the description as ``VP-Action`` trailers (see ``vstore.change_info``) so
the resulting commit can be parsed, and reverted, like any other.
"""

import logging

from vstore.change_info import format_change_info

logger = logging.getLogger(__name__)


class Committer:
    """Commits pending work-tree changes with a forced change description.

    Parameters
    ----------
    repository : GitRepository
        The backend that performs the actual commit.
    """

    def __init__(self, repository):
        self.repository = repository
        self._forced_change_info = None

    def force_change_info(self, change_info) -> None:
        """Use *change_info* to describe the next commit."""
        self._forced_change_info = change_info

    def commit(self) -> str:
        """Commit everything pending.  Returns the new commit hash.

        Raises
        ------
        RuntimeError
            If no change description was forced beforehand.
        """
        if self._forced_change_info is None:
            raise RuntimeError("No change description was attached to this commit")

        change_info = self._forced_change_info
        self._forced_change_info = None
        message = format_change_info(change_info)
        logger.debug("Committing with message %r", message)
        return self.repository.commit(message)
