"""
vstore/git_repository.py -- Version-control backend for the entity store.

Wraps the ``git`` executable for the operations the reverter needs.  The
store root is the work tree; all commands run with ``cwd`` set to it.

Timeouts scale with the kind of operation: read-only queries (status, diff,
show) are "fast", history rewrites (revert, reset) are "slow", everything
else gets the base timeout.

Usage::

    from vstore.git_repository import GitRepository

    repo = GitRepository("/srv/site")
    repo.is_clean_working_directory()
    repo.get_modified_files("abc123~1..abc123")
    if repo.revert("abc123"):
        ...
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from vstore.config import GitSettings
from vstore.errors import GitCommandError

logger = logging.getLogger(__name__)

_FAST_COMMANDS = frozenset({"status", "rev-parse", "show", "diff", "log", "cat-file"})
_SLOW_COMMANDS = frozenset({"revert", "reset", "init", "clean", "checkout"})


@dataclass(frozen=True)
class Commit:
    """A commit as far as the reverter cares: its hash and message."""

    hash: str
    message: str


def check_git_available() -> bool:
    """Return True if a ``git`` executable is on PATH."""
    return shutil.which("git") is not None


class GitRepository:
    """Version-control backend over a git work tree.

    Parameters
    ----------
    root : str or pathlib.Path
        The work tree (store root).
    settings : GitSettings, optional
        Timeout configuration.  Defaults to ``GitSettings()``.
    """

    def __init__(self, root, settings: GitSettings | None = None):
        self.root = Path(root).resolve()
        self.settings = settings or GitSettings()

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def _timeout_for(self, args: list[str]) -> float:
        command = args[0] if args else ""
        timeout_ms = self.settings.base_timeout_ms
        if command in _FAST_COMMANDS:
            timeout_ms *= self.settings.fast_scale
        elif command in _SLOW_COMMANDS:
            timeout_ms *= self.settings.slow_scale
        return min(timeout_ms, self.settings.max_timeout_ms) / 1000.0

    def run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run ``git <args>`` in the work tree.

        Raises
        ------
        GitCommandError
            If the command times out, or exits non-zero while *check* is set.
        """
        logger.debug("git %s", " ".join(args))
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=str(self.root),
                capture_output=True,
                text=True,
                timeout=self._timeout_for(args),
            )
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(args, None, str(exc)) from exc

        if check and result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr)
        return result

    # ------------------------------------------------------------------
    # Repository setup
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        result = self.run(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def init(self, user_name: str = "vstore", user_email: str = "vstore@localhost") -> None:
        """Initialize a repository in the work tree with a local identity.

        Idempotent: an existing repository only gets the identity settings
        it is missing.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        if not (self.root / ".git").exists():
            self.run(["init"])
            logger.info("Initialized git repository in %s", self.root)
        if not self.run(["config", "user.name"], check=False).stdout.strip():
            self.run(["config", "user.name", user_name])
        if not self.run(["config", "user.email"], check=False).stdout.strip():
            self.run(["config", "user.email", user_email])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_clean_working_directory(self) -> bool:
        result = self.run(["status", "--porcelain"])
        return result.stdout.strip() == ""

    def get_modified_files(self, rev_range: str) -> list[str]:
        """Return the paths changed in *rev_range* (e.g. ``"a~1..a"``)."""
        result = self.run(["diff", "--name-only", rev_range])
        return [line for line in result.stdout.splitlines() if line.strip()]

    def get_commit(self, commit_hash: str) -> Commit:
        full_hash = self.run(["rev-parse", "--verify", f"{commit_hash}^{{commit}}"]).stdout.strip()
        message = self.run(["log", "-1", "--format=%B", full_hash]).stdout
        return Commit(hash=full_hash, message=message.rstrip("\n"))

    def get_head(self) -> str:
        return self.run(["rev-parse", "HEAD"]).stdout.strip()

    def will_commit(self) -> bool:
        """True iff the work tree or index differs from ``HEAD``."""
        return not self.is_clean_working_directory()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def revert(self, commit_hash: str) -> bool:
        """Apply the inverse of *commit_hash* to the work tree without committing.

        Returns ``False`` on a conflict, after restoring the work tree to
        ``HEAD``.
        """
        result = self.run(["revert", "--no-commit", commit_hash], check=False)
        if result.returncode == 0:
            return True

        logger.info("Revert of %s did not apply cleanly: %s", commit_hash, result.stderr.strip())
        self.abort_revert()
        return False

    def abort_revert(self) -> None:
        """Discard a speculative revert and restore the work tree to ``HEAD``."""
        self.run(["revert", "--abort"], check=False)
        self.run(["reset", "--hard", "HEAD"])
        self.run(["clean", "-fd"])

    def revert_all(self, commit_hash: str) -> None:
        """Stage the state of *commit_hash* on top of the current ``HEAD``.

        History is kept: the work tree and index end up equal to
        *commit_hash* while ``HEAD`` stays where it was.
        """
        self.run(["reset", "--hard", commit_hash])
        self.run(["reset", "--soft", "ORIG_HEAD"])

    def commit(self, message: str) -> str:
        """Stage everything and commit.  Returns the new commit hash."""
        self.run(["add", "-A"])
        self.run(["commit", "-m", message])
        commit_hash = self.get_head()
        logger.info("Committed %s", commit_hash[:7])
        return commit_hash
