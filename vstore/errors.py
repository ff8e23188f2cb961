"""
vstore/errors.py -- Exception types for unexpected store failures.

Expected revert outcomes are reported as ``RevertStatus`` values and never
raise.  These exceptions cover everything else: a git command that fails,
an entity that is not where the caller said it is, an entity file that
cannot be parsed, a schema lookup for a type nobody declared, or a broken
configuration file.

The classes also derive from the built-in type a caller would naturally
catch (``FileNotFoundError``, ``ValueError``).
"""


class StoreError(RuntimeError):
    """Base class for all versioned-store errors."""


class GitCommandError(StoreError):
    """A git subprocess exited with a non-zero status or timed out."""

    def __init__(self, args: list[str], returncode: int | None, stderr: str = ""):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        command = " ".join(self.command)
        if returncode is None:
            message = f"'git {command}' timed out"
        else:
            message = f"'git {command}' failed with exit code {returncode}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


class EntityNotFoundError(StoreError, FileNotFoundError):
    """The requested entity does not exist in its storage."""

    def __init__(self, entity_type: str, entity_id: str, parent_id: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.parent_id = parent_id
        scope = f" (parent '{parent_id}')" if parent_id else ""
        super().__init__(f"No {entity_type} with id '{entity_id}'{scope} exists in the store")


class UnknownEntityTypeError(StoreError, ValueError):
    """The entity type is not declared in the schema or has no storage."""

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type '{entity_type}'")


class ConfigError(StoreError, ValueError):
    """A configuration or schema document could not be used."""


class EntityFileError(StoreError):
    """An entity file exists but cannot be read or parsed."""

    def __init__(self, path, reason: str = ""):
        self.path = str(path)
        message = f"Cannot read entity file {self.path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
