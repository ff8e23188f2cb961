"""
vstore/change_info.py -- Structured change descriptions carried in commit messages.

Every commit written by the store ends with trailer lines describing which
entities it touched::

    Deleted comment 'c0ffee01'

    VP-Action: comment/delete/c0ffee01
    VP-Action: postmeta/edit/9f3a0b12
    VP-Parent: abcd1234

``VP-Parent`` scopes the action directly above it.  Commits created by the
reverter use the pseudo entity ``versionpress``::

    VP-Action: versionpress/undo/<hash>
    VP-Action: versionpress/rollback/<hash>

A message without any ``VP-Action`` trailer is *untracked*: the store knows
nothing about what it changed.

The parsed form is a closed tagged union on the ``kind`` field:

    UntrackedChangeInfo   kind="untracked"
    ChangeInfoEnvelope    kind="envelope", holding EntityChangeInfo
                          (kind="entity") and RevertChangeInfo (kind="revert")
"""

from __future__ import annotations

import logging
import re
from typing import Annotated, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ACTION_TRAILER = "VP-Action"
PARENT_TRAILER = "VP-Parent"
REVERT_ENTITY = "versionpress"

_TRAILER_RE = re.compile(r"^(?P<key>VP-[A-Za-z-]+):\s*(?P<value>\S.*?)\s*$")


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class EntityChangeInfo(BaseModel):
    """One entity created, edited or deleted by a commit."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["entity"] = "entity"
    entity_name: str
    action: str
    entity_id: str
    parent_id: Optional[str] = None

    def describe(self) -> str:
        past = {"create": "Created", "edit": "Edited", "delete": "Deleted"}
        verb = past.get(self.action, self.action.capitalize())
        return f"{verb} {self.entity_name} '{self.entity_id}'"

    def trailers(self) -> list[str]:
        lines = [f"{ACTION_TRAILER}: {self.entity_name}/{self.action}/{self.entity_id}"]
        if self.parent_id:
            lines.append(f"{PARENT_TRAILER}: {self.parent_id}")
        return lines


class RevertChangeInfo(BaseModel):
    """A commit produced by undoing one commit or rolling back to one."""

    model_config = ConfigDict(frozen=True)

    ACTION_UNDO: ClassVar[str] = "undo"
    ACTION_ROLLBACK: ClassVar[str] = "rollback"

    kind: Literal["revert"] = "revert"
    action: Literal["undo", "rollback"]
    commit_hash: str

    def describe(self) -> str:
        if self.action == self.ACTION_UNDO:
            return f"Reverted change {self.commit_hash[:7]}"
        return f"Rolled back to {self.commit_hash[:7]}"

    def trailers(self) -> list[str]:
        return [f"{ACTION_TRAILER}: {REVERT_ENTITY}/{self.action}/{self.commit_hash}"]


SubChangeInfo = Annotated[
    Union[EntityChangeInfo, RevertChangeInfo], Field(discriminator="kind")
]


class ChangeInfoEnvelope(BaseModel):
    """Ordered list of sub-changes described by one commit."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["envelope"] = "envelope"
    change_infos: list[SubChangeInfo]

    def get_change_info_list(self) -> list:
        return list(self.change_infos)

    def entity_changes(self) -> list[EntityChangeInfo]:
        return [info for info in self.change_infos if info.kind == "entity"]


class UntrackedChangeInfo(BaseModel):
    """A commit with no structured description."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["untracked"] = "untracked"
    message: str = ""

    def get_change_info_list(self) -> list:
        return []

    def entity_changes(self) -> list[EntityChangeInfo]:
        return []


# ---------------------------------------------------------------------------
# Parsing and formatting
# ---------------------------------------------------------------------------

def build_change_info(commit_message: str) -> UntrackedChangeInfo | ChangeInfoEnvelope:
    """Parse a commit message into its change description.

    Malformed ``VP-Action`` trailers are logged and skipped.  A ``VP-Parent``
    trailer that does not follow an entity action is ignored.
    """
    sub_changes: list[dict] = []

    for line in (commit_message or "").splitlines():
        match = _TRAILER_RE.match(line.strip())
        if not match:
            continue
        key, value = match.group("key"), match.group("value")

        if key == ACTION_TRAILER:
            parts = value.split("/", 2)
            if len(parts) != 3 or not all(parts):
                logger.warning("Ignoring malformed %s trailer: %r", ACTION_TRAILER, value)
                continue
            entity_name, action, entity_id = parts
            if entity_name == REVERT_ENTITY:
                if action not in (RevertChangeInfo.ACTION_UNDO, RevertChangeInfo.ACTION_ROLLBACK):
                    logger.warning("Ignoring unknown revert action %r", action)
                    continue
                sub_changes.append({"kind": "revert", "action": action, "commit_hash": entity_id})
            else:
                sub_changes.append({
                    "kind": "entity",
                    "entity_name": entity_name,
                    "action": action,
                    "entity_id": entity_id,
                })
        elif key == PARENT_TRAILER:
            if sub_changes and sub_changes[-1]["kind"] == "entity":
                sub_changes[-1]["parent_id"] = value

    if not sub_changes:
        return UntrackedChangeInfo(message=commit_message or "")
    return ChangeInfoEnvelope.model_validate({"change_infos": sub_changes})


def format_change_info(change_info, subject: str | None = None) -> str:
    """Render a commit message carrying *change_info*.

    *change_info* may be a single sub-change or an envelope.  The subject
    line defaults to a description of the first sub-change.
    """
    if change_info.kind == "untracked":
        return subject or change_info.message or "Untracked change"

    if change_info.kind == "envelope":
        sub_changes = change_info.get_change_info_list()
    else:
        sub_changes = [change_info]

    if subject is None:
        if not sub_changes:
            subject = "Untracked change"
        elif len(sub_changes) == 1:
            subject = sub_changes[0].describe()
        else:
            subject = f"{sub_changes[0].describe()} and {len(sub_changes) - 1} more"

    trailers: list[str] = []
    for sub_change in sub_changes:
        trailers.extend(sub_change.trailers())

    if not trailers:
        return subject
    return subject + "\n\n" + "\n".join(trailers) + "\n"
