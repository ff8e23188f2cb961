"""
Tests for vstore/change_info.py -- change descriptions in commit messages.

Covers:
    - parsing untracked, single and multi-action messages
    - VP-Parent scoping the preceding action
    - revert descriptors
    - malformed trailers
    - formatting messages that parse back to the same description
    - sub-changes dispatched on their kind field
"""

from vstore.change_info import (
    ChangeInfoEnvelope,
    EntityChangeInfo,
    RevertChangeInfo,
    UntrackedChangeInfo,
    build_change_info,
    format_change_info,
)


class TestBuildChangeInfo:

    def test_plain_message_is_untracked(self):
        info = build_change_info("Fix typo in about page")
        assert isinstance(info, UntrackedChangeInfo)
        assert info.kind == "untracked"
        assert info.get_change_info_list() == []

    def test_empty_message_is_untracked(self):
        assert build_change_info("").kind == "untracked"
        assert build_change_info(None).kind == "untracked"

    def test_single_action(self):
        info = build_change_info("Deleted comment\n\nVP-Action: comment/delete/c1\n")
        assert isinstance(info, ChangeInfoEnvelope)
        [change] = info.get_change_info_list()
        assert change == EntityChangeInfo(entity_name="comment", action="delete", entity_id="c1")

    def test_parent_applies_to_preceding_action(self):
        message = (
            "Edited post\n\n"
            "VP-Action: post/edit/p1\n"
            "VP-Action: postmeta/create/pm1\n"
            "VP-Parent: p1\n"
        )
        post, meta = build_change_info(message).get_change_info_list()
        assert post.parent_id is None
        assert meta.parent_id == "p1"

    def test_order_is_preserved(self):
        message = "x\n\nVP-Action: user/create/u1\nVP-Action: post/create/p1\nVP-Action: comment/create/c1"
        ids = [c.entity_id for c in build_change_info(message).get_change_info_list()]
        assert ids == ["u1", "p1", "c1"]

    def test_revert_descriptor(self):
        info = build_change_info("Reverted\n\nVP-Action: versionpress/undo/abc123")
        [change] = info.get_change_info_list()
        assert isinstance(change, RevertChangeInfo)
        assert change.action == RevertChangeInfo.ACTION_UNDO
        assert change.commit_hash == "abc123"
        assert info.entity_changes() == []

    def test_malformed_trailers_are_skipped(self):
        message = "x\n\nVP-Action: nonsense\nVP-Action: versionpress/explode/abc\nVP-Parent: p1"
        assert build_change_info(message).kind == "untracked"

    def test_entity_id_may_contain_slashes(self):
        [change] = build_change_info("VP-Action: option/edit/widget/sidebar").get_change_info_list()
        assert change.entity_id == "widget/sidebar"


class TestFormatChangeInfo:

    def test_entity_change_message(self):
        change = EntityChangeInfo(entity_name="postmeta", action="edit", entity_id="pm1", parent_id="p1")
        message = format_change_info(change)
        assert message.startswith("Edited postmeta 'pm1'\n\n")
        assert "VP-Action: postmeta/edit/pm1\nVP-Parent: p1" in message

    def test_revert_message_subjects(self):
        undo = RevertChangeInfo(action="undo", commit_hash="0123456789abcdef")
        rollback = RevertChangeInfo(action="rollback", commit_hash="0123456789abcdef")
        assert format_change_info(undo).startswith("Reverted change 0123456")
        assert format_change_info(rollback).startswith("Rolled back to 0123456")
        assert "VP-Action: versionpress/rollback/0123456789abcdef" in format_change_info(rollback)

    def test_envelope_subject_counts_extra_changes(self):
        envelope = ChangeInfoEnvelope(change_infos=[
            EntityChangeInfo(entity_name="post", action="create", entity_id="p1"),
            EntityChangeInfo(entity_name="postmeta", action="create", entity_id="pm1", parent_id="p1"),
        ])
        assert format_change_info(envelope).startswith("Created post 'p1' and 1 more")

    def test_custom_subject(self):
        change = EntityChangeInfo(entity_name="option", action="edit", entity_id="o1")
        assert format_change_info(change, subject="Settings").startswith("Settings\n\n")

    def test_formatted_message_parses_back(self):
        envelope = ChangeInfoEnvelope(change_infos=[
            EntityChangeInfo(entity_name="post", action="edit", entity_id="p1"),
            EntityChangeInfo(entity_name="postmeta", action="delete", entity_id="pm1", parent_id="p1"),
            RevertChangeInfo(action="undo", commit_hash="abc"),
        ])
        assert build_change_info(format_change_info(envelope)) == envelope

    def test_untracked_keeps_message(self):
        assert format_change_info(UntrackedChangeInfo(message="manual edit")) == "manual edit"


class TestTaggedUnion:

    def test_dispatches_on_kind(self):
        info = ChangeInfoEnvelope.model_validate({
            "change_infos": [
                {"kind": "entity", "entity_name": "post", "action": "edit", "entity_id": "p1"},
                {"kind": "revert", "action": "rollback", "commit_hash": "abc"},
            ],
        })
        entity, revert = info.change_infos
        assert isinstance(entity, EntityChangeInfo)
        assert isinstance(revert, RevertChangeInfo)

    def test_round_trips_through_json(self):
        envelope = ChangeInfoEnvelope(change_infos=[
            EntityChangeInfo(entity_name="comment", action="delete", entity_id="c1", parent_id="p1"),
        ])
        assert ChangeInfoEnvelope.model_validate_json(envelope.model_dump_json()) == envelope
