"""
Tests for the message tree engine.

Every edit must return a new tree and leave its input untouched.
"""

import copy
import unittest

from vibecast.models import FolderNode, MessageConfig, MessageNode
from vibecast.tree import (
    TreeEditError,
    adjust_path_for_removal,
    build_flat,
    collect_message_ids,
    find_node,
    flatten,
    insert_node,
    move_node,
    remove_node,
    replace_message,
    update_folder,
)


def msg(message_id):
    return MessageNode(id=message_id, message=MessageConfig(id=message_id, text=message_id.upper()))


def sample_tree():
    """f: [a, g: [b], c], d"""
    return [
        FolderNode(
            id="f",
            name="Folder",
            children=[msg("a"), FolderNode(id="g", name="Nested", children=[msg("b")]), msg("c")],
        ),
        msg("d"),
    ]


def ids(tree):
    return [m.id for m in flatten(tree)]


class TestFlatten(unittest.TestCase):
    """Tests for flatten/build_flat equivalence."""

    def test_flatten_of_build_flat_is_identity(self):
        messages = [MessageConfig(id=i, text=i) for i in ("x", "y", "z")]
        self.assertEqual(flatten(build_flat(messages)), messages)

    def test_flatten_keeps_depth_first_order(self):
        self.assertEqual(ids(sample_tree()), ["a", "b", "c", "d"])

    def test_empty(self):
        self.assertEqual(flatten([]), [])
        self.assertEqual(build_flat([]), [])


class TestCollectMessageIds(unittest.TestCase):
    """Tests for collect_message_ids."""

    def test_nested_messages_without_folder_ids(self):
        self.assertEqual(collect_message_ids("f", sample_tree()), ["a", "b", "c"])

    def test_nested_folder(self):
        self.assertEqual(collect_message_ids("g", sample_tree()), ["b"])

    def test_unknown_or_message_id_is_empty(self):
        self.assertEqual(collect_message_ids("zzz", sample_tree()), [])
        self.assertEqual(collect_message_ids("d", sample_tree()), [])


class TestStructuralEdits(unittest.TestCase):
    """Tests for insert/move/remove by stable id."""

    def setUp(self):
        self.tree = sample_tree()
        self.original = copy.deepcopy(self.tree)

    def tearDown(self):
        self.assertEqual(self.tree, self.original, "input tree was mutated")

    def test_insert_at_root_end(self):
        new = insert_node(self.tree, msg("e"))
        self.assertEqual(ids(new), ["a", "b", "c", "d", "e"])

    def test_insert_into_folder_at_index(self):
        new = insert_node(self.tree, msg("e"), parent_id="g", index=0)
        self.assertEqual(collect_message_ids("g", new), ["e", "b"])

    def test_insert_index_is_clamped(self):
        new = insert_node(self.tree, msg("e"), parent_id="f", index=99)
        self.assertEqual(collect_message_ids("f", new), ["a", "b", "c", "e"])

    def test_insert_duplicate_id_fails(self):
        with self.assertRaises(TreeEditError):
            insert_node(self.tree, msg("b"))

    def test_insert_into_unknown_parent_fails(self):
        with self.assertRaises(TreeEditError):
            insert_node(self.tree, msg("e"), parent_id="nope")

    def test_remove_returns_removed_subtree(self):
        new, removed = remove_node(self.tree, "g")
        self.assertEqual(removed.id, "g")
        self.assertEqual(ids(new), ["a", "c", "d"])
        self.assertIsNone(find_node(new, "b"))

    def test_remove_unknown_fails(self):
        with self.assertRaises(TreeEditError):
            remove_node(self.tree, "nope")

    def test_move_between_folders(self):
        new = move_node(self.tree, "d", new_parent_id="g", index=1)
        self.assertEqual(collect_message_ids("g", new), ["b", "d"])
        self.assertEqual(ids(new), ["a", "b", "d", "c"])

    def test_move_to_root_front(self):
        new = move_node(self.tree, "c", new_parent_id=None, index=0)
        self.assertEqual(ids(new), ["c", "a", "b", "d"])

    def test_move_folder_into_itself_fails(self):
        with self.assertRaises(TreeEditError):
            move_node(self.tree, "f", new_parent_id="g")

    def test_untouched_subtrees_are_shared(self):
        new = insert_node(self.tree, msg("e"), parent_id="g")
        self.assertIs(new[1], self.tree[1])

    def test_replace_message(self):
        updated = MessageConfig(id="b", text="changed")
        new = replace_message(self.tree, updated)
        self.assertEqual(find_node(new, "b").message.text, "changed")

    def test_replace_unknown_message_fails(self):
        with self.assertRaises(TreeEditError):
            replace_message(self.tree, MessageConfig(id="zzz", text=""))

    def test_rename_and_collapse_folder(self):
        new = update_folder(self.tree, "g", name="Renamed", collapsed=True)
        folder = find_node(new, "g")
        self.assertEqual(folder.name, "Renamed")
        self.assertTrue(folder.collapsed)
        self.assertEqual(find_node(new, "f").name, "Folder")

    def test_update_folder_on_message_fails(self):
        with self.assertRaises(TreeEditError):
            update_folder(self.tree, "a", name="x")


class TestAdjustPathForRemoval(unittest.TestCase):
    """Tests for transient index path adjustment."""

    def test_later_sibling_shifts_down(self):
        self.assertEqual(adjust_path_for_removal("0.3", "0.1"), "0.2")

    def test_descendant_of_later_sibling_shifts(self):
        self.assertEqual(adjust_path_for_removal("0.5.2", "0.3"), "0.4.2")
        self.assertEqual(adjust_path_for_removal("1.0", "0"), "0.0")

    def test_earlier_sibling_is_unchanged(self):
        self.assertEqual(adjust_path_for_removal("0", "1"), "0")

    def test_other_branch_is_unchanged(self):
        self.assertEqual(adjust_path_for_removal("2.1", "1.0"), "2.1")

    def test_shallower_target_is_unchanged(self):
        self.assertEqual(adjust_path_for_removal("1", "0.1"), "1")

    def test_empty_paths(self):
        self.assertEqual(adjust_path_for_removal("", "0"), "")
        self.assertEqual(adjust_path_for_removal("0.1", ""), "0.1")


if __name__ == "__main__":
    unittest.main()
