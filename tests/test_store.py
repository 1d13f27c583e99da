"""
Tests for the canonical Store.

The Store is exercised without any transport: a recorder stands in for the
emitter so every synced intent can be asserted on.
"""

import itertools
import unittest

from vibecast.models import (
    MAX_ACTIVE_MESSAGES,
    MAX_STATS_HISTORY,
    AppConfiguration,
    FolderNode,
    FolderPlaybackQueue,
    MessageConfig,
    MessageNode,
    StateSnapshot,
    default_configuration,
    flatten_message_tree,
)
from vibecast.playback import PlaybackState
from vibecast.store import AUDIO_BINS, Store
from vibecast.tree import collect_message_ids


def msg(message_id):
    return MessageNode(id=message_id, message=MessageConfig(id=message_id, text=message_id.upper()))


def fixture_config():
    """f: [a, g: [b], c], d"""
    tree = [
        FolderNode(
            id="f",
            name="Folder",
            children=[msg("a"), FolderNode(id="g", name="Nested", children=[msg("b")]), msg("c")],
        ),
        msg("d"),
    ]
    return AppConfiguration(messages=flatten_message_tree(tree), message_tree=tree)


class StoreTestCase(unittest.TestCase):
    authoritative = False

    def setUp(self):
        self.emitted = []
        self.store = Store(
            fixture_config(),
            emit=lambda tag, payload: self.emitted.append((tag, payload)),
            clock=itertools.count(1000).__next__,
            authoritative=self.authoritative,
            name="test",
        )

    def tags(self):
        return [tag for tag, _ in self.emitted]

    def message(self, message_id):
        return next(m for m in self.store.config.messages if m.id == message_id)

    def active_ids(self):
        return [a.message.id for a in self.store.active_messages]

    def complete_current(self, sync=True):
        """Finish whatever is on screen, the way a display timer would."""
        return self.store.clear_message(self.store.active_messages[-1].timestamp, sync=sync)


class TestTriggering(StoreTestCase):
    """Tests for trigger/clear and statistics."""

    def test_trigger_records_stats_and_emits(self):
        ts = self.store.trigger_message(self.message("a"))

        self.assertEqual(self.active_ids(), ["a"])
        stats = self.store.config.message_stats["a"]
        self.assertEqual(stats.trigger_count, 1)
        self.assertEqual(stats.last_triggered, ts)
        self.assertEqual(self.tags(), ["TRIGGER_MESSAGE"])
        self.assertEqual(self.emitted[0][1]["id"], "a")

    def test_stats_history_is_capped(self):
        for _ in range(60):
            self.store.trigger_message(self.message("a"), sync=False)
        stats = self.store.config.message_stats["a"]
        self.assertEqual(stats.trigger_count, 60)
        self.assertEqual(len(stats.history), MAX_STATS_HISTORY)
        self.assertEqual(self.emitted, [])

    def test_active_messages_are_capped(self):
        for message_id in ("a", "b", "c", "d", "a", "b", "c"):
            self.store.trigger_message(self.message(message_id), sync=False)
        self.assertEqual(len(self.store.active_messages), MAX_ACTIVE_MESSAGES)
        self.assertEqual(self.store.state.active_message.id, "c")

    def test_timestamps_strictly_increase(self):
        store = Store(fixture_config(), clock=lambda: 5)
        first = store.trigger_message(self.message("a"))
        second = store.trigger_message(self.message("a"))
        self.assertEqual((first, second), (5, 6))

    def test_clear_unknown_timestamp_is_a_no_op(self):
        self.store.trigger_message(self.message("a"), sync=False)
        self.assertFalse(self.store.clear_message(424242))
        self.assertEqual(self.active_ids(), ["a"])
        self.assertEqual(self.emitted, [])

    def test_clear_falls_back_to_message_id(self):
        """Other surfaces stamp the same message with their own timestamp."""
        self.store.trigger_message(self.message("a"), sync=False)
        self.assertTrue(self.store.clear_message(999, message_id="a"))
        self.assertEqual(self.active_ids(), [])
        self.assertEqual(self.emitted, [("CLEAR_MESSAGE", {"timestamp": 999, "messageId": "a"})])

    def test_clear_active_message_removes_all_entries_of_foreign_timestamp(self):
        self.store.trigger_message(self.message("a"), sync=False)
        self.store.trigger_message(self.message("b"), sync=False)
        self.store.trigger_message(self.message("a"), sync=False)

        self.assertTrue(self.store.clear_active_message("a", 1))
        self.assertEqual(self.active_ids(), ["b"])
        self.assertEqual(self.emitted, [("CLEAR_ACTIVE_MESSAGE", {"messageId": "a", "timestamp": 1})])

    def test_clear_active_message_exact_match(self):
        first = self.store.trigger_message(self.message("a"), sync=False)
        self.store.trigger_message(self.message("a"), sync=False)
        self.store.clear_active_message("a", first)
        self.assertEqual(self.active_ids(), ["a"])

    def test_clear_inactive_message_is_a_no_op(self):
        self.assertFalse(self.store.clear_active_message("a", 1))
        self.assertEqual(self.emitted, [])

    def test_reset_stats(self):
        self.store.trigger_message(self.message("a"), sync=False)
        self.store.reset_message_stats()
        self.assertEqual(self.store.config.message_stats, {})
        self.assertEqual(self.tags(), ["RESET_MESSAGE_STATS"])


class TestFolderPlayback(StoreTestCase):
    """Tests for the folder playback queue inside the Store."""

    def test_play_folder_triggers_first_message_locally(self):
        self.assertTrue(self.store.play_folder("f"))

        queue = self.store.folder_playback_queue
        self.assertEqual(queue.message_ids, ["a", "b", "c"])
        self.assertEqual(queue.current_index, 0)
        self.assertEqual(self.active_ids(), ["a"])
        self.assertEqual(self.store.state.playback_state, PlaybackState.PLAYING)
        self.assertEqual(
            self.emitted,
            [("PLAY_FOLDER", {"folderId": "f", "messageIds": ["a", "b", "c"]})],
        )

    def test_completion_advances_until_done(self):
        self.store.play_folder("f", sync=False)
        seen = [self.active_ids()]
        while self.store.folder_playback_queue is not None:
            self.assertTrue(self.complete_current())
            seen.append(self.active_ids())

        self.assertEqual(seen, [["a"], ["b"], ["c"], []])
        self.assertEqual(self.store.config.message_stats["c"].trigger_count, 1)
        self.assertNotIn("TRIGGER_MESSAGE", self.tags())

    def test_cancel_is_idempotent(self):
        self.store.play_folder("f", sync=False)
        self.assertTrue(self.store.cancel_folder_playback())
        self.assertIsNone(self.store.folder_playback_queue)
        self.assertEqual(self.active_ids(), [])

        self.assertFalse(self.store.cancel_folder_playback())
        self.assertEqual(self.tags(), ["CANCEL_FOLDER_PLAYBACK"])

    def test_user_stop_advances_like_completion(self):
        self.store.play_folder("f", sync=False)
        self.store.clear_active_message("a", 1)
        self.assertEqual(self.store.folder_playback_queue.current_message_id, "b")
        self.assertEqual(self.active_ids(), ["b"])

    def test_stop_of_undisplayed_current_entry_still_advances(self):
        queue = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b", "c"], current_index=0)
        self.store.load_snapshot(StateSnapshot(config=self.store.get_configuration(), folder_playback_queue=queue))
        self.assertEqual(self.active_ids(), [])

        self.assertTrue(self.store.clear_active_message("a", 1))
        self.assertEqual(self.store.folder_playback_queue.current_index, 1)
        self.assertEqual(self.active_ids(), ["b"])

    def test_deleted_entry_terminates_playback(self):
        self.store.play_folder("f", sync=False)
        self.store.remove_node("b", sync=False)

        self.complete_current()

        self.assertIsNone(self.store.folder_playback_queue)
        self.assertEqual(self.active_ids(), [])

    def test_play_replaces_running_queue(self):
        self.store.play_folder("f", sync=False)
        self.store.trigger_message(self.message("d"), sync=False)

        self.assertTrue(self.store.play_folder("g", sync=False))

        self.assertEqual(self.store.folder_playback_queue.folder_id, "g")
        # the cancelled entry goes, unrelated messages stay
        self.assertEqual(self.active_ids(), ["d", "b"])

    def test_empty_folder_leaves_queue_alone(self):
        folder = self.store.add_folder("Empty", sync=False)
        self.store.play_folder("f", sync=False)

        self.assertFalse(self.store.play_folder(folder.id))
        self.assertFalse(self.store.play_folder("d"))
        self.assertEqual(self.store.folder_playback_queue.folder_id, "f")
        self.assertNotIn("PLAY_FOLDER", self.tags())

    def test_queue_entry_is_active_only_while_on_screen(self):
        self.store.play_folder("f", sync=False)
        self.assertTrue(self.store.is_active_queue_entry("a"))
        self.assertFalse(self.store.is_active_queue_entry("b"))
        self.complete_current()
        self.assertTrue(self.store.is_active_queue_entry("b"))


class TestAuthoritativeStore(StoreTestCase):
    """The backend's store announces queue-driven triggers."""

    authoritative = True

    def test_queue_triggers_are_announced(self):
        self.store.play_folder("f", sync=False)
        self.assertEqual(self.tags(), ["TRIGGER_MESSAGE"])
        self.assertEqual(self.emitted[0][1]["id"], "a")

        # a received message-complete, as the backend applies it
        self.complete_current(sync=False)
        self.assertEqual(self.tags(), ["TRIGGER_MESSAGE", "TRIGGER_MESSAGE"])
        self.assertEqual(self.emitted[1][1]["id"], "b")

    def test_synced_completion_is_announced_too(self):
        self.store.play_folder("f", sync=False)
        self.complete_current()
        self.assertEqual(self.tags(), ["TRIGGER_MESSAGE", "TRIGGER_MESSAGE", "CLEAR_MESSAGE"])

    def test_no_self_healing_echo(self):
        messy = fixture_config()
        messy.active_visualization = "lava-lamp"
        self.store.load_configuration(messy, sync=False)
        self.assertEqual(self.emitted, [])


class TestConfigurationSync(StoreTestCase):
    """Tests for loading, snapshots and the self-healing echo."""

    def test_round_trip_is_lossless(self):
        received = AppConfiguration.from_dict(self.store.get_configuration().to_dict())
        other = Store(emit=lambda tag, payload: self.emitted.append((tag, payload)))

        other.load_configuration(received, sync=False)

        self.assertEqual(other.config, self.store.config)
        self.assertEqual(self.emitted, [])

    def test_normalized_changes_are_sent_back_once(self):
        def messy():
            config = fixture_config()
            config.active_visualization = "lava-lamp"
            return config

        self.store.load_configuration(messy(), sync=False)
        self.store.load_configuration(messy(), sync=False)

        self.assertEqual(self.tags(), ["LOAD_CONFIGURATION"])
        self.assertEqual(self.emitted[0][1]["activeVisualization"], "fireplace")

    def test_local_load_is_synced(self):
        self.store.reset_to_defaults()
        self.assertEqual(self.tags(), ["LOAD_CONFIGURATION"])
        self.assertEqual(self.store.config.message_tree[0].id, "party-countdown")

    def test_get_configuration_is_a_copy(self):
        copy = self.store.get_configuration()
        copy.messages.clear()
        self.assertEqual(len(self.store.config.messages), 4)

    def test_snapshot_carries_runtime_fields(self):
        self.store.play_folder("f", sync=False)
        snapshot = self.store.snapshot()
        self.assertEqual(snapshot.triggered_message.id, "a")
        self.assertEqual(snapshot.folder_playback_queue.folder_id, "f")

    def test_load_snapshot_adopts_queue(self):
        queue = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b", "c"], current_index=2)
        self.store.load_snapshot(StateSnapshot(config=default_configuration(), folder_playback_queue=queue))
        self.assertEqual(self.store.folder_playback_queue, queue)

        self.store.load_snapshot(StateSnapshot(config=default_configuration()))
        self.assertIsNone(self.store.folder_playback_queue)

    def test_snapshot_behind_local_queue_is_not_adopted(self):
        self.store.play_folder("f", sync=False)
        stale = self.store.snapshot()
        self.complete_current(sync=False)

        self.store.load_snapshot(stale)
        self.assertEqual(self.store.folder_playback_queue.current_index, 1)
        self.assertEqual(self.active_ids(), ["b"])

        ahead = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b", "c"], current_index=2)
        self.store.load_snapshot(StateSnapshot(config=self.store.get_configuration(), folder_playback_queue=ahead))
        self.assertEqual(self.store.folder_playback_queue.current_index, 2)


class TestPresets(StoreTestCase):
    """Tests for visualization and text style preset actions."""

    def setUp(self):
        super().setUp()
        self.store.load_configuration(default_configuration(), sync=False)
        self.emitted.clear()

    def test_common_settings_are_clamped(self):
        common = self.store.set_common_settings({"intensity": 2})
        self.assertEqual(common.intensity, 1.0)
        self.assertEqual(self.emitted, [("SET_COMMON_SETTINGS", {"intensity": 1.0, "dim": 1.0})])

    def test_unknown_visualization_is_rejected(self):
        self.assertFalse(self.store.set_active_visualization("lava-lamp"))
        self.assertTrue(self.store.set_mode("waves"))
        self.assertEqual(self.store.config.active_visualization, "waves")

    def test_active_preset_switches_visualization(self):
        self.assertTrue(self.store.set_active_visualization_preset("particles-calm"))
        self.assertEqual(self.store.config.active_visualization, "particles")
        self.assertEqual(self.emitted, [("SET_ACTIVE_VISUALIZATION_PRESET", "particles-calm")])

    def test_deleting_active_preset_clears_pointer(self):
        self.assertTrue(self.store.delete_visualization_preset("fireplace-blue-glow"))
        self.assertIsNone(self.store.config.active_visualization_preset)
        self.assertEqual(
            self.tags(),
            ["SET_VISUALIZATION_PRESETS", "SET_ACTIVE_VISUALIZATION_PRESET"],
        )
        self.assertIsNone(self.emitted[1][1])

    def test_default_presets_cannot_be_deleted(self):
        self.assertFalse(self.store.delete_visualization_preset("default-fireplace"))
        self.assertFalse(self.store.delete_text_style_preset("default-fade"))
        ids = [p.id for p in self.store.config.text_style_presets]
        self.assertIn("default-fade", ids)
        self.assertEqual(self.emitted, [])

    def test_duplicate_preset_is_rejected(self):
        preset = self.store.config.visualization_presets[0]
        self.assertFalse(self.store.add_visualization_preset(preset))

    def test_update_visualization_preset(self):
        self.assertTrue(self.store.update_visualization_preset("techno-bars", {"name": "Bars", "bogus": 1}))
        preset = next(p for p in self.store.config.visualization_presets if p.id == "techno-bars")
        self.assertEqual(preset.name, "Bars")

    def test_deleting_text_preset_rebinds_messages(self):
        self.assertTrue(self.store.delete_text_style_preset("scrolling-capitals-centered"))
        self.assertEqual(self.message("msg-3").text_style_preset, "default-scrolling-capitals")
        self.assertEqual(self.tags(), ["SET_TEXT_STYLE_PRESETS", "SET_MESSAGE_TREE"])

    def test_text_preset_style_change_moves_bound_messages(self):
        self.store.update_text_style_preset("scrolling-capitals-centered", {"text_style_id": "fade"})
        self.assertEqual(self.message("msg-3").text_style, "fade")
        self.assertEqual(self.message("msg-3").text_style_preset, "scrolling-capitals-centered")

    def test_active_text_preset_sets_default_style(self):
        self.assertTrue(self.store.set_active_text_style_preset("default-bounce"))
        self.assertEqual(self.store.config.default_text_style, "bounce")
        self.assertFalse(self.store.set_active_text_style_preset("missing"))


class TestMessageEdits(StoreTestCase):
    """Tests for message and tree actions."""

    def test_add_message_into_folder(self):
        message = self.store.add_message("Hello", parent_id="g")

        self.assertEqual(message.text_style, "scrolling-capitals")
        self.assertEqual(message.text_style_preset, "default-scrolling-capitals")
        self.assertEqual(collect_message_ids("g", self.store.config.message_tree), ["b", message.id])
        self.assertEqual(self.tags(), ["SET_MESSAGE_TREE"])

    def test_add_message_to_unknown_parent(self):
        self.assertIsNone(self.store.add_message("Hello", parent_id="missing"))
        self.assertEqual(self.emitted, [])

    def test_style_change_unbinds_preset(self):
        self.assertTrue(self.store.update_message("a", {"text_style": "fade"}))
        self.assertEqual(self.message("a").text_style, "fade")
        self.assertEqual(self.message("a").text_style_preset, "default-fade")

    def test_update_unknown_message(self):
        self.assertFalse(self.store.update_message("zzz", {"text": "x"}))

    def test_move_reorders_messages(self):
        self.assertTrue(self.store.move_node("d", "g"))
        self.assertEqual([m.id for m in self.store.config.messages], ["a", "b", "d", "c"])

    def test_move_into_descendant_is_rejected(self):
        self.assertFalse(self.store.move_node("f", "g"))
        self.assertEqual(self.emitted, [])

    def test_folder_edits(self):
        self.assertTrue(self.store.rename_folder("g", "Renamed"))
        self.assertTrue(self.store.set_folder_collapsed("g", True))
        folder = self.store.config.message_tree[0].children[1]
        self.assertEqual((folder.name, folder.collapsed), ("Renamed", True))
        self.assertFalse(self.store.rename_folder("a", "x"))

    def test_set_messages_keeps_folders_when_order_is_unchanged(self):
        messages = [MessageConfig(id=m.id, text="new " + m.id) for m in self.store.config.messages]
        self.store.set_messages(messages)

        self.assertIsInstance(self.store.config.message_tree[0], FolderNode)
        self.assertEqual(self.message("b").text, "new b")
        self.assertEqual(self.tags(), ["SET_MESSAGES"])

    def test_set_messages_reordered_builds_flat_tree(self):
        messages = list(reversed(self.store.config.messages))
        self.store.set_messages(messages)
        self.assertTrue(all(isinstance(n, MessageNode) for n in self.store.config.message_tree))
        self.assertEqual([m.id for m in self.store.config.messages], ["d", "c", "b", "a"])

    def test_remove_message(self):
        self.assertTrue(self.store.remove_message("c"))
        self.assertFalse(self.store.remove_message("c"))
        self.assertEqual([m.id for m in self.store.config.messages], ["a", "b", "d"])


class TestPlumbing(StoreTestCase):
    """Tests for subscriptions and local-only data."""

    def test_failing_listener_does_not_block_others(self):
        seen = []

        def broken(state):
            raise RuntimeError("boom")

        self.store.subscribe(broken)
        self.store.subscribe(seen.append)

        with self.assertLogs("vibecast.store", level="ERROR"):
            self.store.trigger_message(self.message("a"), sync=False)

        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].active_message.id, "a")

    def test_unsubscribe(self):
        seen = []
        unsubscribe = self.store.subscribe(seen.append)
        unsubscribe()
        self.store.trigger_message(self.message("a"), sync=False)
        self.assertEqual(seen, [])

    def test_local_only_data_is_never_emitted(self):
        self.assertEqual(len(self.store.state.audio_data), AUDIO_BINS)
        self.store.set_audio_data([0.5] * AUDIO_BINS)
        self.store.set_server_info("192.168.1.20", 8080)

        self.assertEqual(self.store.state.audio_data[0], 0.5)
        self.assertEqual(self.store.state.server_info.to_dict(), {"ip": "192.168.1.20", "port": 8080})
        self.assertEqual(self.emitted, [])

    def test_failing_emitter_is_contained(self):
        def broken(tag, payload):
            raise RuntimeError("offline")

        self.store.set_emitter(broken)
        with self.assertLogs("vibecast.store", level="ERROR"):
            self.store.trigger_message(self.message("a"))
        self.assertEqual(self.active_ids(), ["a"])


if __name__ == "__main__":
    unittest.main()
