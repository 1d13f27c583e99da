"""Tests for command names, payload decoding and command application."""

import unittest

from vibecast.models import FolderNode, default_configuration
from vibecast.normalize import normalize_configuration
from vibecast.protocol import (
    HANDLERS,
    LEGACY_TRIGGER_ID,
    CommandEnvelope,
    Intent,
    ProtocolError,
    apply_command,
    command_for,
    decode_trigger_payload,
    is_known_command,
    tag_for,
)
from vibecast.store import Store


class TestCommandNames(unittest.TestCase):
    """Tests for intent tag <-> command name mapping."""

    def test_plain_kebab_case(self):
        self.assertEqual(command_for("SET_COMMON_SETTINGS"), "set-common-settings")
        self.assertEqual(tag_for("play-folder"), "PLAY_FOLDER")

    def test_clear_message_travels_as_message_complete(self):
        self.assertEqual(command_for("CLEAR_MESSAGE"), "message-complete")
        self.assertEqual(tag_for("message-complete"), "CLEAR_MESSAGE")

    def test_every_handled_command_maps_back(self):
        for command in HANDLERS:
            self.assertEqual(command_for(tag_for(command)), command)

    def test_intent_command(self):
        intent = Intent(type="TRIGGER_MESSAGE", payload={"id": "a"})
        self.assertEqual(intent.command, "trigger-message")
        self.assertEqual(intent.to_dict(), {"type": "TRIGGER_MESSAGE", "payload": {"id": "a"}})

    def test_intent_becomes_envelope(self):
        raw = {"type": "SET_MODE", "payload": "waves", "origin": "control-1", "eventId": "e1"}
        intent = Intent.from_dict(raw)
        self.assertEqual(intent.to_dict(), raw)

        envelope = intent.to_envelope()
        self.assertEqual(
            (envelope.command, envelope.payload, envelope.origin, envelope.event_id),
            ("set-mode", "waves", "control-1", "e1"),
        )

    def test_malformed_intents(self):
        for raw in (None, [], {"payload": 1}, {"type": 3}):
            with self.assertRaises(ProtocolError):
                Intent.from_dict(raw)


class TestEnvelope(unittest.TestCase):
    """Tests for CommandEnvelope parsing."""

    def test_from_dict_and_back(self):
        raw = {
            "command": "play-folder",
            "payload": {"folderId": "f"},
            "origin": "remote-1",
            "timestamp": 5,
            "eventId": "e5",
        }
        envelope = CommandEnvelope.from_dict(raw)
        self.assertEqual(envelope.origin, "remote-1")
        self.assertEqual(envelope.event_id, "e5")
        self.assertEqual(envelope.to_dict(), raw)

    def test_optional_fields_are_omitted(self):
        envelope = CommandEnvelope.from_dict({"command": "reset-message-stats"})
        self.assertEqual(envelope.to_dict(), {"command": "reset-message-stats", "payload": None})

    def test_bad_origin_and_timestamp_are_ignored(self):
        envelope = CommandEnvelope.from_dict({"command": "x", "origin": 3, "timestamp": True, "eventId": 4})
        self.assertIsNone(envelope.origin)
        self.assertIsNone(envelope.event_id)
        self.assertIsNone(envelope.timestamp)

    def test_malformed_bodies(self):
        for raw in (None, [], "trigger-message", {"payload": {}}, {"command": 7}):
            with self.assertRaises(ProtocolError):
                CommandEnvelope.from_dict(raw)

    def test_message_id(self):
        self.assertEqual(CommandEnvelope("message-complete", {"messageId": "a"}).message_id, "a")
        self.assertEqual(CommandEnvelope("trigger-message", {"id": "b"}).message_id, "b")
        self.assertEqual(CommandEnvelope("trigger-message", "hi").message_id, LEGACY_TRIGGER_ID)
        self.assertIsNone(CommandEnvelope("set-mode", "techno").message_id)


class TestDecodeTrigger(unittest.TestCase):
    """Tests for trigger-message payload shapes."""

    def test_legacy_string(self):
        message = decode_trigger_payload("Happy birthday!")
        self.assertEqual(message.id, "triggered")
        self.assertEqual(message.text, "Happy birthday!")
        self.assertEqual(message.text_style, "scrolling-capitals")

    def test_message_object(self):
        message = decode_trigger_payload({"id": "a", "text": "A", "textStyle": "fade"})
        self.assertEqual((message.id, message.text_style), ("a", "fade"))

    def test_other_types_are_rejected(self):
        with self.assertRaises(ProtocolError):
            decode_trigger_payload(42)


class TestApplyCommand(unittest.TestCase):
    """Applying a command changes the store and never re-emits."""

    def setUp(self):
        self.emitted = []
        self.store = Store(
            normalize_configuration(default_configuration()),
            emit=lambda tag, payload: self.emitted.append((tag, payload)),
        )

    def tearDown(self):
        self.assertEqual(self.emitted, [])

    def test_trigger_and_complete(self):
        ts = apply_command(self.store, "trigger-message", {"id": "msg-1", "text": "x"})
        self.assertEqual(self.store.state.active_message.id, "msg-1")

        self.assertTrue(apply_command(self.store, "message-complete", {"timestamp": ts, "messageId": "msg-1"}))
        self.assertEqual(self.store.active_messages, ())

    def test_legacy_trigger(self):
        apply_command(self.store, "trigger-message", "Hello")
        self.assertEqual(self.store.state.active_message.id, "triggered")

    def test_play_folder_and_cancel(self):
        self.assertTrue(apply_command(self.store, "play-folder", {"folderId": "party-countdown", "messageIds": []}))
        self.assertEqual(self.store.folder_playback_queue.message_ids, ["msg-1", "msg-2", "msg-3"])
        self.assertTrue(apply_command(self.store, "cancel-folder-playback", {}))
        self.assertIsNone(self.store.folder_playback_queue)

    def test_clear_active_message(self):
        apply_command(self.store, "trigger-message", {"id": "msg-2", "text": "x"})
        apply_command(self.store, "clear-active-message", {"messageId": "msg-2", "timestamp": 1})
        self.assertEqual(self.store.active_messages, ())

    def test_settings_commands(self):
        apply_command(self.store, "set-mode", "techno")
        apply_command(self.store, "set-common-settings", {"dim": 0.25})
        apply_command(self.store, "set-enabled-visualizations", ["waves", "waves", "techno"])
        apply_command(self.store, "set-active-text-style-preset", "default-fade")

        config = self.store.config
        self.assertEqual(config.active_visualization, "techno")
        self.assertEqual(config.common_settings.dim, 0.25)
        self.assertEqual(config.enabled_visualizations, ["waves", "techno"])
        self.assertEqual(config.default_text_style, "fade")

    def test_set_active_preset_to_none(self):
        apply_command(self.store, "set-active-visualization-preset", None)
        self.assertIsNone(self.store.config.active_visualization_preset)

    def test_set_message_tree(self):
        tree = [
            {
                "type": "folder",
                "id": "only",
                "name": "Only",
                "children": [{"type": "message", "id": "x", "message": {"id": "x", "text": "X"}}],
            }
        ]
        apply_command(self.store, "set-message-tree", tree)
        self.assertIsInstance(self.store.config.message_tree[0], FolderNode)
        self.assertEqual([m.id for m in self.store.config.messages], ["x"])

    def test_load_configuration(self):
        config = normalize_configuration(default_configuration())
        config.active_visualization = "waves"
        apply_command(self.store, "load-configuration", config.to_dict())
        self.assertEqual(self.store.config.active_visualization, "waves")

    def test_unknown_command(self):
        self.assertFalse(is_known_command("self-destruct"))
        with self.assertRaises(ProtocolError):
            apply_command(self.store, "self-destruct", {})

    def test_malformed_payloads(self):
        cases = [
            ("play-folder", "party-countdown"),
            ("play-folder", {}),
            ("message-complete", {"timestamp": "soon"}),
            ("clear-active-message", {"timestamp": 1}),
            ("set-mode", 3),
            ("set-messages", {}),
            ("set-common-settings", [1]),
            ("load-configuration", "nope"),
        ]
        for command, payload in cases:
            with self.subTest(command=command):
                with self.assertRaises(ProtocolError):
                    apply_command(self.store, command, payload)


if __name__ == "__main__":
    unittest.main()
