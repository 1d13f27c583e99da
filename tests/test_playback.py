"""Tests for the folder playback state machine."""

import unittest

from vibecast.models import FolderNode, FolderPlaybackQueue, MessageConfig, MessageNode
from vibecast.playback import (
    PlaybackState,
    advance,
    cancel,
    is_behind,
    is_current_entry,
    start,
    state_of,
)


def build():
    messages = {i: MessageConfig(id=i, text=i) for i in ("a", "b", "c")}
    tree = [
        FolderNode(id="f", name="F", children=[MessageNode(id=i, message=m) for i, m in messages.items()]),
        FolderNode(id="empty", name="Empty"),
    ]
    return tree, messages


class TestPlayback(unittest.TestCase):
    """Tests for start/advance/cancel transitions."""

    def setUp(self):
        self.tree, self.messages = build()

    def test_start_selects_first_message(self):
        t = start("f", self.tree, self.messages)
        self.assertEqual(t.state, PlaybackState.PLAYING)
        self.assertEqual(t.queue.message_ids, ["a", "b", "c"])
        self.assertEqual(t.queue.current_index, 0)
        self.assertEqual(t.message.id, "a")

    def test_empty_or_unknown_folder_stays_idle(self):
        for folder_id in ("empty", "unknown"):
            t = start(folder_id, self.tree, self.messages)
            self.assertEqual(t.state, PlaybackState.IDLE)
            self.assertIsNone(t.queue)

    def test_start_with_missing_first_message_completes(self):
        del self.messages["a"]
        self.assertEqual(start("f", self.tree, self.messages).state, PlaybackState.COMPLETE)

    def test_advance_walks_to_completion(self):
        queue = start("f", self.tree, self.messages).queue
        seen = []
        while True:
            t = advance(queue, self.messages)
            if t.state != PlaybackState.ADVANCING:
                break
            seen.append(t.message.id)
            queue = t.queue
            self.assertEqual(state_of(queue), PlaybackState.PLAYING)
        self.assertEqual(seen, ["b", "c"])
        self.assertEqual(t.state, PlaybackState.COMPLETE)
        self.assertIsNone(t.queue)

    def test_advance_terminates_on_missing_message(self):
        """A deleted entry stops playback; it is not skipped."""
        queue = start("f", self.tree, self.messages).queue
        del self.messages["b"]
        t = advance(queue, self.messages)
        self.assertEqual(t.state, PlaybackState.COMPLETE)
        self.assertIsNone(t.message)

    def test_advance_does_not_mutate_queue(self):
        queue = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b"], current_index=0)
        advance(queue, self.messages)
        self.assertEqual(queue.current_index, 0)

    def test_cancel(self):
        queue = start("f", self.tree, self.messages).queue
        self.assertEqual(cancel(queue).state, PlaybackState.CANCELLED)
        self.assertEqual(cancel(None).state, PlaybackState.IDLE)

    def test_state_and_current_entry(self):
        queue = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b"], current_index=1)
        self.assertEqual(state_of(queue), PlaybackState.PLAYING)
        self.assertEqual(state_of(None), PlaybackState.IDLE)
        self.assertTrue(is_current_entry(queue, "b"))
        self.assertFalse(is_current_entry(queue, "a"))
        self.assertFalse(is_current_entry(None, "a"))

    def test_is_behind(self):
        local = FolderPlaybackQueue(folder_id="f", message_ids=["a", "b"], current_index=1)
        self.assertTrue(is_behind(FolderPlaybackQueue("f", ["a", "b"], 0), local))
        self.assertFalse(is_behind(FolderPlaybackQueue("f", ["a", "b"], 1), local))
        self.assertFalse(is_behind(FolderPlaybackQueue("g", ["a", "b"], 0), local))
        self.assertFalse(is_behind(FolderPlaybackQueue("f", ["a", "b", "c"], 0), local))
        self.assertFalse(is_behind(None, local))
        self.assertFalse(is_behind(local, None))


if __name__ == "__main__":
    unittest.main()
