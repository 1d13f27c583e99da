"""Folder playback queue state machine.

States::

    IDLE --start--> PLAYING --completion--> ADVANCING --next triggered--> PLAYING
                       |                        |
                       |                        +--end or missing--> COMPLETE -> IDLE
                       +--cancel--> CANCELLED -> IDLE

ADVANCING is transient: the queue already points at the next entry and
the caller triggers the returned message in the same step. COMPLETE and
CANCELLED are terminal and collapse to IDLE immediately: the
caller simply drops the queue. The functions here are pure; the Store owns
the queue and applies the returned transition atomically.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from .logging import get_logger
from .models import FolderPlaybackQueue, MessageConfig, MessageTreeNode
from .tree import collect_message_ids

logger = get_logger("playback")


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    ADVANCING = "advancing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass
class Transition:
    """Outcome of one state machine step.

    Attributes:
        state: State reached by the step (terminal states mean "drop the queue")
        queue: Queue to keep, or None when the machine is back to idle
        message: Message to trigger now, if any
    """

    state: PlaybackState
    queue: FolderPlaybackQueue | None = None
    message: MessageConfig | None = None


def state_of(queue: FolderPlaybackQueue | None) -> PlaybackState:
    return PlaybackState.PLAYING if queue is not None else PlaybackState.IDLE


def is_current_entry(queue: FolderPlaybackQueue | None, message_id: str | None) -> bool:
    """True when ``message_id`` is the message the queue is currently playing."""
    return queue is not None and message_id is not None and queue.current_message_id == message_id


def is_behind(queue: FolderPlaybackQueue | None, local: FolderPlaybackQueue | None) -> bool:
    """True when ``queue`` is the same run as ``local`` at an earlier entry."""
    if queue is None or local is None:
        return False
    return (
        queue.folder_id == local.folder_id
        and queue.message_ids == local.message_ids
        and queue.current_index < local.current_index
    )


def start(
    folder_id: str,
    tree: list[MessageTreeNode],
    messages_by_id: dict[str, MessageConfig],
) -> Transition:
    """Build a queue for ``folder_id`` and select its first message.

    The caller must have cancelled any existing queue first. An empty (or
    unknown) folder leaves the machine idle.
    """
    message_ids = collect_message_ids(folder_id, tree)
    if not message_ids:
        logger.info(f"Folder {folder_id} has no messages to play")
        return Transition(PlaybackState.IDLE)

    queue = FolderPlaybackQueue(folder_id=folder_id, message_ids=message_ids, current_index=0)
    first = messages_by_id.get(message_ids[0])
    if first is None:
        logger.warning(f"Folder {folder_id} starts with unknown message {message_ids[0]}")
        return Transition(PlaybackState.COMPLETE)

    logger.info(f"Playing folder {folder_id} ({len(message_ids)} messages)")
    return Transition(PlaybackState.PLAYING, queue=queue, message=first)


def advance(
    queue: FolderPlaybackQueue,
    messages_by_id: dict[str, MessageConfig],
) -> Transition:
    """Step past the current entry after it completed.

    Returns ADVANCING with the moved queue and the message to trigger;
    once triggered the queue is PLAYING again. The queue terminates at
    the end of the list, and also when the next id no longer resolves to
    a message (it is never skipped).
    """
    next_index = queue.current_index + 1
    if next_index >= len(queue.message_ids):
        logger.info(f"Folder playback complete: {queue.folder_id}")
        return Transition(PlaybackState.COMPLETE)

    next_id = queue.message_ids[next_index]
    message = messages_by_id.get(next_id)
    if message is None:
        logger.warning(
            f"Folder playback stopped: message {next_id} no longer exists "
            f"(folder {queue.folder_id})"
        )
        return Transition(PlaybackState.COMPLETE)

    logger.debug(f"Folder {queue.folder_id} advancing to {next_id} ({next_index + 1}/{len(queue.message_ids)})")
    return Transition(
        PlaybackState.ADVANCING,
        queue=replace(queue, current_index=next_index),
        message=message,
    )


def cancel(queue: FolderPlaybackQueue | None) -> Transition:
    """Drop the queue. Cancelling an idle machine stays idle."""
    if queue is None:
        return Transition(PlaybackState.IDLE)
    logger.info(f"Folder playback cancelled: {queue.folder_id}")
    return Transition(PlaybackState.CANCELLED)
