"""Canonical Store: the single place a surface reads and mutates state.

One ``Store`` is constructed per surface (and one by the backend) with an
initial configuration. Every action computes the next immutable
``StoreState`` and commits it in one step, then notifies subscribers.
Actions take a ``sync`` flag: when true the matching intent is handed to
the emitter (normally the surface's command channel), when false the
change stays local, which is how authoritative snapshots and remote
commands are applied without echoing them back.
"""

from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Iterable

from . import playback
from .logging import get_logger, log_intent
from .models import (
    MAX_ACTIVE_MESSAGES,
    ActiveMessage,
    AppConfiguration,
    CommonSettings,
    FolderNode,
    FolderPlaybackQueue,
    MessageConfig,
    MessageNode,
    MessageStats,
    MessageTreeNode,
    StateSnapshot,
    TextStylePreset,
    VisualizationPreset,
    default_configuration,
    flatten_message_tree,
)
from .normalize import configuration_fingerprint, normalize_configuration, normalize_tree
from .plugins import get_text_style, get_visualization, is_default_preset_id
from .tree import (
    TreeEditError,
    build_flat,
    insert_node,
    move_node,
    node_ids,
    remove_node,
    replace_message,
    update_folder,
)

logger = get_logger("store")

AUDIO_BINS = 128

Emitter = Callable[[str, Any], None]
Listener = Callable[["StoreState"], None]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ServerInfo:
    """Where remotes can reach the backend (shown as a QR code by the UI)."""

    ip: str
    port: int

    def to_dict(self) -> dict[str, Any]:
        return {"ip": self.ip, "port": self.port}


@dataclass(frozen=True)
class StoreState:
    """Everything one surface knows at a given instant.

    ``config`` is the persisted and synced part; the rest is runtime only.
    """

    config: AppConfiguration = field(default_factory=AppConfiguration)
    active_messages: tuple[ActiveMessage, ...] = ()
    folder_playback_queue: FolderPlaybackQueue | None = None
    audio_data: tuple[float, ...] = (0.0,) * AUDIO_BINS
    server_info: ServerInfo | None = None

    @property
    def active_message(self) -> MessageConfig | None:
        """Most recently triggered message still on screen."""
        return self.active_messages[-1].message if self.active_messages else None

    @property
    def playback_state(self) -> playback.PlaybackState:
        return playback.state_of(self.folder_playback_queue)


# =============================================================================
# Pure state transitions
# =============================================================================


def _with_trigger(state: StoreState, message: MessageConfig, timestamp: int) -> StoreState:
    config = state.config
    current = config.message_stats.get(message.id) or MessageStats(message_id=message.id)
    stats = dict(config.message_stats)
    stats[message.id] = current.record(timestamp)

    active = (state.active_messages + (ActiveMessage(message=message, timestamp=timestamp),))
    return replace(
        state,
        config=replace(config, message_stats=stats),
        active_messages=active[-MAX_ACTIVE_MESSAGES:],
    )


def _without_active(state: StoreState, timestamps: Iterable[int]) -> StoreState:
    drop = set(timestamps)
    remaining = tuple(a for a in state.active_messages if a.timestamp not in drop)
    return replace(state, active_messages=remaining)


def _cancelled(state: StoreState) -> StoreState:
    """Drop the queue and the on-screen entry it was playing."""
    queue = state.folder_playback_queue
    if queue is None:
        return state
    current_id = queue.current_message_id
    state = _without_active(
        state, [a.timestamp for a in state.active_messages if a.message.id == current_id]
    )
    return replace(state, folder_playback_queue=None)


def _messages_by_id(config: AppConfiguration) -> dict[str, MessageConfig]:
    return {m.id: m for m in config.messages}


def _merge_fields(obj: Any, updates: dict[str, Any], label: str) -> Any:
    """Partial update of a dataclass by field name; ``id`` is never changed."""
    names = {f.name for f in fields(obj) if f.init and f.name != "id"}
    unknown = set(updates) - names
    if unknown:
        logger.warning(f"Ignoring unknown {label} fields: {', '.join(sorted(unknown))}")
    return replace(obj, **{k: v for k, v in updates.items() if k in names})


# =============================================================================
# Store
# =============================================================================


class Store:
    """State container for one surface.

    Args:
        initial: Starting configuration (normalized on construction);
            the built-in defaults when omitted
        emit: Called with ``(intent_tag, payload)`` for every synced action
        clock: Millisecond clock used for trigger timestamps
        authoritative: True for the backend's own store; queue-driven
            triggers are then announced through ``emit``
        name: Surface name used in log records
    """

    def __init__(
        self,
        initial: AppConfiguration | None = None,
        emit: Emitter | None = None,
        clock: Callable[[], int] | None = None,
        authoritative: bool = False,
        name: str = "store",
    ):
        self._emit = emit
        self._clock = clock or _wall_clock_ms
        self._last_timestamp = 0
        self._listeners: list[Listener] = []
        self._healed: set[str] = set()
        self.authoritative = authoritative
        self.name = name

        config = initial if initial is not None else default_configuration()
        self._state = StoreState(config=normalize_configuration(config))

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def config(self) -> AppConfiguration:
        return self._state.config

    @property
    def active_messages(self) -> tuple[ActiveMessage, ...]:
        return self._state.active_messages

    @property
    def folder_playback_queue(self) -> FolderPlaybackQueue | None:
        return self._state.folder_playback_queue

    def set_emitter(self, emit: Emitter | None) -> None:
        self._emit = emit

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every commit.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, state: StoreState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"Store listener failed ({self.name})")

    def _sync(self, tag: str, payload: Any) -> None:
        if self._emit is None:
            return
        log_intent(logger, tag, surface=self.name)
        try:
            self._emit(tag, payload)
        except Exception:
            logger.exception(f"Failed to emit {tag}")

    def _next_timestamp(self) -> int:
        # Strictly increasing, so a timestamp identifies one trigger
        timestamp = max(int(self._clock()), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    def _commit_config(self, config: AppConfiguration) -> None:
        self._commit(replace(self._state, config=config))

    def _announce_queue_trigger(self, message: MessageConfig | None) -> None:
        if message is not None and self.authoritative:
            self._sync("TRIGGER_MESSAGE", message.to_dict())

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_configuration(self) -> AppConfiguration:
        """Copy of the full persisted configuration."""
        return copy.deepcopy(self._state.config)

    def snapshot(self) -> StateSnapshot:
        """Configuration plus the runtime fields carried by ``state`` events."""
        return StateSnapshot(
            config=self.get_configuration(),
            triggered_message=self._state.active_message,
            folder_playback_queue=copy.deepcopy(self._state.folder_playback_queue),
        )

    def load_configuration(self, config: AppConfiguration, sync: bool = True) -> AppConfiguration:
        """Replace every persisted field with the normalized ``config``.

        When the configuration was received (``sync=False``) and
        normalization changed it, the normalized result is sent back once
        per distinct outcome so the backend converges on the same shape.

        Returns:
            The normalized configuration now held by the store
        """
        normalized = self._load(config)
        self._after_load(config, normalized, sync)
        return normalized

    def load_snapshot(self, snapshot: StateSnapshot) -> AppConfiguration:
        """Adopt an authoritative snapshot, including its playback queue.

        A snapshot queue for the same run that is behind the local one was
        sent before the backend saw this surface's completion; the local
        queue is kept.
        """
        normalized = self._load(snapshot.config, queue=snapshot.folder_playback_queue, adopt_queue=True)
        self._after_load(snapshot.config, normalized, sync=False)
        return normalized

    def _load(
        self,
        config: AppConfiguration,
        queue: FolderPlaybackQueue | None = None,
        adopt_queue: bool = False,
    ) -> AppConfiguration:
        normalized = normalize_configuration(config)
        state = replace(self._state, config=normalized)
        if adopt_queue:
            if playback.is_behind(queue, state.folder_playback_queue):
                logger.debug(
                    f"Keeping local queue at {state.folder_playback_queue.current_index}, "
                    f"snapshot is behind at {queue.current_index} ({self.name})"
                )
            else:
                state = replace(state, folder_playback_queue=queue)
        self._commit(state)
        logger.debug(
            f"Configuration loaded ({self.name}): {len(normalized.messages)} messages, "
            f"{len(normalized.visualization_presets)} visualization presets"
        )
        return normalized

    def _after_load(self, received: AppConfiguration, normalized: AppConfiguration, sync: bool) -> None:
        if sync:
            self._sync("LOAD_CONFIGURATION", normalized.to_dict())
            return
        if self.authoritative or normalized.to_dict() == received.to_dict():
            return

        fingerprint = configuration_fingerprint(normalized)
        if fingerprint in self._healed:
            return
        self._healed.add(fingerprint)
        logger.info(f"Normalization changed a received configuration, sending it back ({self.name})")
        self._sync("LOAD_CONFIGURATION", normalized.to_dict())

    def reset_to_defaults(self, sync: bool = True) -> AppConfiguration:
        return self.load_configuration(default_configuration(), sync)

    # -------------------------------------------------------------------------
    # Visualizations
    # -------------------------------------------------------------------------

    def set_active_visualization(self, visualization_id: str, sync: bool = True) -> bool:
        if get_visualization(visualization_id) is None:
            logger.warning(f"Unknown visualization: {visualization_id}")
            return False
        logger.info(f"Setting active visualization to {visualization_id}, sync={sync}")
        self._commit_config(replace(self.config, active_visualization=visualization_id))
        if sync:
            self._sync("SET_ACTIVE_VISUALIZATION", visualization_id)
        return True

    def set_mode(self, mode: str, sync: bool = True) -> bool:
        """Legacy alias of :meth:`set_active_visualization`."""
        return self.set_active_visualization(mode, sync)

    def set_enabled_visualizations(self, visualization_ids: list[str], sync: bool = True) -> None:
        ids = list(dict.fromkeys(visualization_ids))
        self._commit_config(replace(self.config, enabled_visualizations=ids))
        if sync:
            self._sync("SET_ENABLED_VISUALIZATIONS", ids)

    def set_common_settings(self, settings: dict[str, Any], sync: bool = True) -> CommonSettings:
        """Merge ``intensity`` and/or ``dim`` into the common settings (clamped)."""
        merged = {**self.config.common_settings.to_dict(), **settings}
        common = CommonSettings.from_dict(merged)
        self._commit_config(replace(self.config, common_settings=common))
        if sync:
            self._sync("SET_COMMON_SETTINGS", common.to_dict())
        return common

    def set_visualization_setting(self, visualization_id: str, key: str, value: Any, sync: bool = True) -> None:
        settings = dict(self.config.visualization_settings)
        settings[visualization_id] = {**settings.get(visualization_id, {}), key: value}
        self.set_visualization_settings(settings, sync)

    def set_visualization_settings(self, settings: dict[str, dict[str, Any]], sync: bool = True) -> None:
        self._commit_config(replace(self.config, visualization_settings=settings))
        if sync:
            self._sync("SET_VISUALIZATION_SETTINGS", settings)

    # -------------------------------------------------------------------------
    # Visualization presets
    # -------------------------------------------------------------------------

    def _commit_visualization_presets(self, presets: list[VisualizationPreset], sync: bool) -> None:
        before = self.config.active_visualization_preset
        config = normalize_configuration(replace(self.config, visualization_presets=presets))
        self._commit_config(config)
        if sync:
            self._sync("SET_VISUALIZATION_PRESETS", [p.to_dict() for p in config.visualization_presets])
            if before is not None and config.active_visualization_preset is None:
                self._sync("SET_ACTIVE_VISUALIZATION_PRESET", None)

    def set_visualization_presets(self, presets: list[VisualizationPreset], sync: bool = True) -> None:
        self._commit_visualization_presets(list(presets), sync)

    def add_visualization_preset(self, preset: VisualizationPreset, sync: bool = True) -> bool:
        if any(p.id == preset.id for p in self.config.visualization_presets):
            logger.warning(f"Visualization preset already exists: {preset.id}")
            return False
        self._commit_visualization_presets(self.config.visualization_presets + [preset], sync)
        return True

    def update_visualization_preset(self, preset_id: str, updates: dict[str, Any], sync: bool = True) -> bool:
        presets = self.config.visualization_presets
        if not any(p.id == preset_id for p in presets):
            logger.warning(f"Unknown visualization preset: {preset_id}")
            return False
        updated = [
            _merge_fields(p, updates, "visualization preset") if p.id == preset_id else p
            for p in presets
        ]
        self._commit_visualization_presets(updated, sync)
        return True

    def delete_visualization_preset(self, preset_id: str, sync: bool = True) -> bool:
        if is_default_preset_id(preset_id):
            logger.info(f"Default visualization preset cannot be deleted: {preset_id}")
            return False
        presets = [p for p in self.config.visualization_presets if p.id != preset_id]
        if len(presets) == len(self.config.visualization_presets):
            return False
        self._commit_visualization_presets(presets, sync)
        return True

    def set_active_visualization_preset(self, preset_id: str | None, sync: bool = True) -> bool:
        """Select a preset (or none); selecting also switches the visualization."""
        config = self.config
        if preset_id is None:
            config = replace(config, active_visualization_preset=None)
        else:
            preset = next((p for p in config.visualization_presets if p.id == preset_id), None)
            if preset is None:
                logger.warning(f"Unknown visualization preset: {preset_id}")
                return False
            config = replace(config, active_visualization_preset=preset_id)
            if get_visualization(preset.visualization_id) is not None:
                config = replace(config, active_visualization=preset.visualization_id)

        self._commit_config(config)
        if sync:
            self._sync("SET_ACTIVE_VISUALIZATION_PRESET", preset_id)
        return True

    # -------------------------------------------------------------------------
    # Text styles and their presets
    # -------------------------------------------------------------------------

    def set_default_text_style(self, text_style_id: str, sync: bool = True) -> bool:
        if get_text_style(text_style_id) is None:
            logger.warning(f"Unknown text style: {text_style_id}")
            return False
        self._commit_config(replace(self.config, default_text_style=text_style_id))
        if sync:
            self._sync("SET_DEFAULT_TEXT_STYLE", text_style_id)
        return True

    def set_text_style_setting(self, text_style_id: str, key: str, value: Any, sync: bool = True) -> None:
        settings = dict(self.config.text_style_settings)
        settings[text_style_id] = {**settings.get(text_style_id, {}), key: value}
        self.set_text_style_settings(settings, sync)

    def set_text_style_settings(self, settings: dict[str, dict[str, Any]], sync: bool = True) -> None:
        self._commit_config(replace(self.config, text_style_settings=settings))
        if sync:
            self._sync("SET_TEXT_STYLE_SETTINGS", settings)

    def _commit_text_style_presets(self, presets: list[TextStylePreset], sync: bool) -> None:
        before = self.config
        config = normalize_configuration(replace(before, text_style_presets=presets))
        self._commit_config(config)
        if not sync:
            return
        self._sync("SET_TEXT_STYLE_PRESETS", [p.to_dict() for p in config.text_style_presets])
        if config.message_tree != before.message_tree:
            self._sync("SET_MESSAGE_TREE", [n.to_dict() for n in config.message_tree])
        if before.active_text_style_preset is not None and config.active_text_style_preset is None:
            self._sync("SET_ACTIVE_TEXT_STYLE_PRESET", None)

    def set_text_style_presets(self, presets: list[TextStylePreset], sync: bool = True) -> None:
        self._commit_text_style_presets(list(presets), sync)

    def add_text_style_preset(self, preset: TextStylePreset, sync: bool = True) -> bool:
        if any(p.id == preset.id for p in self.config.text_style_presets):
            logger.warning(f"Text style preset already exists: {preset.id}")
            return False
        self._commit_text_style_presets(self.config.text_style_presets + [preset], sync)
        return True

    def update_text_style_preset(self, preset_id: str, updates: dict[str, Any], sync: bool = True) -> bool:
        """Partial update; messages bound to the preset follow a style change."""
        presets = self.config.text_style_presets
        if not any(p.id == preset_id for p in presets):
            logger.warning(f"Unknown text style preset: {preset_id}")
            return False
        updated = [
            _merge_fields(p, updates, "text style preset") if p.id == preset_id else p
            for p in presets
        ]
        self._commit_text_style_presets(updated, sync)
        return True

    def delete_text_style_preset(self, preset_id: str, sync: bool = True) -> bool:
        """Delete a preset; bound messages fall back to their style's default."""
        if is_default_preset_id(preset_id):
            logger.info(f"Default text style preset cannot be deleted: {preset_id}")
            return False
        presets = [p for p in self.config.text_style_presets if p.id != preset_id]
        if len(presets) == len(self.config.text_style_presets):
            return False
        self._commit_text_style_presets(presets, sync)
        return True

    def set_active_text_style_preset(self, preset_id: str | None, sync: bool = True) -> bool:
        """Select a preset (or none); selecting also sets the default text style."""
        config = self.config
        if preset_id is None:
            config = replace(config, active_text_style_preset=None)
        else:
            preset = next((p for p in config.text_style_presets if p.id == preset_id), None)
            if preset is None:
                logger.warning(f"Unknown text style preset: {preset_id}")
                return False
            config = replace(config, active_text_style_preset=preset_id)
            if get_text_style(preset.text_style_id) is not None:
                config = replace(config, default_text_style=preset.text_style_id)

        self._commit_config(config)
        if sync:
            self._sync("SET_ACTIVE_TEXT_STYLE_PRESET", preset_id)
        return True

    # -------------------------------------------------------------------------
    # Messages and the message tree
    # -------------------------------------------------------------------------

    def _commit_tree(self, tree: list[MessageTreeNode], sync: bool) -> None:
        config = self.config
        presets_by_id = {p.id: p for p in config.text_style_presets}
        tree = normalize_tree(tree, presets_by_id, config.default_text_style)
        config = replace(config, message_tree=tree, messages=flatten_message_tree(tree))
        self._commit_config(config)
        if sync:
            self._sync("SET_MESSAGE_TREE", [n.to_dict() for n in tree])

    def set_message_tree(self, tree: list[MessageTreeNode], sync: bool = True) -> None:
        self._commit_tree(list(tree), sync)

    def set_messages(self, messages: list[MessageConfig], sync: bool = True) -> None:
        """Replace the message list.

        Folders survive when the ids keep their order; any reordering,
        addition or removal of ids rebuilds a flat tree.
        """
        current_ids = [m.id for m in self.config.messages]
        tree: list[MessageTreeNode]
        if [m.id for m in messages] == current_ids:
            tree = self.config.message_tree
            for message in messages:
                tree = replace_message(tree, message)
        else:
            tree = build_flat(list(messages))

        self._commit_tree(tree, sync=False)
        if sync:
            self._sync("SET_MESSAGES", [m.to_dict() for m in self.config.messages])

    def add_message(self, text: str, parent_id: str | None = None, sync: bool = True) -> MessageConfig | None:
        """Append a new message using the default text style."""
        existing = node_ids(self.config.message_tree)
        message_id = uuid.uuid4().hex[:12]
        while message_id in existing:
            message_id = uuid.uuid4().hex[:12]

        message = MessageConfig(
            id=message_id,
            text=text,
            text_style=self.config.default_text_style,
            split_enabled=False,
        )
        if not self.insert_node(MessageNode(id=message.id, message=message), parent_id, sync=sync):
            return None
        return next(m for m in self.config.messages if m.id == message_id)

    def update_message(self, message_id: str, updates: dict[str, Any], sync: bool = True) -> bool:
        """Partial update of one message by id.

        Changing ``text_style`` without naming a preset unbinds the current
        preset, so the message moves to the new style's default preset.
        """
        current = next((m for m in self.config.messages if m.id == message_id), None)
        if current is None:
            logger.warning(f"Unknown message: {message_id}")
            return False
        updates = dict(updates)
        if "text_style" in updates and "text_style_preset" not in updates:
            updates["text_style_preset"] = None
        message = _merge_fields(current, updates, "message")
        self._commit_tree(replace_message(self.config.message_tree, message), sync)
        return True

    def remove_message(self, message_id: str, sync: bool = True) -> bool:
        return self.remove_node(message_id, sync)

    def insert_node(
        self,
        node: MessageTreeNode,
        parent_id: str | None = None,
        index: int | None = None,
        sync: bool = True,
    ) -> bool:
        try:
            tree = insert_node(self.config.message_tree, node, parent_id, index)
        except TreeEditError as e:
            logger.warning(f"Cannot insert {node.id}: {e}")
            return False
        self._commit_tree(tree, sync)
        return True

    def add_folder(self, name: str, parent_id: str | None = None, sync: bool = True) -> FolderNode | None:
        existing = node_ids(self.config.message_tree)
        folder_id = f"folder-{uuid.uuid4().hex[:8]}"
        while folder_id in existing:
            folder_id = f"folder-{uuid.uuid4().hex[:8]}"
        folder = FolderNode(id=folder_id, name=name)
        return folder if self.insert_node(folder, parent_id, sync=sync) else None

    def move_node(
        self,
        node_id: str,
        new_parent_id: str | None = None,
        index: int | None = None,
        sync: bool = True,
    ) -> bool:
        try:
            tree = move_node(self.config.message_tree, node_id, new_parent_id, index)
        except TreeEditError as e:
            logger.warning(f"Cannot move {node_id}: {e}")
            return False
        self._commit_tree(tree, sync)
        return True

    def remove_node(self, node_id: str, sync: bool = True) -> bool:
        try:
            tree, _ = remove_node(self.config.message_tree, node_id)
        except TreeEditError as e:
            logger.warning(f"Cannot remove {node_id}: {e}")
            return False
        self._commit_tree(tree, sync)
        return True

    def rename_folder(self, folder_id: str, name: str, sync: bool = True) -> bool:
        try:
            tree = update_folder(self.config.message_tree, folder_id, name=name)
        except TreeEditError as e:
            logger.warning(f"Cannot rename {folder_id}: {e}")
            return False
        self._commit_tree(tree, sync)
        return True

    def set_folder_collapsed(self, folder_id: str, collapsed: bool, sync: bool = True) -> bool:
        try:
            tree = update_folder(self.config.message_tree, folder_id, collapsed=collapsed)
        except TreeEditError as e:
            logger.warning(f"Cannot collapse {folder_id}: {e}")
            return False
        self._commit_tree(tree, sync)
        return True

    # -------------------------------------------------------------------------
    # Triggering, clearing and folder playback
    # -------------------------------------------------------------------------

    def is_active_queue_entry(self, message_id: str) -> bool:
        """True when ``message_id`` is the queue's current entry and is on screen."""
        state = self._state
        return playback.is_current_entry(state.folder_playback_queue, message_id) and any(
            a.message.id == message_id for a in state.active_messages
        )

    def trigger_message(self, message: MessageConfig, sync: bool = True) -> int:
        """Show a message and count the trigger.

        Returns:
            The trigger timestamp, which identifies this display
        """
        timestamp = self._next_timestamp()
        logger.info(
            f"Triggering message: {message.text!r}, sync={sync}",
            extra={"message_id": message.id, "surface": self.name},
        )
        self._commit(_with_trigger(self._state, message, timestamp))
        if sync:
            self._sync("TRIGGER_MESSAGE", message.to_dict())
        return timestamp

    def _advance_if_current(
        self, state: StoreState, message_id: str
    ) -> tuple[StoreState, MessageConfig | None]:
        queue = state.folder_playback_queue
        if not playback.is_current_entry(queue, message_id):
            return state, None

        transition = playback.advance(queue, _messages_by_id(state.config))
        state = replace(state, folder_playback_queue=transition.queue)
        if transition.message is not None:
            state = _with_trigger(state, transition.message, self._next_timestamp())
        return state, transition.message

    def clear_message(self, timestamp: int, sync: bool = True, message_id: str | None = None) -> bool:
        """Remove one active message (it completed).

        The match is by timestamp, falling back to ``message_id`` since other
        surfaces stamp the same message differently. Nothing matched means
        nothing changes and nothing is sent.
        """
        state = self._state
        match = next((a for a in state.active_messages if a.timestamp == timestamp), None)
        if match is None and message_id:
            match = next((a for a in state.active_messages if a.message.id == message_id), None)
        if match is None:
            logger.debug(f"No active message for timestamp {timestamp} ({self.name})")
            return False

        state = _without_active(state, [match.timestamp])
        state, next_message = self._advance_if_current(state, match.message.id)
        self._commit(state)
        self._announce_queue_trigger(next_message)
        if sync:
            self._sync("CLEAR_MESSAGE", {"timestamp": timestamp, "messageId": match.message.id})
        return True

    def clear_active_message(self, message_id: str, timestamp: int, sync: bool = True) -> bool:
        """User stop of a message.

        Removes the exact (id, timestamp) entry, or every entry of the id
        when the timestamp is foreign. Stopping the queue's current entry
        advances the queue exactly like a completion.
        """
        state = self._state
        exact = [a.timestamp for a in state.active_messages if a.message.id == message_id and a.timestamp == timestamp]
        removed = exact or [a.timestamp for a in state.active_messages if a.message.id == message_id]
        is_current = playback.is_current_entry(state.folder_playback_queue, message_id)
        if not removed and not is_current:
            logger.debug(f"Message {message_id} is not active ({self.name})")
            return False

        state = _without_active(state, removed)
        state, next_message = self._advance_if_current(state, message_id)
        self._commit(state)
        self._announce_queue_trigger(next_message)
        if sync:
            self._sync("CLEAR_ACTIVE_MESSAGE", {"messageId": message_id, "timestamp": timestamp})
        return True

    def reset_message_stats(self, sync: bool = True) -> None:
        self._commit_config(replace(self.config, message_stats={}))
        if sync:
            self._sync("RESET_MESSAGE_STATS", {})

    def play_folder(self, folder_id: str, sync: bool = True) -> bool:
        """Play a folder's messages one after another.

        Any running queue is cancelled first, in the same commit. The first
        message is triggered locally only; its trigger reaches other
        surfaces through the backend.
        """
        config = self.config
        transition = playback.start(folder_id, config.message_tree, _messages_by_id(config))
        if transition.state is playback.PlaybackState.IDLE:
            return False

        state = _cancelled(self._state)
        state = replace(state, folder_playback_queue=transition.queue)
        if transition.message is not None:
            state = _with_trigger(state, transition.message, self._next_timestamp())
        self._commit(state)
        self._announce_queue_trigger(transition.message)

        if sync:
            message_ids = transition.queue.message_ids if transition.queue else []
            self._sync("PLAY_FOLDER", {"folderId": folder_id, "messageIds": list(message_ids)})
        return transition.queue is not None

    def cancel_folder_playback(self, sync: bool = True) -> bool:
        """Stop folder playback. A no-op (not sent) when nothing is playing."""
        transition = playback.cancel(self._state.folder_playback_queue)
        if transition.state is playback.PlaybackState.IDLE:
            return False
        self._commit(_cancelled(self._state))
        if sync:
            self._sync("CANCEL_FOLDER_PLAYBACK", {})
        return True

    # -------------------------------------------------------------------------
    # Local-only data
    # -------------------------------------------------------------------------

    def set_audio_data(self, data: Iterable[float]) -> None:
        self._commit(replace(self._state, audio_data=tuple(float(v) for v in data)))

    def set_server_info(self, ip: str, port: int) -> None:
        self._commit(replace(self._state, server_info=ServerInfo(ip=ip, port=port)))
