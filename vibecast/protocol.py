"""Wire protocol: command names, intent tags and command application.

Surfaces express changes as intents tagged in upper snake case
(``TRIGGER_MESSAGE``); on the wire the same intents travel as kebab-case
commands (``trigger-message``) inside a :class:`CommandEnvelope`.
Payloads are decoded into typed values here, once, and the rest of the
package never sees raw or legacy shapes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable

from .logging import get_logger
from .models import (
    AppConfiguration,
    MessageConfig,
    TextStylePreset,
    VisualizationPreset,
    parse_tree,
)
from .plugins import DEFAULT_TEXT_STYLE
from .store import Store

logger = get_logger("protocol")

# Id given to messages triggered with the legacy bare-string payload
LEGACY_TRIGGER_ID = "triggered"

# Tags whose command name is not the plain kebab-case form
_SPECIAL_TAGS = {"CLEAR_MESSAGE": "message-complete"}
_SPECIAL_COMMANDS = {v: k for k, v in _SPECIAL_TAGS.items()}


class ProtocolError(ValueError):
    """Raised for unknown commands or payloads that cannot be decoded."""

    pass


def command_for(tag: str) -> str:
    """``SET_COMMON_SETTINGS`` -> ``set-common-settings``."""
    return _SPECIAL_TAGS.get(tag, tag.lower().replace("_", "-"))


def tag_for(command: str) -> str:
    """``set-common-settings`` -> ``SET_COMMON_SETTINGS``."""
    return _SPECIAL_COMMANDS.get(command, command.upper().replace("-", "_"))


def new_event_id() -> str:
    """Unique id for one logical event, shared by every channel it travels on."""
    return uuid.uuid4().hex


@dataclass
class Intent:
    """A Store change as relayed on the local ``state-changed`` event."""

    type: str
    payload: Any = None
    origin: str | None = None
    event_id: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "Intent":
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            raise ProtocolError("state-changed event must be an object with a string 'type'")
        origin = raw.get("origin")
        event_id = raw.get("eventId")
        return cls(
            type=raw["type"],
            payload=raw.get("payload"),
            origin=origin if isinstance(origin, str) else None,
            event_id=event_id if isinstance(event_id, str) else None,
        )

    @property
    def command(self) -> str:
        return command_for(self.type)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "payload": self.payload}
        if self.origin is not None:
            out["origin"] = self.origin
        if self.event_id is not None:
            out["eventId"] = self.event_id
        return out

    def to_envelope(self) -> "CommandEnvelope":
        return CommandEnvelope(self.command, self.payload, origin=self.origin, event_id=self.event_id)


@dataclass
class CommandEnvelope:
    """Body of ``POST /api/command`` and of ``command`` stream events.

    Attributes:
        command: Kebab-case command name
        payload: Command payload (JSON value)
        origin: Id of the surface that sent the command, if known
        timestamp: Send time in milliseconds, if known
        event_id: Unique id of this logical event, used for dedupe
    """

    command: str
    payload: Any = None
    origin: str | None = None
    timestamp: int | None = None
    event_id: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "CommandEnvelope":
        if not isinstance(raw, dict) or not isinstance(raw.get("command"), str):
            raise ProtocolError("Command body must be an object with a string 'command'")
        timestamp = raw.get("timestamp")
        origin = raw.get("origin")
        event_id = raw.get("eventId")
        return cls(
            command=raw["command"],
            payload=raw.get("payload"),
            origin=origin if isinstance(origin, str) else None,
            timestamp=int(timestamp) if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool) else None,
            event_id=event_id if isinstance(event_id, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"command": self.command, "payload": self.payload}
        if self.origin is not None:
            out["origin"] = self.origin
        if self.timestamp is not None:
            out["timestamp"] = self.timestamp
        if self.event_id is not None:
            out["eventId"] = self.event_id
        return out

    @property
    def message_id(self) -> str | None:
        """Message id carried by the payload, if any (for logging)."""
        payload = self.payload
        if isinstance(payload, dict):
            value = payload.get("messageId", payload.get("id"))
            return value if isinstance(value, str) else None
        if isinstance(payload, str) and self.command == "trigger-message":
            return LEGACY_TRIGGER_ID
        return None


# =============================================================================
# Payload decoding
# =============================================================================


def decode_trigger_payload(payload: Any) -> MessageConfig:
    """Decode a ``trigger-message`` payload.

    A bare string is the legacy form and becomes a scrolling-capitals
    message with the fixed id ``triggered``.
    """
    if isinstance(payload, str):
        return MessageConfig(id=LEGACY_TRIGGER_ID, text=payload, text_style=DEFAULT_TEXT_STYLE)
    if isinstance(payload, dict):
        return MessageConfig.from_dict(payload)
    raise ProtocolError(f"Invalid trigger-message payload: {type(payload).__name__}")


def _object(payload: Any, command: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolError(f"{command} payload must be an object")
    return payload


def _array(payload: Any, command: str) -> list[Any]:
    if not isinstance(payload, list):
        raise ProtocolError(f"{command} payload must be an array")
    return payload


def _string(payload: Any, command: str) -> str:
    if not isinstance(payload, str):
        raise ProtocolError(f"{command} payload must be a string")
    return payload


def _optional_string(payload: Any, command: str) -> str | None:
    return None if payload is None else _string(payload, command)


def _timestamp(data: dict[str, Any], command: str) -> int:
    value = data.get("timestamp", 0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"{command} timestamp must be a number")
    return int(value)


def _settings_map(payload: Any, command: str) -> dict[str, dict[str, Any]]:
    data = _object(payload, command)
    return {str(k): dict(v) for k, v in data.items() if isinstance(v, dict)}


# =============================================================================
# Command application
# =============================================================================

Handler = Callable[[Store, Any], Any]


def _trigger(store: Store, payload: Any) -> Any:
    return store.trigger_message(decode_trigger_payload(payload), sync=False)


def _message_complete(store: Store, payload: Any) -> Any:
    data = _object(payload, "message-complete")
    message_id = data.get("messageId")
    return store.clear_message(
        _timestamp(data, "message-complete"),
        sync=False,
        message_id=message_id if isinstance(message_id, str) else None,
    )


def _clear_active(store: Store, payload: Any) -> Any:
    data = _object(payload, "clear-active-message")
    message_id = _string(data.get("messageId"), "clear-active-message")
    return store.clear_active_message(message_id, _timestamp(data, "clear-active-message"), sync=False)


def _play_folder(store: Store, payload: Any) -> Any:
    data = _object(payload, "play-folder")
    # Message ids are re-collected from this store's own tree
    return store.play_folder(_string(data.get("folderId"), "play-folder"), sync=False)


def _load_configuration(store: Store, payload: Any) -> Any:
    config = AppConfiguration.from_dict(_object(payload, "load-configuration"))
    return store.load_configuration(config, sync=False)


def _set_messages(store: Store, payload: Any) -> Any:
    messages = [MessageConfig.from_dict(m) for m in _array(payload, "set-messages")]
    return store.set_messages(messages, sync=False)


def _set_message_tree(store: Store, payload: Any) -> Any:
    return store.set_message_tree(parse_tree(_array(payload, "set-message-tree")), sync=False)


def _set_visualization_presets(store: Store, payload: Any) -> Any:
    presets = [VisualizationPreset.from_dict(p) for p in _array(payload, "set-visualization-presets")]
    return store.set_visualization_presets(presets, sync=False)


def _set_text_style_presets(store: Store, payload: Any) -> Any:
    presets = [TextStylePreset.from_dict(p) for p in _array(payload, "set-text-style-presets")]
    return store.set_text_style_presets(presets, sync=False)


HANDLERS: dict[str, Handler] = {
    "trigger-message": _trigger,
    "message-complete": _message_complete,
    "clear-active-message": _clear_active,
    "play-folder": _play_folder,
    "cancel-folder-playback": lambda store, payload: store.cancel_folder_playback(sync=False),
    "reset-message-stats": lambda store, payload: store.reset_message_stats(sync=False),
    "load-configuration": _load_configuration,
    "set-active-visualization": lambda store, payload: store.set_active_visualization(
        _string(payload, "set-active-visualization"), sync=False
    ),
    "set-mode": lambda store, payload: store.set_mode(_string(payload, "set-mode"), sync=False),
    "set-enabled-visualizations": lambda store, payload: store.set_enabled_visualizations(
        [str(v) for v in _array(payload, "set-enabled-visualizations")], sync=False
    ),
    "set-common-settings": lambda store, payload: store.set_common_settings(
        _object(payload, "set-common-settings"), sync=False
    ),
    "set-visualization-settings": lambda store, payload: store.set_visualization_settings(
        _settings_map(payload, "set-visualization-settings"), sync=False
    ),
    "set-visualization-presets": _set_visualization_presets,
    "set-active-visualization-preset": lambda store, payload: store.set_active_visualization_preset(
        _optional_string(payload, "set-active-visualization-preset"), sync=False
    ),
    "set-messages": _set_messages,
    "set-message-tree": _set_message_tree,
    "set-default-text-style": lambda store, payload: store.set_default_text_style(
        _string(payload, "set-default-text-style"), sync=False
    ),
    "set-text-style-settings": lambda store, payload: store.set_text_style_settings(
        _settings_map(payload, "set-text-style-settings"), sync=False
    ),
    "set-text-style-presets": _set_text_style_presets,
    "set-active-text-style-preset": lambda store, payload: store.set_active_text_style_preset(
        _optional_string(payload, "set-active-text-style-preset"), sync=False
    ),
}


def is_known_command(command: str) -> bool:
    return command in HANDLERS


def apply_command(store: Store, command: str, payload: Any) -> Any:
    """Apply a command to ``store`` without re-emitting it.

    Returns:
        Whatever the underlying Store action returned

    Raises:
        ProtocolError: If the command is unknown or its payload is malformed
    """
    handler = HANDLERS.get(command)
    if handler is None:
        raise ProtocolError(f"Unknown command: {command}")
    return handler(store, payload)
