"""Configuration model: data types and lossless JSON (de)serialization.

Wire and file documents use camelCase keys; the Python types use
snake_case. Optional message fields that are unset are omitted from the
serialized form so that documents round-trip byte-for-byte through
``from_dict``/``to_dict``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from .plugins import DEFAULT_TEXT_STYLE, DEFAULT_VISUALIZATION

SCHEMA_VERSION = 1
MAX_STATS_HISTORY = 50
MAX_ACTIVE_MESSAGES = 5


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be read or parsed."""

    pass


# =============================================================================
# Lenient field coercion
# =============================================================================


def _str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    return bool(value)


def _opt_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _nested_dict(value: Any) -> dict[str, dict[str, Any]]:
    return {str(k): _dict(v) for k, v in _dict(value).items()}


def _list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


# =============================================================================
# Settings and presets
# =============================================================================


@dataclass
class CommonSettings:
    """Settings shared by all visualizations (both in [0, 1])."""

    intensity: float = 1.0
    dim: float = 1.0

    @classmethod
    def from_dict(cls, raw: Any) -> "CommonSettings":
        data = _dict(raw)
        intensity = _opt_float(data.get("intensity"))
        dim = _opt_float(data.get("dim"))
        return cls(
            intensity=_clamp_unit(intensity) if intensity is not None else 1.0,
            dim=_clamp_unit(dim) if dim is not None else 1.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"intensity": self.intensity, "dim": self.dim}


@dataclass
class VisualizationPreset:
    """A named set of settings for one visualization plugin."""

    id: str
    name: str
    visualization_id: str
    settings: dict[str, Any] = field(default_factory=dict)
    enabled: bool | None = None
    order: int | None = None
    icon: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "VisualizationPreset":
        data = _dict(raw)
        return cls(
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            visualization_id=_str(data.get("visualizationId")),
            settings=_dict(data.get("settings")),
            enabled=_opt_bool(data.get("enabled")),
            order=_opt_int(data.get("order")),
            icon=_opt_str(data.get("icon")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "visualizationId": self.visualization_id,
            "settings": self.settings,
        }
        if self.enabled is not None:
            out["enabled"] = self.enabled
        if self.order is not None:
            out["order"] = self.order
        if self.icon is not None:
            out["icon"] = self.icon
        return out


@dataclass
class TextStylePreset:
    """A named set of settings for one text style plugin."""

    id: str
    name: str
    text_style_id: str
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "TextStylePreset":
        data = _dict(raw)
        return cls(
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            text_style_id=_str(data.get("textStyleId")),
            settings=_dict(data.get("settings")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "textStyleId": self.text_style_id,
            "settings": self.settings,
        }


# =============================================================================
# Messages
# =============================================================================


@dataclass
class MessageConfig:
    """One preset marquee message."""

    id: str
    text: str
    text_style: str = DEFAULT_TEXT_STYLE
    text_style_preset: str | None = None
    style_overrides: dict[str, Any] | None = None
    repeat_count: int | None = None
    split_enabled: bool | None = None
    split_separator: str | None = None
    speed: float | None = None
    text_file: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "MessageConfig":
        data = _dict(raw)
        repeat = _opt_int(data.get("repeatCount"))
        overrides = data.get("styleOverrides")
        return cls(
            id=_str(data.get("id")),
            text=_str(data.get("text")),
            text_style=_str(data.get("textStyle"), DEFAULT_TEXT_STYLE),
            text_style_preset=_opt_str(data.get("textStylePreset")),
            style_overrides=dict(overrides) if isinstance(overrides, dict) else None,
            repeat_count=max(1, repeat) if repeat is not None else None,
            split_enabled=_opt_bool(data.get("splitEnabled")),
            split_separator=_opt_str(data.get("splitSeparator")),
            speed=_opt_float(data.get("speed")),
            text_file=_opt_str(data.get("textFile")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "textStyle": self.text_style,
        }
        optional = (
            ("textStylePreset", self.text_style_preset),
            ("styleOverrides", self.style_overrides),
            ("repeatCount", self.repeat_count),
            ("splitEnabled", self.split_enabled),
            ("splitSeparator", self.split_separator),
            ("speed", self.speed),
            ("textFile", self.text_file),
        )
        for key, value in optional:
            if value is not None:
                out[key] = value
        return out


@dataclass
class MessageNode:
    """Tree leaf wrapping a message; its id is the message id."""

    id: str
    message: MessageConfig
    type: str = field(default="message", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "message", "id": self.id, "message": self.message.to_dict()}


@dataclass
class FolderNode:
    """Tree folder with ordered children."""

    id: str
    name: str
    children: list["MessageTreeNode"] = field(default_factory=list)
    collapsed: bool | None = None
    type: str = field(default="folder", init=False)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": "folder",
            "id": self.id,
            "name": self.name,
            "children": [child.to_dict() for child in self.children],
        }
        if self.collapsed is not None:
            out["collapsed"] = self.collapsed
        return out


MessageTreeNode = Union[FolderNode, MessageNode]


def parse_tree_node(raw: Any) -> MessageTreeNode | None:
    """Parse one tree node; unknown or malformed nodes yield None."""
    data = _dict(raw)
    node_type = data.get("type")
    if node_type == "message":
        if not isinstance(data.get("message"), dict):
            return None
        message = MessageConfig.from_dict(data["message"])
        return MessageNode(id=message.id or _str(data.get("id")), message=message)
    if node_type == "folder":
        return FolderNode(
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            children=parse_tree(data.get("children")),
            collapsed=_opt_bool(data.get("collapsed")),
        )
    return None


def parse_tree(raw: Any) -> list[MessageTreeNode]:
    nodes = (parse_tree_node(item) for item in _list(raw))
    return [node for node in nodes if node is not None]


def flatten_message_tree(tree: list[MessageTreeNode]) -> list[MessageConfig]:
    """Depth-first list of the tree's messages, folders elided."""
    out: list[MessageConfig] = []

    def walk(nodes: list[MessageTreeNode]) -> None:
        for node in nodes:
            if isinstance(node, MessageNode):
                out.append(node.message)
            else:
                walk(node.children)

    walk(tree)
    return out


def build_flat_message_tree(messages: list[MessageConfig]) -> list[MessageTreeNode]:
    """One folderless message node per message, in order."""
    return [MessageNode(id=m.id, message=m) for m in messages]


# =============================================================================
# Stats and runtime state
# =============================================================================


@dataclass
class MessageStats:
    """Trigger statistics for one message."""

    message_id: str
    trigger_count: int = 0
    last_triggered: int = 0
    history: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any, message_id: str = "") -> "MessageStats":
        data = _dict(raw)
        history: list[int] = []
        for entry in _list(data.get("history")):
            stamp = _opt_int(entry.get("timestamp") if isinstance(entry, dict) else entry)
            if stamp is not None:
                history.append(stamp)
        return cls(
            message_id=_str(data.get("messageId"), message_id),
            trigger_count=_opt_int(data.get("triggerCount")) or 0,
            last_triggered=_opt_int(data.get("lastTriggered")) or 0,
            history=history[-MAX_STATS_HISTORY:],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "messageId": self.message_id,
            "triggerCount": self.trigger_count,
            "lastTriggered": self.last_triggered,
            "history": [{"timestamp": t} for t in self.history],
        }

    def record(self, timestamp: int) -> "MessageStats":
        """Stats after one more trigger at ``timestamp`` (history capped)."""
        return MessageStats(
            message_id=self.message_id,
            trigger_count=self.trigger_count + 1,
            last_triggered=timestamp,
            history=(self.history + [timestamp])[-MAX_STATS_HISTORY:],
        )


@dataclass
class FolderPlaybackQueue:
    """Sequential playback of one folder's messages."""

    folder_id: str
    message_ids: list[str]
    current_index: int = 0

    @property
    def current_message_id(self) -> str | None:
        if 0 <= self.current_index < len(self.message_ids):
            return self.message_ids[self.current_index]
        return None

    @classmethod
    def from_dict(cls, raw: Any) -> "FolderPlaybackQueue | None":
        data = _dict(raw)
        if not data.get("folderId"):
            return None
        return cls(
            folder_id=_str(data.get("folderId")),
            message_ids=[_str(m) for m in _list(data.get("messageIds"))],
            current_index=_opt_int(data.get("currentIndex")) or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "folderId": self.folder_id,
            "messageIds": list(self.message_ids),
            "currentIndex": self.current_index,
        }


@dataclass
class ActiveMessage:
    """A message currently on screen, keyed by its trigger timestamp."""

    message: MessageConfig
    timestamp: int


# =============================================================================
# Full configuration
# =============================================================================


@dataclass
class AppConfiguration:
    """Everything that is persisted to disk and sent over the wire."""

    version: int = SCHEMA_VERSION
    active_visualization: str = DEFAULT_VISUALIZATION
    enabled_visualizations: list[str] = field(default_factory=lambda: ["fireplace", "techno"])
    common_settings: CommonSettings = field(default_factory=CommonSettings)
    visualization_settings: dict[str, dict[str, Any]] = field(default_factory=dict)
    visualization_presets: list[VisualizationPreset] = field(default_factory=list)
    active_visualization_preset: str | None = None
    messages: list[MessageConfig] = field(default_factory=list)
    message_tree: list[MessageTreeNode] = field(default_factory=list)
    default_text_style: str = DEFAULT_TEXT_STYLE
    text_style_settings: dict[str, dict[str, Any]] = field(default_factory=dict)
    text_style_presets: list[TextStylePreset] = field(default_factory=list)
    active_text_style_preset: str | None = None
    message_stats: dict[str, MessageStats] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "AppConfiguration":
        """Parse a configuration document, defaulting anything missing.

        When ``messageTree`` is present it is canonical and ``messages`` is
        re-derived from it; otherwise a flat tree is built from ``messages``.
        """
        data = _dict(raw)
        if isinstance(data.get("messageTree"), list):
            tree = parse_tree(data["messageTree"])
            messages = flatten_message_tree(tree)
        else:
            messages = [MessageConfig.from_dict(m) for m in _list(data.get("messages"))]
            tree = build_flat_message_tree(messages)

        enabled = data.get("enabledVisualizations")
        return cls(
            version=_opt_int(data.get("version")) or SCHEMA_VERSION,
            active_visualization=_str(data.get("activeVisualization"), DEFAULT_VISUALIZATION),
            enabled_visualizations=(
                [_str(v) for v in enabled] if isinstance(enabled, list) else ["fireplace", "techno"]
            ),
            common_settings=CommonSettings.from_dict(data.get("commonSettings")),
            visualization_settings=_nested_dict(data.get("visualizationSettings")),
            visualization_presets=[
                VisualizationPreset.from_dict(p) for p in _list(data.get("visualizationPresets"))
            ],
            active_visualization_preset=_opt_str(data.get("activeVisualizationPreset")),
            messages=messages,
            message_tree=tree,
            default_text_style=_str(data.get("defaultTextStyle"), DEFAULT_TEXT_STYLE),
            text_style_settings=_nested_dict(data.get("textStyleSettings")),
            text_style_presets=[
                TextStylePreset.from_dict(p) for p in _list(data.get("textStylePresets"))
            ],
            active_text_style_preset=_opt_str(data.get("activeTextStylePreset")),
            message_stats={
                str(key): MessageStats.from_dict(value, str(key))
                for key, value in _dict(data.get("messageStats")).items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "activeVisualization": self.active_visualization,
            "enabledVisualizations": list(self.enabled_visualizations),
            "commonSettings": self.common_settings.to_dict(),
            "visualizationSettings": self.visualization_settings,
            "visualizationPresets": [p.to_dict() for p in self.visualization_presets],
            "activeVisualizationPreset": self.active_visualization_preset,
            "messages": [m.to_dict() for m in self.messages],
            "messageTree": [node.to_dict() for node in self.message_tree],
            "defaultTextStyle": self.default_text_style,
            "textStyleSettings": self.text_style_settings,
            "textStylePresets": [p.to_dict() for p in self.text_style_presets],
            "activeTextStylePreset": self.active_text_style_preset,
            "messageStats": {key: s.to_dict() for key, s in self.message_stats.items()},
        }


@dataclass
class StateSnapshot:
    """One ``state`` event: the configuration plus ephemeral runtime fields."""

    config: AppConfiguration
    triggered_message: MessageConfig | None = None
    folder_playback_queue: FolderPlaybackQueue | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "StateSnapshot":
        data = _dict(raw)
        triggered = data.get("triggeredMessage")
        return cls(
            config=AppConfiguration.from_dict(data),
            triggered_message=MessageConfig.from_dict(triggered) if isinstance(triggered, dict) else None,
            folder_playback_queue=FolderPlaybackQueue.from_dict(data.get("folderPlaybackQueue")),
        )

    def to_dict(self) -> dict[str, Any]:
        out = self.config.to_dict()
        out["triggeredMessage"] = self.triggered_message.to_dict() if self.triggered_message else None
        out["folderPlaybackQueue"] = (
            self.folder_playback_queue.to_dict() if self.folder_playback_queue else None
        )
        # Legacy field for older remotes
        out["mode"] = self.config.active_visualization
        return out


# =============================================================================
# Files and built-in defaults
# =============================================================================


def load_config_file(path: str | Path) -> AppConfiguration:
    """Read a configuration file (not yet normalized).

    Raises:
        ConfigurationError: If the file is missing, unreadable or not JSON
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {config_path}: {e}")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse config JSON {config_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")
    return AppConfiguration.from_dict(data)


def save_config_file(config: AppConfiguration, path: str | Path) -> None:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


def default_configuration() -> AppConfiguration:
    """Built-in configuration used on first start and by "reset to defaults"."""
    messages = [
        MessageConfig(id="msg-1", text="Countdown initiated...", text_style="typewriter"),
        MessageConfig(
            id="msg-2",
            text="3, 2, 1",
            text_style="bounce",
            split_enabled=True,
            split_separator=",",
            speed=1.0,
        ),
        MessageConfig(
            id="msg-3",
            text="It's time to party \U0001f973",
            text_style="scrolling-capitals",
            text_style_preset="scrolling-capitals-centered",
        ),
    ]
    tree: list[MessageTreeNode] = [
        FolderNode(
            id="party-countdown",
            name="Party Countdown",
            children=build_flat_message_tree(messages),
        )
    ]
    return AppConfiguration(
        active_visualization="fireplace",
        visualization_presets=[
            VisualizationPreset(
                id="fireplace-blue-glow",
                name="Blue Glow",
                visualization_id="fireplace",
                settings={
                    "emberCount": 0,
                    "flameCount": 0,
                    "flameHeight": 0,
                    "glowColor": "#1e3a8a",
                    "showLogs": False,
                },
                enabled=True,
            ),
            VisualizationPreset(
                id="particles-calm",
                name="Calm Particles",
                visualization_id="particles",
                settings={
                    "particleCount": 80,
                    "particleSize": 5,
                    "speed": 0.5,
                    "particleColor": "#f59e0b",
                    "colorful": True,
                    "spread": 1.5,
                },
                enabled=True,
            ),
            VisualizationPreset(
                id="techno-bars",
                name="Techno Bars",
                visualization_id="techno",
                settings={
                    "barCount": 48,
                    "sphereScale": 1.0,
                    "sphereDistort": 0.5,
                    "colorScheme": "rainbow",
                    "showSphere": False,
                    "showBars": True,
                },
                enabled=True,
            ),
        ],
        active_visualization_preset="fireplace-blue-glow",
        messages=messages,
        message_tree=tree,
        text_style_presets=[
            TextStylePreset(
                id="scrolling-capitals-centered",
                name="Scrolling Capitals Centered",
                text_style_id="scrolling-capitals",
                settings={
                    "position": "center",
                    "fontSize": 12,
                    "glowIntensity": 0.5,
                    "color": "#ffffff",
                },
            )
        ],
    )
