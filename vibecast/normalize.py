"""Configuration normalization.

Normalization rewrites cross references (message -> text style preset ->
plugin) so they agree with each other, and makes sure every registered
plugin owns its stable default preset. It never raises and is idempotent:
``normalize_configuration(normalize_configuration(c)) == normalize_configuration(c)``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import replace

from .models import (
    SCHEMA_VERSION,
    AppConfiguration,
    MessageConfig,
    MessageNode,
    MessageTreeNode,
    TextStylePreset,
    VisualizationPreset,
    flatten_message_tree,
)
from .plugins import (
    DEFAULT_TEXT_STYLE,
    DEFAULT_VISUALIZATION,
    TEXT_STYLE_PLUGINS,
    VISUALIZATION_PLUGINS,
    default_preset_id,
    get_text_style,
    get_visualization,
)


def ensure_text_style_default_presets(
    presets: list[TextStylePreset],
    text_style_settings: dict[str, dict] | None = None,
) -> list[TextStylePreset]:
    """Append the missing ``default-<styleId>`` presets, leaving others untouched."""
    text_style_settings = text_style_settings or {}
    out = list(presets)
    by_id = {p.id: i for i, p in enumerate(out)}

    for plugin in TEXT_STYLE_PLUGINS:
        preset_id = default_preset_id(plugin.id)
        if preset_id in by_id:
            existing = out[by_id[preset_id]]
            if existing.text_style_id != plugin.id:
                out[by_id[preset_id]] = replace(existing, text_style_id=plugin.id)
            continue
        settings = text_style_settings.get(plugin.id) or plugin.default_settings
        out.append(
            TextStylePreset(
                id=preset_id,
                name=plugin.name,
                text_style_id=plugin.id,
                settings=dict(settings),
            )
        )
    return out


def ensure_visualization_default_presets(
    presets: list[VisualizationPreset],
    visualization_settings: dict[str, dict] | None = None,
) -> list[VisualizationPreset]:
    """Append the missing ``default-<vizId>`` presets, leaving others untouched."""
    visualization_settings = visualization_settings or {}
    out = list(presets)
    by_id = {p.id: i for i, p in enumerate(out)}

    for plugin in VISUALIZATION_PLUGINS:
        preset_id = default_preset_id(plugin.id)
        if preset_id in by_id:
            existing = out[by_id[preset_id]]
            if existing.visualization_id != plugin.id:
                out[by_id[preset_id]] = replace(existing, visualization_id=plugin.id)
            continue
        settings = visualization_settings.get(plugin.id) or plugin.default_settings
        out.append(
            VisualizationPreset(
                id=preset_id,
                name=plugin.name,
                visualization_id=plugin.id,
                settings=dict(settings),
                enabled=True,
            )
        )
    return out


def fallback_text_style(config: AppConfiguration) -> str:
    """Text style used when a message references an unknown plugin."""
    if get_text_style(config.default_text_style) is not None:
        return config.default_text_style
    return DEFAULT_TEXT_STYLE


def normalize_message(
    message: MessageConfig,
    presets_by_id: dict[str, TextStylePreset],
    fallback_style: str = DEFAULT_TEXT_STYLE,
) -> MessageConfig:
    """Make ``text_style`` and ``text_style_preset`` agree.

    An explicitly bound preset wins and its plugin id is copied onto the
    message. Otherwise (unbound, dangling, or bound to a preset of an
    unknown plugin) the message is bound to the stable default preset of
    its own style, or of ``fallback_style`` if its style is unknown.
    """
    bound = presets_by_id.get(message.text_style_preset) if message.text_style_preset else None
    if bound is not None and get_text_style(bound.text_style_id) is not None:
        if bound.text_style_id == message.text_style:
            return message
        return replace(message, text_style=bound.text_style_id)

    style = message.text_style
    if get_text_style(style) is None:
        style = fallback_style
    default = presets_by_id.get(default_preset_id(style))
    preset_id = default.id if default is not None else None

    if style == message.text_style and preset_id == message.text_style_preset:
        return message
    return replace(message, text_style=style, text_style_preset=preset_id)


def normalize_tree(
    tree: list[MessageTreeNode],
    presets_by_id: dict[str, TextStylePreset],
    fallback_style: str = DEFAULT_TEXT_STYLE,
) -> list[MessageTreeNode]:
    """Normalize every message in the tree; returns a new tree."""
    out: list[MessageTreeNode] = []
    for node in tree:
        if isinstance(node, MessageNode):
            message = normalize_message(node.message, presets_by_id, fallback_style)
            if message is node.message and node.id == message.id:
                out.append(node)
            else:
                out.append(MessageNode(id=message.id, message=message))
        else:
            children = normalize_tree(node.children, presets_by_id, fallback_style)
            out.append(replace(node, children=children))
    return out


def normalize_configuration(config: AppConfiguration) -> AppConfiguration:
    """Return the canonical form of ``config``. Never raises."""
    default_text_style = fallback_text_style(config)

    text_style_presets = ensure_text_style_default_presets(
        config.text_style_presets, config.text_style_settings
    )
    visualization_presets = ensure_visualization_default_presets(
        config.visualization_presets, config.visualization_settings
    )
    presets_by_id = {p.id: p for p in text_style_presets}

    tree = normalize_tree(config.message_tree, presets_by_id, default_text_style)
    messages = flatten_message_tree(tree)

    active_viz = config.active_visualization
    if get_visualization(active_viz) is None:
        active_viz = DEFAULT_VISUALIZATION

    viz_preset_ids = {p.id for p in visualization_presets}
    active_viz_preset = config.active_visualization_preset
    if active_viz_preset is not None and active_viz_preset not in viz_preset_ids:
        active_viz_preset = None

    active_text_preset = config.active_text_style_preset
    if active_text_preset is not None and active_text_preset not in presets_by_id:
        active_text_preset = None

    return replace(
        config,
        version=SCHEMA_VERSION,
        active_visualization=active_viz,
        visualization_presets=visualization_presets,
        active_visualization_preset=active_viz_preset,
        messages=messages,
        message_tree=tree,
        default_text_style=default_text_style,
        text_style_presets=text_style_presets,
        active_text_style_preset=active_text_preset,
    )


def configuration_fingerprint(config: AppConfiguration) -> str:
    """Content hash of a configuration, stable across key ordering."""
    canonical = json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

