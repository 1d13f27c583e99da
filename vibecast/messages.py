"""Per-message helpers: split sequences, style overrides and text files."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

from .logging import get_logger
from .models import AppConfiguration, MessageConfig
from .plugins import DEFAULT_TEXT_STYLE, get_text_style

logger = get_logger("messages")

# Fallback on-screen time for one message part, in seconds
DEFAULT_PART_DURATION = 10.0

FILE_SPLIT_SEPARATOR = "\n"


def compute_split_sequence(message: MessageConfig) -> tuple[bool, list[str]]:
    """Compute the sequence of parts to display for a message.

    Splitting is active only when ``split_enabled`` is set and the separator
    is non-empty. Parts are trimmed and empty ones dropped; if nothing is
    left the trimmed text is kept as the single part. The part list is
    repeated ``repeat_count`` times.

    Returns:
        ``(split_active, sequence)``
    """
    separator = message.split_separator or ""
    if not message.split_enabled or not separator:
        return False, [message.text]

    parts = [part.strip() for part in message.text.split(separator)]
    parts = [part for part in parts if part]
    if not parts:
        parts = [message.text.strip()]

    loops = max(1, message.repeat_count or 1)
    return True, parts * loops


def _settings_equal(a: Any, b: Any) -> bool:
    # Booleans and numbers must not compare equal to each other (True == 1)
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_settings_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_settings_equal(x, y) for x, y in zip(a, b))
    return a == b


def apply_style_override_change(
    base_settings: dict[str, Any],
    overrides: dict[str, Any] | None,
    key: str,
    value: Any,
) -> dict[str, Any] | None:
    """Apply one override edit, pruning keys that match the base settings.

    Returns:
        The new override map, or None when no override remains
    """
    updated = dict(overrides or {})
    if _settings_equal(value, base_settings.get(key)):
        updated.pop(key, None)
    else:
        updated[key] = value
    return updated or None


def base_style_settings(message: MessageConfig, config: AppConfiguration) -> dict[str, Any]:
    """Plugin defaults, then global text style settings, then the bound preset."""
    plugin = get_text_style(message.text_style) or get_text_style(DEFAULT_TEXT_STYLE)
    settings: dict[str, Any] = dict(plugin.default_settings) if plugin else {}
    settings.update(config.text_style_settings.get(message.text_style, {}))

    if message.text_style_preset:
        for preset in config.text_style_presets:
            if preset.id == message.text_style_preset:
                settings.update(preset.settings)
                break
    return settings


def effective_style_settings(message: MessageConfig, config: AppConfiguration) -> dict[str, Any]:
    """Settings a renderer should use for this message, overrides applied last."""
    settings = base_style_settings(message, config)
    if message.style_overrides:
        settings.update(message.style_overrides)
    return settings


def display_duration(message: MessageConfig, config: AppConfiguration) -> float:
    """Seconds a triggered message stays on screen before it completes.

    One part lasts the style's ``duration`` (or ``displayDuration``) setting;
    split messages show every part in turn, and ``speed`` scales the total.
    """
    settings = effective_style_settings(message, config)
    per_part = settings.get("duration", settings.get("displayDuration"))
    try:
        per_part = float(per_part)
    except (TypeError, ValueError):
        per_part = DEFAULT_PART_DURATION
    if per_part <= 0:
        per_part = DEFAULT_PART_DURATION

    _, sequence = compute_split_sequence(message)
    speed = message.speed if message.speed and message.speed > 0 else 1.0
    return per_part * len(sequence) / speed


def resolve_message_text(message: MessageConfig, base_path: str | Path | None = None) -> MessageConfig:
    """Load the message text from its ``text_file``, if it has one.

    Relative paths are resolved against ``base_path`` (normally the
    directory of the configuration file). File-based text is split on
    newlines. A file that cannot be read is reported in the text itself.
    """
    if not message.text_file:
        return message

    path = Path(message.text_file).expanduser()
    if not path.is_absolute() and base_path is not None:
        path = Path(base_path) / path

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to load text file '{message.text_file}': {e}")
        return replace(message, text=f"[Error loading file: {message.text_file}]")

    return replace(
        message,
        text=text,
        split_enabled=True,
        split_separator=FILE_SPLIT_SEPARATOR,
    )
