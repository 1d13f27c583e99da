"""Registry of visualization and text style plugins.

Only the metadata lives here (ids, display names, default settings);
rendering happens in the UI layer. The ids are what configurations
reference, and each registered plugin owns one stable default preset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_PRESET_PREFIX = "default-"

DEFAULT_VISUALIZATION = "fireplace"
DEFAULT_TEXT_STYLE = "scrolling-capitals"


@dataclass(frozen=True)
class PluginInfo:
    """Metadata for one registered plugin."""

    id: str
    name: str
    description: str = ""
    icon: str | None = None
    default_settings: dict[str, Any] = field(default_factory=dict)


VISUALIZATION_PLUGINS: list[PluginInfo] = [
    PluginInfo(
        id="fireplace",
        name="Fireplace",
        description="Cozy animated fireplace with embers",
        icon="Flame",
        default_settings={
            "emberCount": 15,
            "flameCount": 12,
            "flameHeight": 1.0,
            "glowColor": "#ea580c",
            "showLogs": True,
        },
    ),
    PluginInfo(
        id="techno",
        name="Techno",
        description="Audio-reactive bars and a distorted sphere",
        icon="Music",
        default_settings={
            "barCount": 48,
            "sphereScale": 1.0,
            "sphereDistort": 0.5,
            "colorScheme": "rainbow",
            "showSphere": True,
            "showBars": True,
        },
    ),
    PluginInfo(
        id="waves",
        name="Waves",
        description="Layered sine waves driven by the spectrum",
        icon="Music",
        default_settings={
            "waveCount": 4,
            "waveSpeed": 1.0,
            "waveHeight": 1.0,
            "waveColor": "#3b82f6",
            "opacity": 0.8,
        },
    ),
    PluginInfo(
        id="particles",
        name="Particles",
        description="Floating particles that pulse with the beat",
        icon="Music",
        default_settings={
            "particleCount": 80,
            "particleSize": 3,
            "speed": 1.5,
            "particleColor": "#f59e0b",
            "colorful": True,
            "spread": 1.5,
        },
    ),
    PluginInfo(
        id="mushrooms",
        name="Mushrooms",
        description="Raymarched psychedelic mushroom forest",
        icon="Flower",
        default_settings={
            "mushroomCount": 28,
            "evolutionSpeed": 1.0,
            "mushroomScale": 1.1,
            "colorStyle": "deep-dream",
            "colorIntensity": 1.25,
            "seed": 13,
            "showGround": True,
            "showFog": True,
            "fogDensity": 0.65,
            "quality": "medium",
        },
    ),
    PluginInfo(
        id="youtube",
        name="YouTube",
        description="Play a YouTube video as the background",
        icon="Video",
        default_settings={
            "videoUrl": "https://youtu.be/uNNk-V08J7k?si=0chlR1UB6XYRxPc3",
            "showControls": False,
            "muted": True,
            "volume": 50,
        },
    ),
    PluginInfo(
        id="photo-slideshow",
        name="Photo Slideshow",
        description="Slideshow of local photos and videos",
        icon="Images",
        default_settings={
            "sourceType": "local",
            "folderPath": "",
            "photosAlbumName": "",
            "displayDuration": 5,
            "transitionDuration": 0.8,
            "randomOrder": False,
            "enableFade": True,
            "enableSlide": True,
            "enableZoom": True,
            "enable3DRotate": True,
            "enableCube": False,
            "enableFlip": True,
            "fitMode": "cover",
        },
    ),
]

TEXT_STYLE_PLUGINS: list[PluginInfo] = [
    PluginInfo(
        id="scrolling-capitals",
        name="Scrolling Capitals",
        description="Large uppercase text scrolling across the screen",
        default_settings={
            "duration": 10,
            "fontSize": 8,
            "color": "#ffffff",
            "glowIntensity": 0.5,
            "position": "top",
        },
    ),
    PluginInfo(
        id="fade",
        name="Fade",
        description="Text fades in, holds, and fades out",
        default_settings={
            "displayDuration": 5,
            "fadeInDuration": 0.5,
            "fadeOutDuration": 0.5,
            "fontSize": 5,
            "color": "#ffffff",
            "uppercase": False,
            "fontWeight": "bold",
            "blurAmount": 0,
        },
    ),
    PluginInfo(
        id="typewriter",
        name="Typewriter",
        description="Characters appear one at a time",
        default_settings={
            "typingSpeed": 80,
            "fontSize": 4,
            "color": "#ffffff",
            "cursorColor": "#00ff00",
            "showCursor": True,
            "position": "center",
        },
    ),
    PluginInfo(
        id="bounce",
        name="Bounce",
        description="Springy bouncing letters",
        default_settings={
            "displayDuration": 4,
            "bounceIntensity": 1.0,
            "fontSize": 6,
            "color": "#ffffff",
            "glowIntensity": 0.6,
            "position": "center",
        },
    ),
    PluginInfo(
        id="dot-matrix",
        name="Dot Matrix",
        description="LED dot matrix display",
        default_settings={
            "dotSize": 8,
            "spacing": 4,
            "dotDensity": 0.7,
            "dotColor": "#00ff00",
            "bgColor": "#000000",
            "fadeInDuration": 1.0,
            "scrollSpeed": 3,
            "position": "center",
        },
    ),
    PluginInfo(
        id="credits",
        name="Credits",
        description="Movie-style rolling credits",
        default_settings={
            "scrollSpeed": 100,
            "fontSize": 8,
            "color": "#ffffff",
            "glowIntensity": 0.5,
            "lineSpacing": 1.5,
            "align": "center",
        },
    ),
]

_VISUALIZATIONS_BY_ID = {p.id: p for p in VISUALIZATION_PLUGINS}
_TEXT_STYLES_BY_ID = {p.id: p for p in TEXT_STYLE_PLUGINS}


def default_preset_id(plugin_id: str) -> str:
    """Stable id of the default preset owned by a plugin."""
    return f"{DEFAULT_PRESET_PREFIX}{plugin_id}"


def is_default_preset_id(preset_id: str) -> bool:
    return preset_id.startswith(DEFAULT_PRESET_PREFIX)


def get_visualization(plugin_id: str) -> PluginInfo | None:
    return _VISUALIZATIONS_BY_ID.get(plugin_id)


def get_text_style(plugin_id: str) -> PluginInfo | None:
    return _TEXT_STYLES_BY_ID.get(plugin_id)


def visualization_ids() -> list[str]:
    return [p.id for p in VISUALIZATION_PLUGINS]


def text_style_ids() -> list[str]:
    return [p.id for p in TEXT_STYLE_PLUGINS]
