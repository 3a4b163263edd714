"""Configuration for the event presentation layer."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml


DEFAULT_DESIGNATIONS: Tuple[str, ...] = (
    "Developer",
    "Manager",
    "Designer",
    "Product Manager",
    "Other",
)


@dataclass(frozen=True)
class EventSettings:
    """Static details about the event shown on the public page."""

    title: str = "AI Workshop"
    tagline: str = "Secure your spot at the AI Workshop"
    venue: Optional[str] = None
    designations: Tuple[str, ...] = DEFAULT_DESIGNATIONS

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "EventSettings":
        """Create :class:`EventSettings` from raw dictionary data."""
        defaults = EventSettings()

        raw_designations = data.get("designations")
        if raw_designations is None:
            designations = defaults.designations
        else:
            if not isinstance(raw_designations, list):
                raise ValueError("'designations' must be a list of strings")
            designations = tuple(str(item).strip() for item in raw_designations if str(item).strip())
            if not designations:
                raise ValueError("'designations' must contain at least one entry")

        venue = data.get("venue")
        return EventSettings(
            title=str(data.get("title") or defaults.title),
            tagline=str(data.get("tagline") or defaults.tagline),
            venue=str(venue) if venue else None,
            designations=designations,
        )


def load_event_settings(config_path: Path) -> EventSettings:
    """Load event settings from a YAML file, falling back to defaults if it is absent."""
    if not config_path.exists():
        return EventSettings()

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Event configuration must be a mapping")

    event_raw = raw.get("event", raw)
    if not isinstance(event_raw, dict):
        raise ValueError("The 'event' key must contain a mapping")
    return EventSettings.from_dict(event_raw)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the event configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "event.yaml").resolve(strict=False)
    return candidate


__all__ = ["DEFAULT_DESIGNATIONS", "EventSettings", "load_event_settings", "resolve_config_path"]
