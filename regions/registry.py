from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from models.schemas import WorkingHoursConfig
from settings import SETTINGS

logger = logging.getLogger(__name__)


@dataclass
class RegionProfile:
    slug: str
    display_name: str
    timezone: str = "Asia/Taipei"
    emergency_phone: str = "0988-157-972"
    working_hours: WorkingHoursConfig = field(default_factory=WorkingHoursConfig)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegionProfile":
        timezone = str(data.get("timezone", "Asia/Taipei"))
        hours = {"timezone": timezone, **dict(data.get("working_hours", {}))}
        return cls(
            slug=str(data["slug"]),
            display_name=str(data.get("display_name", data["slug"])),
            timezone=timezone,
            emergency_phone=str(data.get("emergency_phone", "0988-157-972")),
            working_hours=WorkingHoursConfig.model_validate(hours),
            metadata=dict(data.get("metadata", {})),
        )


class RegionNotFoundError(LookupError):
    pass


class RegionRegistry:
    def __init__(self, profiles_dir: str | Path | None = None) -> None:
        default_dir = Path(__file__).resolve().parent / "profiles"
        self.profiles_dir = Path(profiles_dir or SETTINGS.region_profiles_dir or default_dir)
        self._cache: Dict[str, RegionProfile] = {}

    def list_profiles(self) -> List[RegionProfile]:
        profiles: List[RegionProfile] = []
        if not self.profiles_dir.exists():
            return profiles
        for path in sorted(self.profiles_dir.glob("*.json")):
            try:
                profiles.append(self.load(path.stem))
            except (OSError, ValueError, KeyError):
                logger.warning("region_profile_invalid", extra={"path": str(path)}, exc_info=True)
        return profiles

    def load(self, slug: str) -> RegionProfile:
        slug = slug.strip().lower()
        if slug in self._cache:
            return self._cache[slug]
        path = self.profiles_dir / f"{slug}.json"
        if not path.exists():
            raise RegionNotFoundError(f"region profile not found: {slug}")
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        profile = RegionProfile.from_dict(data)
        self._cache[slug] = profile
        return profile

    def working_hours(self, slug: str) -> WorkingHoursConfig:
        return self.load(slug).working_hours

    def register(self, profile: RegionProfile) -> None:
        self._cache[profile.slug.strip().lower()] = profile
