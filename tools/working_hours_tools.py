from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from models.schemas import WorkingHoursConfig, utcnow
from regions.registry import RegionRegistry
from settings import SETTINGS

logger = logging.getLogger(__name__)

DEFAULT_WORKING_HOURS = WorkingHoursConfig()
DAY_NAMES = ("週日", "週一", "週二", "週三", "週四", "週五", "週六")
EMERGENCY_PHONE = "0988-157-972"

Resolver = Callable[[str], WorkingHoursConfig]


def local_weekday(moment: datetime) -> int:
    """Weekday number with 0 = Sunday, matching ``WorkingHoursConfig.work_days``."""
    return (moment.weekday() + 1) % 7


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def work_days_label(work_days) -> str:
    days = sorted(set(work_days))
    if days == [1, 2, 3, 4, 5]:
        return "週一至週五"
    if len(days) == 7:
        return "每天"
    return "、".join(DAY_NAMES[d] for d in days)


class WorkingHoursService:
    def __init__(
        self,
        registry: RegionRegistry | None = None,
        resolver: Resolver | None = None,
        cache_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.registry = registry or RegionRegistry()
        self._resolver = resolver or self.registry.working_hours
        self.cache_seconds = cache_seconds if cache_seconds is not None else SETTINGS.working_hours_cache_seconds
        self.clock = clock or utcnow
        self._cache: Dict[str, Tuple[float, WorkingHoursConfig]] = {}

    def resolve(self, region_id: str | None) -> WorkingHoursConfig:
        key = (region_id or SETTINGS.default_region_id).strip().lower()
        cached = self._cache.get(key)
        if cached and time.monotonic() - cached[0] < self.cache_seconds:
            return cached[1]
        try:
            config = self._resolver(key)
        except Exception as exc:
            logger.warning("working_hours_resolve_failed", extra={"region_id": key, "error": repr(exc)})
            return DEFAULT_WORKING_HOURS
        self._cache[key] = (time.monotonic(), config)
        return config

    def invalidate(self, region_id: str | None = None) -> None:
        if region_id is None:
            self._cache.clear()
        else:
            self._cache.pop(region_id.strip().lower(), None)

    def _local(self, config: WorkingHoursConfig, now: Optional[datetime]) -> datetime:
        return (now or self.clock()).astimezone(ZoneInfo(config.timezone))

    def is_within_working_hours(self, region_id: str | None, now: datetime | None = None) -> bool:
        config = self.resolve(region_id)
        try:
            local = self._local(config, now)
            if local_weekday(local) not in config.work_days:
                return False
            current = minutes_of_day(local)
            return config.start_minutes() <= current <= config.end_minutes()
        except Exception:
            # an unreadable config must not block human service
            logger.exception("working_hours_check_failed", extra={"region_id": region_id})
            return True

    def is_work_start_window(self, region_id: str | None, now: datetime | None = None, window_minutes: int | None = None) -> bool:
        window = SETTINGS.promotion_window_minutes if window_minutes is None else window_minutes
        config = self.resolve(region_id)
        local = self._local(config, now)
        if local_weekday(local) not in config.work_days:
            return False
        start = config.start_minutes()
        opened = local.replace(hour=start // 60, minute=start % 60, second=0, microsecond=0)
        return opened <= local < opened + timedelta(minutes=window)

    def emergency_phone(self, region_id: str | None) -> str:
        key = (region_id or SETTINGS.default_region_id).strip().lower()
        try:
            return self.registry.load(key).emergency_phone
        except (LookupError, OSError, ValueError):
            logger.warning("emergency_phone_fallback", extra={"region_id": key})
            return EMERGENCY_PHONE

    def off_hours_message(self, region_id: str | None) -> str:
        config = self.resolve(region_id)
        return (
            "感謝您的訊息！\n\n"
            "此問題需要專人為您服務，目前已超過服務時間：\n"
            f"服務時間：{work_days_label(config.work_days)} {config.start}-{config.end}\n\n"
            "您的訊息已記錄，我們會在上班時間盡快為您處理。\n\n"
            "如有緊急需求（72小時內出發），請撥打：\n"
            f"📞 {self.emergency_phone(region_id)}"
        )

    def next_working_time(self, region_id: str | None, now: datetime | None = None) -> datetime:
        config = self.resolve(region_id)
        local = self._local(config, now)
        start = config.start_minutes()
        for offset in range(8):
            day = local + timedelta(days=offset)
            if local_weekday(day) not in config.work_days:
                continue
            if offset == 0 and minutes_of_day(local) > start:
                continue
            return day.replace(hour=start // 60, minute=start % 60, second=0, microsecond=0)
        tomorrow = local + timedelta(days=1)
        return tomorrow.replace(hour=start // 60, minute=start % 60, second=0, microsecond=0)
