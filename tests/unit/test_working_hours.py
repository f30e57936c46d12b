from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from models.schemas import WorkingHoursConfig
from regions.registry import RegionProfile, RegionRegistry
from tools.working_hours_tools import DEFAULT_WORKING_HOURS, EMERGENCY_PHONE, WorkingHoursService, local_weekday

TAIPEI = ZoneInfo("Asia/Taipei")


def _at(*args) -> datetime:
    return datetime(*args, tzinfo=TAIPEI).astimezone(timezone.utc)


def test_boundaries_are_inclusive():
    service = WorkingHoursService()
    assert service.is_within_working_hours("taipei", _at(2025, 3, 18, 9, 0))
    assert service.is_within_working_hours("taipei", _at(2025, 3, 18, 18, 0))
    assert not service.is_within_working_hours("taipei", _at(2025, 3, 18, 8, 59))
    assert not service.is_within_working_hours("taipei", _at(2025, 3, 18, 18, 1))


def test_weekend_and_regional_work_days():
    service = WorkingHoursService()
    saturday = _at(2025, 3, 22, 10, 0)
    assert local_weekday(saturday.astimezone(TAIPEI)) == 6
    assert not service.is_within_working_hours("taipei", saturday)
    assert service.is_within_working_hours("kaohsiung", saturday)
    assert not service.is_within_working_hours("kaohsiung", _at(2025, 3, 22, 9, 15))


def test_work_start_window():
    service = WorkingHoursService()
    assert service.is_work_start_window("taipei", _at(2025, 3, 19, 9, 3))
    assert service.is_work_start_window("taipei", _at(2025, 3, 19, 9, 0))
    assert service.is_work_start_window("taipei", _at(2025, 3, 19, 9, 4, 59))
    assert not service.is_work_start_window("taipei", _at(2025, 3, 19, 9, 5))
    assert not service.is_work_start_window("taipei", _at(2025, 3, 19, 8, 59, 59))
    assert not service.is_work_start_window("taipei", _at(2025, 3, 19, 9, 6))
    assert not service.is_work_start_window("taipei", _at(2025, 3, 22, 9, 1))


def test_unknown_region_falls_back_to_default():
    service = WorkingHoursService()
    assert service.resolve("atlantis") == DEFAULT_WORKING_HOURS


def test_resolution_is_cached_until_invalidated():
    calls = []

    def _resolver(region_id: str) -> WorkingHoursConfig:
        calls.append(region_id)
        return WorkingHoursConfig(start="08:00", end="20:00")

    service = WorkingHoursService(resolver=_resolver, cache_seconds=300)
    service.resolve("taipei")
    service.resolve("TAIPEI")
    assert calls == ["taipei"]
    service.invalidate()
    service.resolve("taipei")
    assert calls == ["taipei", "taipei"]


def test_broken_config_keeps_humans_reachable():
    service = WorkingHoursService(resolver=lambda region: WorkingHoursConfig(timezone="Not/AZone"))
    assert service.is_within_working_hours("taipei", _at(2025, 3, 18, 23, 0))


def test_off_hours_message_and_next_working_time():
    service = WorkingHoursService()
    message = service.off_hours_message("taipei")
    assert "週一至週五 09:00-18:00" in message
    assert "0988-157-972" in message
    friday_night = _at(2025, 3, 21, 20, 0)
    assert service.next_working_time("taipei", friday_night) == datetime(2025, 3, 24, 9, 0, tzinfo=TAIPEI)


def test_off_hours_message_uses_the_region_emergency_line(tmp_path):
    registry = RegionRegistry(profiles_dir=tmp_path)
    registry.register(RegionProfile.from_dict({"slug": "tainan", "emergency_phone": "06-222-3333"}))
    service = WorkingHoursService(registry=registry)
    assert "📞 06-222-3333" in service.off_hours_message("tainan")
    assert service.emergency_phone("atlantis") == EMERGENCY_PHONE
    assert f"📞 {EMERGENCY_PHONE}" in service.off_hours_message("atlantis")
