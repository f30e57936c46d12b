from __future__ import annotations

import json
import logging
import os
from threading import Lock
from typing import Dict, List

from models.schemas import CustomerProfile
from settings import SETTINGS

logger = logging.getLogger(__name__)

MIN_VIP_LEVEL = 0
MAX_VIP_LEVEL = 5


class CustomerProfileRepository:
    def __init__(self, path: str | None = None) -> None:
        self.path = path if path is not None else SETTINGS.customer_profile_store_path
        self._profiles: Dict[str, CustomerProfile] = {}
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError):
            logger.warning("customer_profile_load_failed", extra={"path": self.path}, exc_info=True)
            return
        for customer_id, raw in dict(payload.get("profiles", {})).items():
            try:
                self._profiles[str(customer_id)] = CustomerProfile.model_validate(raw)
            except ValueError:
                continue

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {"profiles": {cid: profile.model_dump(mode="json") for cid, profile in self._profiles.items()}}
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=True)
        os.replace(tmp, self.path)

    async def get_profile(self, customer_id: str) -> CustomerProfile | None:
        with self._lock:
            return self._profiles.get(customer_id)

    async def upsert_profile(self, profile: CustomerProfile) -> CustomerProfile:
        with self._lock:
            self._profiles[profile.customer_id] = profile
            self._persist()
            return profile

    async def set_vip_level(self, customer_id: str, level: int) -> CustomerProfile:
        clamped = max(MIN_VIP_LEVEL, min(MAX_VIP_LEVEL, int(level)))
        with self._lock:
            profile = self._profiles.get(customer_id) or CustomerProfile(customer_id=customer_id)
            profile = profile.model_copy(update={"vip_level": clamped})
            self._profiles[customer_id] = profile
            self._persist()
            return profile

    async def resolve_vip_level(self, customer_id: str | None) -> int:
        if not customer_id:
            return MIN_VIP_LEVEL
        profile = await self.get_profile(customer_id)
        if profile is None:
            return MIN_VIP_LEVEL
        return max(MIN_VIP_LEVEL, min(MAX_VIP_LEVEL, int(profile.vip_level)))

    def list_profiles(self) -> List[CustomerProfile]:
        with self._lock:
            return list(self._profiles.values())
