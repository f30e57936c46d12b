from __future__ import annotations

import json
import os
from threading import Lock
from typing import Any, Dict, List

from models.schemas import AgentDecisionLog
from settings import SETTINGS


class AuditLogger:
    """Append-only JSONL trail of turn and handoff decisions."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path if path is not None else SETTINGS.audit_log_path
        self._lock = Lock()
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    def log_decision(self, record: AgentDecisionLog) -> None:
        self.log_json(record.model_dump(mode="json"))

    def log_json(self, payload: Dict[str, Any]) -> None:
        if not self.path:
            return
        line = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def read_session(self, session_id: str) -> List[Dict[str, Any]]:
        if not self.path or not os.path.exists(self.path):
            return []
        rows: List[Dict[str, Any]] = []
        with open(self.path, "r", encoding="utf-8") as fh:
            for line in fh:
                try:
                    row = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if row.get("session_id") == session_id:
                    rows.append(row)
        return rows
