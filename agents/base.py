from __future__ import annotations

from typing import Iterable

from compliance.audit_logger import AuditLogger
from models.schemas import AgentDecisionLog, ToolCallRecord


class BaseAgent:
    def __init__(self, name: str, audit_logger: AuditLogger | None = None) -> None:
        self.name = name
        self.audit_logger = audit_logger or AuditLogger()

    def build_decision_log(
        self,
        session_id: str,
        action: str,
        reasoning: str,
        tool_calls: Iterable[ToolCallRecord] | None = None,
        duration_ms: int = 0,
        outcome: str = "ok",
    ) -> AgentDecisionLog:
        record = AgentDecisionLog(
            session_id=session_id,
            agent=self.name,
            action=action,
            reasoning=reasoning,
            tool_calls=list(tool_calls or []),
            duration_ms=duration_ms,
            outcome=outcome,
        )
        self.audit_logger.log_decision(record)
        return record
