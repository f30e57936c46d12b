from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from agents.escalation_agent import HumanHandoffScheduler
from agents.intent_classifier import KeywordIntentClassifier
from agents.orchestrator import DialogueOrchestrator
from agents.slot_filling import ContinuationPolicy
from compliance.audit_logger import AuditLogger
from memory.customer_profile import CustomerProfileRepository
from memory.session_memory import InMemorySessionStore
from tools.faq_tools import FAQRanker
from tools.handoff_tools import HandoffQueue
from tools.working_hours_tools import WorkingHoursService

# Tuesday 2025-03-18 10:00 Asia/Taipei
WORKING_TIME = datetime(2025, 3, 18, 2, 0, tzinfo=timezone.utc)
# Tuesday 2025-03-18 22:00 Asia/Taipei
OFF_HOURS_TIME = datetime(2025, 3, 18, 14, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def build_orchestrator(clock, classifier=None, profiles=None, session_store=None, **kwargs) -> DialogueOrchestrator:
    session_store = session_store or InMemorySessionStore(clock=clock)
    audit_logger = AuditLogger(path="")
    scheduler = HumanHandoffScheduler(
        queue=HandoffQueue(path=""),
        working_hours=WorkingHoursService(clock=clock),
        profiles=profiles or CustomerProfileRepository(path=""),
        session_store=session_store,
        audit_logger=audit_logger,
        clock=clock,
    )
    return DialogueOrchestrator(
        session_store=session_store,
        classifier=classifier or KeywordIntentClassifier(),
        faq_ranker=FAQRanker(),
        scheduler=scheduler,
        policy=ContinuationPolicy.from_settings(),
        audit_logger=audit_logger,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(WORKING_TIME)


@pytest.fixture
def off_hours_clock() -> FixedClock:
    return FixedClock(OFF_HOURS_TIME)


@pytest.fixture
def orchestrator(clock) -> DialogueOrchestrator:
    return build_orchestrator(clock)
