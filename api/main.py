from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agents.escalation_agent import HumanHandoffScheduler
from agents.orchestrator import DialogueOrchestrator
from api.middleware.logging import RequestLoggingMiddleware
from api.routers import agent, chat
from compliance.audit_logger import AuditLogger
from memory.session_memory import build_session_store
from settings import SETTINGS
from tasks.offhours_sweep import OffHoursSweeper, SweepLoop


def create_app(
    orchestrator: DialogueOrchestrator | None = None,
    sweeper: OffHoursSweeper | None = None,
    inprocess_sweep: bool | None = None,
) -> FastAPI:
    logging.basicConfig(level=getattr(logging, SETTINGS.log_level.upper(), logging.INFO))

    if orchestrator is None:
        audit_logger = AuditLogger()
        session_store = build_session_store()
        scheduler = HumanHandoffScheduler(session_store=session_store, audit_logger=audit_logger)
        orchestrator = DialogueOrchestrator(session_store=session_store, scheduler=scheduler, audit_logger=audit_logger)
    sweeper = sweeper or OffHoursSweeper(
        scheduler=orchestrator.scheduler,
        session_store=orchestrator.session_store,
        clock=orchestrator.clock,
    )
    run_loop = SETTINGS.inprocess_sweep if inprocess_sweep is None else inprocess_sweep

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = SweepLoop(sweeper) if run_loop else None
        if loop is not None:
            loop.start()
        app.state.sweep_loop = loop
        try:
            yield
        finally:
            if loop is not None:
                await loop.stop()

    app = FastAPI(title="Travel Desk Agent Platform", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestLoggingMiddleware)
    app.state.orchestrator = orchestrator
    app.state.scheduler = orchestrator.scheduler
    app.state.sweeper = sweeper
    app.state.sweep_loop = None

    api_prefix = "/api/v1"
    app.include_router(chat.router, prefix=api_prefix)
    app.include_router(agent.router, prefix=api_prefix)

    @app.get("/health")
    async def health():
        orch: DialogueOrchestrator = app.state.orchestrator
        loop = app.state.sweep_loop
        return {
            "ok": True,
            "service": SETTINGS.service_name,
            "classifier_provider": orch.classifier.provider,
            "classifier_available": orch.classifier.available(),
            "session_store_durable": orch.session_store.durable,
            "faq_entries": len(orch.faq_ranker),
            "sweep_loop_running": bool(loop and loop.running),
        }

    return app


app = create_app()
