# eventcast/api/app.py

"""
Event engine REST API.

The app is a thin surface over the engine; the engine itself is attached
by the process that owns the event loop (see ``eventcast.bot``).
"""

import logging

from fastapi import FastAPI

from eventcast.api.routes.attendance import router as attendance_router
from eventcast.api.routes.cycles import router as cycles_router
from eventcast.api.routes.events import router as events_router

logger = logging.getLogger(__name__)


def create_app(engine=None) -> FastAPI:
    app = FastAPI(title="eventcast", version="1.0.0")
    app.state.engine = engine

    app.include_router(events_router)
    app.include_router(cycles_router)
    app.include_router(attendance_router)

    @app.get("/health")
    async def health_check():
        engine = app.state.engine
        return {
            "status": "healthy" if engine is not None else "starting",
            "loops": engine.task_scheduler.running() if engine is not None else [],
        }

    @app.get("/api/stats")
    async def stats():
        engine = app.state.engine
        if engine is None:
            return {"ready": False}
        return {
            "ready": True,
            "loops": engine.task_scheduler.get_stats(),
            "services": [
                engine.events.get_metrics(),
                engine.orchestrator.get_metrics(),
                engine.queue.get_metrics(),
                engine.reminders.get_metrics(),
            ],
            "selected_event": engine.reconciler.selected_event_id,
        }

    return app


def attach_engine(app: FastAPI, engine):
    app.state.engine = engine
    logger.info("Engine attached to REST API")
