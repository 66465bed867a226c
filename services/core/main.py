from fastapi import FastAPI

from api.endpoints.assumptions import router as assumptions_router
from api.endpoints.conflicts import assumption_router as assumption_conflicts_router
from api.endpoints.conflicts import decision_router as decision_conflicts_router
from api.endpoints.decisions import router as decisions_router
from api.endpoints.governance import router as governance_router
from api.endpoints.references import router as references_router
from api.endpoints.system import router as system_router
from api.errors import register_exception_handlers
from api.middleware import LoggingMiddleware, add_cors_middleware
from config import EVALUATION_SCHEDULER_ENABLED
from database import close_db_connections, init_models
from evaluation_scheduler import evaluation_queue, start_scheduler, stop_scheduler
from events import event_bus
from logging_config import get_logger

logger = get_logger(__name__)

app = FastAPI(title="Decision Engine", version="1.0.0")

add_cors_middleware(app)
app.add_middleware(LoggingMiddleware)
register_exception_handlers(app)

app.include_router(decisions_router)
app.include_router(assumptions_router)
app.include_router(assumption_conflicts_router)
app.include_router(decision_conflicts_router)
app.include_router(governance_router)
app.include_router(references_router)
app.include_router(system_router)


@app.on_event("startup")
async def startup():
    await init_models()
    if EVALUATION_SCHEDULER_ENABLED:
        evaluation_queue.start(bus=event_bus)
        start_scheduler()
    logger.info("decision_engine_started", scheduler_enabled=EVALUATION_SCHEDULER_ENABLED)


@app.on_event("shutdown")
async def shutdown():
    stop_scheduler()
    await evaluation_queue.stop()
    await close_db_connections()
    logger.info("decision_engine_stopped")
