import logging

from fastapi import FastAPI

from thinkv.config import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("thinkv")

from thinkv.database import db
from thinkv.reconciler import Reconciler
from thinkv.routes import channels, dashboard, data
from thinkv.store import ChannelStore
from thinkv.sync import MirrorJob
from thinkv.telemetry import TelemetryClient
from thinkv.view import ViewRegistry

app = FastAPI(
    title="ThinkV",
    version="1.0.0"
)

app.include_router(channels.router, prefix="/api/channels")
app.include_router(data.router, prefix="/api/v1/channels")
app.include_router(dashboard.router, prefix="/api/dashboard")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup event triggered.")
    await db.connect_to_mongodb()

    app.state.store = ChannelStore(db)
    app.state.telemetry = TelemetryClient(
        settings.telemetry_base_url, timeout=settings.telemetry_timeout
    )
    app.state.reconciler = Reconciler(
        app.state.telemetry,
        app.state.store,
        telemetry_timeout=settings.telemetry_timeout,
        store_timeout=settings.store_timeout,
        batch_size=settings.writeback_batch_size,
        write_back=settings.writeback_enabled,
        field_results=settings.field_results,
    )
    app.state.views = ViewRegistry(app.state.reconciler)

    app.state.mirror = MirrorJob(
        app.state.reconciler, app.state.store, settings.sync_interval_minutes
    )
    app.state.mirror.start()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown event triggered.")
    app.state.mirror.shutdown()
    await app.state.reconciler.drain()
    app.state.telemetry.close()
    await db.close_mongodb_connection()


@app.get("/")
def read_root():
    return {"name": "ThinkV", "version": app.version}
