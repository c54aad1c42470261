# FastAPI Application Entry Point: ingestion pipelines, live stream and HTTP API
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI

# Configuration and Observability
from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.observability import setup_opentelemetry, logger

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor

from analytics_ingestion_service.infrastructure.database.connection import connect_to_mongo, close_mongo_connection
from analytics_ingestion_service.infrastructure.database.event_index import EventIndex
from analytics_ingestion_service.infrastructure.kafka.consumer import KafkaLogBroker
from analytics_ingestion_service.app.service.exceptions import ConfigurationError
from analytics_ingestion_service.app.service.broadcast import BroadcastHub
from analytics_ingestion_service.app.service.pipeline import IngestionPipeline
from analytics_ingestion_service.app.service.reporting import StatsReporter
from analytics_ingestion_service.app.service.stats import StatsAggregator

# API Routers
from analytics_ingestion_service.app.api.v1.endpoints import health as health_router
from analytics_ingestion_service.app.api.v1.endpoints import events as events_router
from analytics_ingestion_service.app.api.v1.endpoints import stream as stream_router


def check_settings() -> None:
    """Rejects settings the pipelines cannot run with, before anything connects."""
    if settings.CONSUMER_CONCURRENCY < 1:
        raise ConfigurationError(f"CONSUMER_CONCURRENCY must be at least 1, got {settings.CONSUMER_CONCURRENCY}")
    if settings.FLUSH_BATCH_SIZE < 1:
        raise ConfigurationError(f"FLUSH_BATCH_SIZE must be at least 1, got {settings.FLUSH_BATCH_SIZE}")
    if settings.BROADCAST_REPLAY_SIZE > settings.BROADCAST_HISTORY_SIZE:
        raise ConfigurationError("BROADCAST_REPLAY_SIZE cannot exceed BROADCAST_HISTORY_SIZE")


def build_pipelines(event_index: EventIndex, stats: StatsAggregator, hub: BroadcastHub) -> List[IngestionPipeline]:
    pipelines = []
    for index in range(settings.CONSUMER_CONCURRENCY):
        pipeline = IngestionPipeline(
            broker=KafkaLogBroker(),
            event_index=event_index,
            stats=stats,
            name=f"pipeline-{index}",
        )
        pipeline.on_flush(hub.broadcast_many)
        pipelines.append(pipeline)
    return pipelines


def _log_pipeline_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.critical(f"Ingestion pipeline task {task.get_name()} crashed: {error}", exc_info=error)


async def startup(app: FastAPI) -> None:
    logger.info("Starting Analytics Ingestion Service...")
    check_settings()
    PymongoInstrumentor().instrument()

    db = await connect_to_mongo()
    event_index = EventIndex(db)
    # Provisioning failure is fatal: StoreSetupError aborts startup.
    await event_index.initialize()
    logger.info("Event store initialized.")

    stats = StatsAggregator()
    hub = BroadcastHub()
    pipelines = build_pipelines(event_index, stats, hub)
    reporter = StatsReporter(stats, event_index, hub)

    app.state.event_index = event_index
    app.state.stats = stats
    app.state.broadcast_hub = hub
    app.state.pipelines = pipelines
    app.state.pipeline_tasks = []
    for pipeline in pipelines:
        task = asyncio.create_task(pipeline.run(), name=pipeline.name)
        task.add_done_callback(_log_pipeline_exit)
        app.state.pipeline_tasks.append(task)
    reporter.start()
    app.state.stats_reporter = reporter

    logger.info(f"Analytics Ingestion Service is running with {len(pipelines)} pipeline(s).")


async def shutdown(app: FastAPI) -> None:
    logger.info("Shutting down...")
    await app.state.stats_reporter.stop()

    for pipeline in app.state.pipelines:
        pipeline.stop()
    # Each pipeline finishes its in-flight batch and closes its Kafka consumer.
    await asyncio.gather(*app.state.pipeline_tasks, return_exceptions=True)

    await app.state.broadcast_hub.close()
    close_mongo_connection()
    logger.info("Shutdown complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(app)
    yield
    await shutdown(app)


setup_opentelemetry(service_name=settings.SERVICE_NAME)

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Analytics Ingestion Service",
    description="Indexes analytics events from Kafka and streams them to live subscribers.",
    version="1.0.0",
    lifespan=lifespan,
)

FastAPIInstrumentor.instrument_app(app)

# Include API Routers
app.include_router(health_router.router)
app.include_router(events_router.router, prefix="/api/v1")
app.include_router(stream_router.router)

logger.info("API routers included. Application setup complete.")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
