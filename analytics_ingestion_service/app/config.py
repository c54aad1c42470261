# Application Configuration using Pydantic BaseSettings
from pydantic_settings import BaseSettings
from typing import Optional

class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017"
    DB_NAME: str = "analytics_db"
    EVENTS_COLLECTION: str = "analytics_events"
    RETENTION_POLICY_COLLECTION: str = "retention_policies"
    STORE_REQUEST_TIMEOUT_MS: int = 30000
    STORE_WRITE_MAX_RETRIES: int = 3 # Attempts after the first one
    STORE_RETRY_BACKOFF_MS: int = 100 # Doubled on every retry

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:29092"
    KAFKA_TOPIC_NAME: str = "analytics-events"
    KAFKA_CONSUMER_GROUP_ID: str = "analytics-consumer-group"
    KAFKA_CLIENT_ID: str = "analytics-ingestion"
    KAFKA_SESSION_TIMEOUT_MS: int = 30000
    KAFKA_HEARTBEAT_INTERVAL_MS: int = 3000
    KAFKA_MAX_POLL_INTERVAL_MS: int = 300000
    KAFKA_FETCH_BATCH_SIZE: int = 500
    KAFKA_POLL_TIMEOUT_SECONDS: float = 1.0

    # Ingestion pipeline
    CONSUMER_CONCURRENCY: int = 1 # Independent pipelines sharing the consumer group
    FLUSH_BATCH_SIZE: int = 100
    REDELIVERY_BACKOFF_SECONDS: float = 1.0
    DISPATCH_QUEUE_SIZE: int = 1000

    # Live stream
    BROADCAST_HISTORY_SIZE: int = 1000
    BROADCAST_REPLAY_SIZE: int = 50
    BROADCAST_SEND_TIMEOUT_SECONDS: float = 1.0
    BROADCAST_OUTBOX_SIZE: int = 256

    # Reporting
    STATS_REPORT_INTERVAL_SECONDS: float = 30.0

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME: str = "analytics-ingestion-service"

    # HTTP / WebSocket server
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

# Instantiate settings to be imported by other modules
settings = AppSettings()

import logging
logger = logging.getLogger(__name__)
logger.info("Application settings module initialized.")
